"""
Push content sanitization for SafeGuard.

Upstream payloads are untrusted: titles lose markup, bodies are
length-capped and navigation targets are restricted to known routes or
the application's own origin.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

TITLE_MAX_LENGTH = 100
BODY_MAX_LENGTH = 300
SAFE_DEFAULT_URL = "/"
KNOWN_PATHS = frozenset({"/", "/report", "/routes", "/community"})

_TAG = re.compile(r"<[^>]*>")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")

def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 1)].rstrip() + "…"

def sanitize_title(title: Optional[str], limit: int = TITLE_MAX_LENGTH) -> str:
    """마크업과 제어 문자를 제거하고 길이를 제한합니다."""
    text = _TAG.sub("", str(title or ""))
    text = _CONTROL.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    return _truncate(text, limit)

def sanitize_body(body: Optional[str], limit: int = BODY_MAX_LENGTH) -> str:
    text = _CONTROL.sub("", str(body or "")).strip()
    return _truncate(text, limit)

def sanitize_action_url(
    url: Optional[str],
    *,
    app_origin: Optional[str] = None,
    known_paths: Iterable[str] = KNOWN_PATHS,
    default: str = SAFE_DEFAULT_URL
) -> str:
    """
    이동 대상 URL을 검증합니다.

    알려진 상대 경로이거나 앱과 같은 origin이면 그대로 사용하고,
    그 외에는 안전한 기본값으로 대체합니다.

    Args:
        url: 원시 URL
        app_origin: 앱 origin (예: "https://safeguard.example")
        known_paths: 허용된 상대 경로
        default: 대체 URL

    Returns:
        안전한 URL
    """
    if not url or not isinstance(url, str):
        return default

    candidate = url.strip()
    if _CONTROL.search(candidate) or "\\" in candidate:
        return default

    try:
        parts = urlsplit(candidate)
    except ValueError:
        return default

    paths = set(known_paths)

    # 상대 경로 ("//host"는 프로토콜 상대 URL이므로 제외)
    if not parts.scheme and not parts.netloc and candidate.startswith("/") and not candidate.startswith("//"):
        return candidate if parts.path in paths else default

    if app_origin and parts.scheme in ("http", "https"):
        origin = urlsplit(app_origin)
        if (parts.scheme, parts.netloc.lower()) == (origin.scheme, origin.netloc.lower()):
            return candidate

    return default
