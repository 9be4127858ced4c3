"""
Error taxonomy for SafeGuard.

This module classifies backend mutation failures and push channel
failures into closed sets of kinds so that callers can branch on them
and show a stable user-facing message.
"""

import asyncio
import re
from enum import Enum
from typing import Any, Optional

import aiohttp

from .models import MutationError

class MutationErrorKind(str, Enum):
    """변경 실패 유형"""
    AUTH_REQUIRED = "auth_required"
    PERMISSION_DENIED = "permission_denied"
    DUPLICATE = "duplicate"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    UNKNOWN = "unknown"

class PushErrorKind(str, Enum):
    """푸시 채널 실패 유형"""
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED = "unsupported"
    INVALID_PAYLOAD = "invalid_payload"
    UNKNOWN = "unknown"

USER_MESSAGES = {
    MutationErrorKind.AUTH_REQUIRED: "You must be signed in to do that",
    MutationErrorKind.PERMISSION_DENIED: "You do not have permission to do that",
    MutationErrorKind.DUPLICATE: "This action has already been recorded",
    MutationErrorKind.NETWORK: "Network error. Please check your connection and try again",
    MutationErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again",
    MutationErrorKind.SERVER: "The server could not process the request. Please try again later",
    MutationErrorKind.UNKNOWN: "Something went wrong. Please try again",
}

# PostgreSQL unique_violation
_DUPLICATE_CODES = {"23505"}
_PERMISSION_CODES = {"42501"}
_AUTH_CODES = {"PGRST301", "PGRST302"}

class BackendError(Exception):
    """백엔드 응답 오류"""

    def __init__(self, status: Optional[int], message: str, code: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code
        self.detail = detail

class PushError(Exception):
    """푸시 채널 오류 기본 클래스"""

class PushPermissionError(PushError):
    pass

class PushUnsupportedError(PushError):
    pass

class PushPayloadError(PushError):
    pass

def _kind_from_status(status: Optional[int]) -> Optional[MutationErrorKind]:
    if status is None:
        return None
    if status == 401:
        return MutationErrorKind.AUTH_REQUIRED
    if status == 403:
        return MutationErrorKind.PERMISSION_DENIED
    if status == 409:
        return MutationErrorKind.DUPLICATE
    if status == 429:
        return MutationErrorKind.RATE_LIMITED
    if status >= 500:
        return MutationErrorKind.SERVER
    return None

AUTH_MESSAGE = re.compile(r"\bjwt\b|not authenticated|\bunauthori[sz]ed\b|\bauth(?:entication)? required\b")

def _kind_from_message(message: str) -> Optional[MutationErrorKind]:
    text = message.lower()
    if "duplicate" in text or "already" in text or "unique" in text:
        return MutationErrorKind.DUPLICATE
    if AUTH_MESSAGE.search(text):
        return MutationErrorKind.AUTH_REQUIRED
    if "permission" in text or "row-level security" in text:
        return MutationErrorKind.PERMISSION_DENIED
    if "rate limit" in text or "too many" in text:
        return MutationErrorKind.RATE_LIMITED
    if "network" in text or "fetch" in text or "timeout" in text:
        return MutationErrorKind.NETWORK
    return None

def classify_mutation_error(
    error: Any = None,
    *,
    status: Optional[int] = None,
    code: Optional[str] = None,
    message: Optional[str] = None
) -> MutationError:
    """
    변경 실패를 분류합니다.

    상태 코드, 에러 코드, 메시지, 예외 타입 순으로 판단합니다.

    Args:
        error: 예외 또는 None
        status: HTTP 상태 코드
        code: 백엔드 에러 코드
        message: 백엔드 에러 메시지

    Returns:
        분류된 MutationError
    """
    if isinstance(error, BackendError):
        status = status if status is not None else error.status
        code = code or error.code
        message = message or error.message

    detail = message or (str(error) if error is not None else None)
    kind: Optional[MutationErrorKind] = None

    if code in _DUPLICATE_CODES:
        kind = MutationErrorKind.DUPLICATE
    elif code in _PERMISSION_CODES:
        kind = MutationErrorKind.PERMISSION_DENIED
    elif code in _AUTH_CODES:
        kind = MutationErrorKind.AUTH_REQUIRED

    if kind is None:
        kind = _kind_from_status(status)

    if kind is None and isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError, ConnectionError)):
        kind = MutationErrorKind.NETWORK

    if kind is None and detail:
        kind = _kind_from_message(detail)

    if kind is None:
        kind = MutationErrorKind.UNKNOWN

    return MutationError(
        kind=kind.value,
        message=USER_MESSAGES[kind],
        status=status,
        code=code,
        detail=detail,
    )

def classify_push_error(error: BaseException) -> PushErrorKind:
    if isinstance(error, PushPermissionError):
        return PushErrorKind.PERMISSION_DENIED
    if isinstance(error, (PushUnsupportedError, NotImplementedError)):
        return PushErrorKind.UNSUPPORTED
    if isinstance(error, (PushPayloadError, ValueError, TypeError)):
        return PushErrorKind.INVALID_PAYLOAD
    return PushErrorKind.UNKNOWN
