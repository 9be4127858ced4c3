"""
FCM relay push provider for SafeGuard.

Push notifications are sent through the backend's send-fcm-notification
function, which holds the FCM credentials and fans the message out to
the target device token.
"""

import json
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from safeguard.core.errors import PushError, PushPayloadError, PushPermissionError
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.push.fcm")

RELAY_PATH = "/functions/v1/send-fcm-notification"

def _stringify(data: Dict[str, Any]) -> Dict[str, str]:
    """FCM data 필드는 문자열 값만 허용합니다."""
    out = {}
    for key, value in data.items():
        if value is None:
            continue
        out[str(key)] = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return out

class FcmRelayPushProvider:
    """백엔드 FCM 중계 함수를 통한 푸시 제공자"""

    def __init__(self,
                 base_url: str,
                 api_key: str,
                 device_token: Optional[str] = None,
                 timeout: int = 10):
        """
        초기화합니다.

        Args:
            base_url: 백엔드 기본 URL
            api_key: 함수 호출용 API 키
            device_token: 이 기기의 FCM 토큰 (없으면 푸시 권한 없음으로 간주)
            timeout: 요청 타임아웃 (초)
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.device_token = device_token
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._foreground: List[Callable[[Dict[str, Any]], None]] = []

    async def _ensure_session(self) -> None:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def permission_state(self) -> str:
        return "granted" if self.device_token else "denied"

    async def request_permission(self) -> str:
        return self.permission_state()

    async def get_token(self) -> Optional[str]:
        return self.device_token

    def on_foreground_message(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        self._foreground.append(callback)
        return lambda: self._foreground.remove(callback) if callback in self._foreground else None

    def dispatch_foreground(self, payload: Dict[str, Any]) -> None:
        """앱이 포그라운드일 때 받은 메시지를 등록된 콜백에 전달합니다."""
        for callback in list(self._foreground):
            try:
                callback(payload)
            except Exception as e:
                log.error(f"포그라운드 메시지 콜백 오류: {e}")

    def build_request(self, title: str, body: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        중계 함수 요청 본문을 만듭니다.

        Raises:
            PushPayloadError: 제목이 비어 있는 경우
        """
        if not title:
            raise PushPayloadError("push title is empty")
        return {
            "title": title,
            "body": body,
            "data": _stringify(data),
            "priority": data.get("priority", "medium"),
            "target_type": "user",
            "target_value": self.device_token,
            "incident_id": data.get("incident_id") or (data.get("data") or {}).get("incident_id"),
        }

    async def show(
        self,
        title: str,
        body: str,
        *,
        tag: str,
        data: Dict[str, Any],
        require_interaction: bool = False,
        silent: bool = False
    ) -> None:
        if not self.device_token:
            raise PushPermissionError("no device token registered")

        request = self.build_request(title, body, {**data, "tag": tag,
                                                   "require_interaction": require_interaction,
                                                   "silent": silent})
        await self._ensure_session()
        url = f"{self.base_url}{RELAY_PATH}"
        async with self.session.post(url, json=request) as response:
            if 200 <= response.status < 300:
                log.debug(f"푸시 중계 성공: {title}")
                return
            text = await response.text()
            if response.status == 400:
                raise PushPayloadError(f"relay rejected payload: {text}")
            if response.status in (401, 403):
                raise PushPermissionError(f"relay denied: HTTP {response.status}")
            raise PushError(f"relay failed: HTTP {response.status}: {text}")
