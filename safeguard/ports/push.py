"""
Push provider port interface.

This module defines the protocol for the operating-system / browser
push channel used for interruptive notifications.
"""

from typing import Any, Callable, Dict, Optional, Protocol

# "granted" | "denied" | "default" | "unsupported"
PermissionState = str

ForegroundCallback = Callable[[Dict[str, Any]], None]

class PushProviderPort(Protocol):
    """푸시 제공자 포트 인터페이스"""

    def permission_state(self) -> PermissionState:
        ...

    async def request_permission(self) -> PermissionState:
        """
        알림 권한을 요청합니다.

        Returns:
            요청 이후의 권한 상태
        """
        ...

    async def get_token(self) -> Optional[str]:
        ...

    def on_foreground_message(self, callback: ForegroundCallback) -> Callable[[], None]:
        """
        앱이 포그라운드일 때 수신된 푸시 메시지 콜백을 등록합니다.

        Returns:
            등록 해제 함수
        """
        ...

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
        """
        푸시 알림을 표시합니다.

        Raises:
            PushError 하위 예외
        """
        ...
