"""
Push provider for environments without a push channel.
"""

from typing import Any, Callable, Dict, Optional

from safeguard.core.errors import PushUnsupportedError

class NullPushProvider:
    """푸시 미지원 환경용 제공자 (인앱 알림만 사용)"""

    def permission_state(self) -> str:
        return "unsupported"

    async def request_permission(self) -> str:
        return "unsupported"

    async def get_token(self) -> Optional[str]:
        return None

    def on_foreground_message(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        return lambda: None

    async def show(self, title: str, body: str, *, tag: str, data: Dict[str, Any],
                   require_interaction: bool = False, silent: bool = False) -> None:
        raise PushUnsupportedError("push is not supported in this environment")
