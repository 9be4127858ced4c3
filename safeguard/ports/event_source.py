"""
Realtime event source port interface.

This module defines the protocol for subscribing to a backend topic
that delivers change events and connection status reports.
"""

from typing import Any, Callable, Dict, Protocol

# 이벤트 수신 콜백 (원시 변경 이벤트 딕셔너리)
EventCallback = Callable[[Dict[str, Any]], None]

# 상태 보고 콜백 ("SUBSCRIBED" | "CHANNEL_ERROR" | "TIMED_OUT" | "CLOSED", 에러)
StatusCallback = Callable[[str, Any], None]

class EventSourcePort(Protocol):
    """실시간 이벤트 소스 포트 인터페이스"""

    def subscribe(self, topic: str, on_event: EventCallback, on_status: StatusCallback) -> Callable[[], None]:
        """
        토픽을 구독합니다.

        Args:
            topic: 구독할 토픽 이름
            on_event: 변경 이벤트 수신 콜백
            on_status: 연결 상태 보고 콜백

        Returns:
            연결을 해제하는 함수
        """
        ...
