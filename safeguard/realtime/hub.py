"""
Realtime hub for SafeGuard.

The hub owns one SubscriptionController per topic and exposes the
aggregate "sync available" signal.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from safeguard.ports.event_source import EventSourcePort
from .controller import Scheduler, SubscriptionController, SubscriptionState

log = get_logger("safeguard.realtime.hub")

INCIDENT_CHANGES = "incident_changes"
URGENT_ALERTS = "urgent_alerts"
DEFAULT_TOPICS = (INCIDENT_CHANGES, URGENT_ALERTS)

class RealtimeHub:
    """토픽별 구독 컨트롤러 묶음"""

    def __init__(
        self,
        source: EventSourcePort,
        topics: Iterable[str] = DEFAULT_TOPICS,
        *,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        call_later: Optional[Scheduler] = None
    ):
        self.source = source
        self._controllers: Dict[str, SubscriptionController] = {}
        self._unavailable_callbacks: List[Callable[[str], None]] = []

        for topic in topics:
            controller = SubscriptionController(
                topic, source,
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                call_later=call_later,
            )
            controller.on_exhausted(self._on_exhausted)
            controller.add_state_listener(self._on_state)
            self._controllers[topic] = controller

        metrics.sync_available.set(1)

    def controller(self, topic: str) -> SubscriptionController:
        return self._controllers[topic]

    @property
    def topics(self) -> List[str]:
        return list(self._controllers)

    @property
    def sync_available(self) -> bool:
        return not any(c.exhausted for c in self._controllers.values())

    def on_sync_unavailable(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """
        재연결 한도가 소진되었을 때 호출될 콜백을 등록합니다.

        Returns:
            등록 해제 함수
        """
        self._unavailable_callbacks.append(callback)
        return lambda: self._unavailable_callbacks.remove(callback) if callback in self._unavailable_callbacks else None

    def setup_all(self) -> None:
        for controller in self._controllers.values():
            controller.setup()
        self._refresh_gauge()

    def teardown_all(self) -> None:
        for controller in self._controllers.values():
            controller.teardown()
        self._refresh_gauge()

    def status(self) -> Dict[str, Any]:
        return {
            "sync_available": self.sync_available,
            "topics": {topic: c.status() for topic, c in self._controllers.items()},
        }

    def _refresh_gauge(self) -> None:
        metrics.sync_available.set(1 if self.sync_available else 0)

    def _on_state(self, topic: str, state: SubscriptionState) -> None:
        if state is SubscriptionState.SUBSCRIBED:
            self._refresh_gauge()

    def _on_exhausted(self, topic: str) -> None:
        self._refresh_gauge()
        log.error(f"동기화 불가 상태: {topic}")
        for callback in list(self._unavailable_callbacks):
            try:
                callback(topic)
            except Exception as e:
                log.error(f"동기화 불가 콜백 오류: {e}")
