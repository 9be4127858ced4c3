"""
Realtime subscription controller for SafeGuard.

One controller owns the logical connection for one topic. It drives the
subscription state machine, reconnects with exponential backoff and
stops retrying once the configured number of consecutive failures has
been reached.

    idle -> connecting -> subscribed
                 |             |
                 v             v
               error -> reconnecting -> connecting
                 |
                 v (budget exhausted)
               error (exhausted)

teardown() moves any state to closed.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from safeguard.common.retry import backoff_delay
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from safeguard.ports.event_source import EventSourcePort

log = get_logger("safeguard.realtime")

EventHandler = Callable[[Dict[str, Any]], None]
StateListener = Callable[[str, "SubscriptionState"], None]

# call_later(delay, callback) -> 취소 가능한 핸들 (asyncio.TimerHandle 호환)
Scheduler = Callable[[float, Callable[[], None]], Any]

FAILURE_STATUSES = ("CHANNEL_ERROR", "TIMED_OUT", "CLOSED")

class SubscriptionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"

def _loop_call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)

class SubscriptionController:
    """토픽 단위 구독 컨트롤러"""

    def __init__(
        self,
        topic: str,
        source: EventSourcePort,
        *,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        call_later: Optional[Scheduler] = None
    ):
        """
        초기화합니다.

        Args:
            topic: 구독 토픽
            source: 이벤트 소스
            max_attempts: 연속 실패 허용 횟수 (도달하면 재연결 중단)
            base_delay: 재연결 기본 지연 (초)
            max_delay: 재연결 최대 지연 (초)
            call_later: 타이머 스케줄러 (None이면 실행 중인 이벤트 루프 사용)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.topic = topic
        self.source = source
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._call_later = call_later or _loop_call_later

        self.state = SubscriptionState.IDLE
        self.failures = 0
        self.exhausted = False
        self.last_error: Optional[str] = None

        # 연결 시도마다 증가; 이전 연결에서 늦게 도착한 콜백을 걸러낸다
        self._token = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._timer: Any = None

        self._handlers: List[EventHandler] = []
        self._exhausted_callbacks: List[Callable[[str], None]] = []
        self._state_listeners: List[StateListener] = []

    # ---- 등록 ----

    def add_handler(self, handler: EventHandler) -> Callable[[], None]:
        """
        이벤트 핸들러를 등록합니다.

        Returns:
            등록 해제 함수
        """
        self._handlers.append(handler)

        def _dispose() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _dispose

    def on_exhausted(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self._exhausted_callbacks.append(callback)
        return lambda: self._exhausted_callbacks.remove(callback) if callback in self._exhausted_callbacks else None

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._state_listeners.remove(listener) if listener in self._state_listeners else None

    # ---- 수명주기 ----

    def setup(self) -> None:
        """
        구독을 시작합니다.

        이미 구독 중이거나 연결/재연결 진행 중이면 아무 것도 하지 않습니다.
        idle, error(소진), closed 상태에서는 카운터를 초기화하고 새로 시작합니다.
        """
        if self.state in (SubscriptionState.SUBSCRIBED, SubscriptionState.CONNECTING, SubscriptionState.RECONNECTING):
            log.debug(f"구독 설정 생략: {self.topic} (state={self.state.value})")
            return

        self.failures = 0
        self.exhausted = False
        self.last_error = None
        self._connect()

    def teardown(self) -> None:
        """타이머를 취소하고 연결을 해제한 뒤 closed 상태로 전환합니다."""
        self._token += 1
        self._cancel_timer()
        self._release()
        self.failures = 0
        self.exhausted = False
        self._set_state(SubscriptionState.CLOSED)
        log.info(f"구독 해제: {self.topic}")

    # ---- 내부 ----

    def _set_state(self, state: SubscriptionState) -> None:
        if state is self.state:
            return
        self.state = state
        for listener in list(self._state_listeners):
            try:
                listener(self.topic, state)
            except Exception as e:
                log.error(f"상태 리스너 오류: {self.topic}: {e}")

    def _connect(self) -> None:
        self._token += 1
        token = self._token
        self._set_state(SubscriptionState.CONNECTING)
        log.info(f"구독 연결 중: {self.topic} (attempt={self.failures + 1}/{self.max_attempts})")

        try:
            unsubscribe = self.source.subscribe(
                self.topic,
                lambda event: self._on_event(token, event),
                lambda status, error=None: self._on_status(token, status, error),
            )
        except Exception as e:
            if token == self._token:
                self._handle_failure(f"subscribe raised: {e}")
            return

        if token != self._token:
            # subscribe 도중 동기적으로 실패/해제됨: 반환된 연결은 즉시 해제
            self._safe_call(unsubscribe)
            return
        self._unsubscribe = unsubscribe

    def _on_status(self, token: int, status: str, error: Any = None) -> None:
        if token != self._token:
            log.debug(f"이전 연결 상태 무시: {self.topic} {status}")
            return

        metrics.realtime_status.labels(topic=self.topic, status=status).inc()

        if status == "SUBSCRIBED":
            self.failures = 0
            self.last_error = None
            self._set_state(SubscriptionState.SUBSCRIBED)
            log.info(f"구독 완료: {self.topic}")
        elif status in FAILURE_STATUSES:
            reason = status if error is None else f"{status}: {error}"
            self._handle_failure(reason)
        else:
            log.warning(f"알 수 없는 구독 상태: {self.topic} {status}")

    def _on_event(self, token: int, event: Dict[str, Any]) -> None:
        if token != self._token or self.state is SubscriptionState.CLOSED:
            return

        metrics.realtime_events.labels(topic=self.topic).inc()
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                log.error(f"이벤트 핸들러 오류: {self.topic}: {e}")

    def _handle_failure(self, reason: str) -> None:
        self._token += 1
        self._release()
        self.failures += 1
        self.last_error = reason
        self._set_state(SubscriptionState.ERROR)

        if self.failures < self.max_attempts:
            delay = backoff_delay(self.failures - 1, self.base_delay, self.max_delay)
            log.warning(
                f"구독 오류: {self.topic} ({reason}), {delay:.1f}초 후 재연결 "
                f"({self.failures}/{self.max_attempts})"
            )
            self._set_state(SubscriptionState.RECONNECTING)
            metrics.reconnects.labels(topic=self.topic).inc()
            self._timer = self._call_later(delay, self._on_timer)
            return

        self.exhausted = True
        metrics.reconnect_exhausted.labels(topic=self.topic).inc()
        log.error(f"재연결 한도 초과: {self.topic} ({self.failures}회 연속 실패, 마지막 오류: {reason})")
        for callback in list(self._exhausted_callbacks):
            try:
                callback(self.topic)
            except Exception as e:
                log.error(f"재연결 한도 콜백 오류: {self.topic}: {e}")

    def _on_timer(self) -> None:
        self._timer = None
        if self.state is not SubscriptionState.RECONNECTING:
            return
        self._connect()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _release(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            self._safe_call(unsubscribe)

    def _safe_call(self, func: Callable[[], None]) -> None:
        try:
            func()
        except Exception as e:
            log.warning(f"연결 해제 오류: {self.topic}: {e}")

    def status(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "state": self.state.value,
            "failures": self.failures,
            "max_attempts": self.max_attempts,
            "exhausted": self.exhausted,
            "last_error": self.last_error,
            "handlers": len(self._handlers),
        }
