"""
실시간 구독 컨트롤러 테스트

상태 전이, 지수 백오프 재연결, 연속 실패 한도(서킷 브레이커),
늦게 도착한 이전 연결 콜백 무시를 검증합니다.
"""

import pytest

from safeguard.realtime.controller import SubscriptionController, SubscriptionState

TOPIC = "incident_changes"


@pytest.fixture
def controller(event_source, scheduler):
    return SubscriptionController(TOPIC, event_source, max_attempts=3, base_delay=1.0, max_delay=30.0, call_later=scheduler)


class TestLifecycle:
    """기본 수명주기 테스트"""

    def test_setup_connects(self, controller, event_source):
        controller.setup()

        assert controller.state is SubscriptionState.CONNECTING
        assert len(event_source.for_topic(TOPIC)) == 1

    def test_subscribed_status(self, controller, event_source):
        controller.setup()
        event_source.last(TOPIC).status("SUBSCRIBED")

        assert controller.state is SubscriptionState.SUBSCRIBED
        assert controller.failures == 0

    def test_setup_is_noop_while_active(self, controller, event_source):
        controller.setup()
        controller.setup()
        event_source.last(TOPIC).status("SUBSCRIBED")
        controller.setup()

        assert len(event_source.subscriptions) == 1

    def test_events_dispatched_to_handlers(self, controller, event_source):
        received = []
        controller.add_handler(received.append)
        controller.setup()
        event_source.last(TOPIC).status("SUBSCRIBED")

        event_source.last(TOPIC).emit({"eventType": "INSERT", "new": {"id": "a"}})

        assert received == [{"eventType": "INSERT", "new": {"id": "a"}}]

    def test_failing_handler_is_isolated(self, controller, event_source):
        received = []

        def broken(_):
            raise RuntimeError("handler failed")

        controller.add_handler(broken)
        controller.add_handler(received.append)
        controller.setup()
        event_source.last(TOPIC).emit({"eventType": "DELETE"})

        assert len(received) == 1
        assert controller.state is SubscriptionState.CONNECTING

    def test_handler_disposer(self, controller, event_source):
        received = []
        dispose = controller.add_handler(received.append)
        controller.setup()
        dispose()

        event_source.last(TOPIC).emit({"eventType": "INSERT"})

        assert received == []

    def test_teardown_closes(self, controller, event_source, scheduler):
        received = []
        controller.add_handler(received.append)
        controller.setup()
        sub = event_source.last(TOPIC)

        controller.teardown()
        sub.emit({"eventType": "INSERT"})

        assert controller.state is SubscriptionState.CLOSED
        assert sub.cancelled
        assert received == []

    def test_state_listener(self, controller, event_source):
        states = []
        controller.add_state_listener(lambda topic, state: states.append(state.value))

        controller.setup()
        event_source.last(TOPIC).status("SUBSCRIBED")
        controller.teardown()

        assert states == ["connecting", "subscribed", "closed"]

    def test_invalid_max_attempts(self, event_source):
        with pytest.raises(ValueError):
            SubscriptionController(TOPIC, event_source, max_attempts=0)


class TestReconnect:
    """재연결 테스트"""

    @pytest.mark.parametrize("status", ["CHANNEL_ERROR", "TIMED_OUT", "CLOSED"])
    def test_failure_schedules_reconnect(self, controller, event_source, scheduler, status):
        controller.setup()
        first = event_source.last(TOPIC)

        first.status(status, "boom")

        assert controller.state is SubscriptionState.RECONNECTING
        assert controller.failures == 1
        assert first.cancelled
        assert scheduler.delays == [1.0]
        assert status in controller.last_error

    def test_timer_reconnects(self, controller, event_source, scheduler):
        controller.setup()
        event_source.last(TOPIC).status("CHANNEL_ERROR")

        scheduler.fire_next()

        assert controller.state is SubscriptionState.CONNECTING
        assert len(event_source.for_topic(TOPIC)) == 2

    def test_success_resets_failures(self, controller, event_source, scheduler):
        controller.setup()
        event_source.last(TOPIC).status("CHANNEL_ERROR")
        scheduler.fire_next()
        event_source.last(TOPIC).status("SUBSCRIBED")

        assert controller.failures == 0
        assert controller.last_error is None

    def test_stale_connection_callbacks_ignored(self, controller, event_source, scheduler):
        """이전 연결에서 늦게 도착한 상태/이벤트는 무시"""
        received = []
        controller.add_handler(received.append)
        controller.setup()
        stale = event_source.last(TOPIC)
        stale.status("CHANNEL_ERROR")
        scheduler.fire_next()

        stale.status("SUBSCRIBED")
        stale.emit({"eventType": "INSERT"})
        stale.status("CHANNEL_ERROR")

        assert controller.state is SubscriptionState.CONNECTING
        assert controller.failures == 1
        assert received == []

    def test_unknown_status_ignored(self, controller, event_source):
        controller.setup()
        event_source.last(TOPIC).status("JOINING")

        assert controller.state is SubscriptionState.CONNECTING

    def test_teardown_cancels_pending_timer(self, controller, event_source, scheduler):
        controller.setup()
        event_source.last(TOPIC).status("CHANNEL_ERROR")
        timer = scheduler.pending[0]

        controller.teardown()

        assert timer.cancelled
        assert controller.state is SubscriptionState.CLOSED

    def test_subscribe_raising_counts_as_failure(self, scheduler):
        class BrokenSource:
            def subscribe(self, topic, on_event, on_status):
                raise ConnectionError("refused")

        controller = SubscriptionController(TOPIC, BrokenSource(), max_attempts=3, call_later=scheduler)
        controller.setup()

        assert controller.state is SubscriptionState.RECONNECTING
        assert "refused" in controller.last_error

    def test_synchronous_failure_releases_connection(self, scheduler):
        """subscribe 도중 동기적으로 실패하면 반환된 연결을 즉시 해제"""
        released = []

        class FailFastSource:
            def subscribe(self, topic, on_event, on_status):
                on_status("CHANNEL_ERROR", None)
                return lambda: released.append(topic)

        controller = SubscriptionController(TOPIC, FailFastSource(), max_attempts=3, call_later=scheduler)
        controller.setup()

        assert released == [TOPIC]
        assert controller.state is SubscriptionState.RECONNECTING


class TestCircuitBreaker:
    """연속 실패 한도 테스트"""

    def test_stops_after_max_attempts(self, controller, event_source, scheduler):
        """연속 3회 실패 후 재연결 중단"""
        exhausted = []
        controller.on_exhausted(exhausted.append)
        controller.setup()

        for _ in range(2):
            event_source.last(TOPIC).status("CHANNEL_ERROR")
            scheduler.fire_next()
        event_source.last(TOPIC).status("CHANNEL_ERROR")

        assert controller.exhausted
        assert controller.state is SubscriptionState.ERROR
        assert controller.failures == 3
        assert scheduler.pending == []
        assert scheduler.delays == [1.0, 2.0]
        assert exhausted == [TOPIC]
        assert len(event_source.for_topic(TOPIC)) == 3

    def test_backoff_capped(self, event_source, scheduler):
        controller = SubscriptionController(TOPIC, event_source, max_attempts=10, base_delay=1.0, max_delay=5.0, call_later=scheduler)
        controller.setup()

        for _ in range(5):
            event_source.last(TOPIC).status("TIMED_OUT")
            scheduler.fire_next()

        assert scheduler.delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_setup_after_exhaustion_restarts(self, controller, event_source, scheduler):
        controller.setup()
        for _ in range(2):
            event_source.last(TOPIC).status("CHANNEL_ERROR")
            scheduler.fire_next()
        event_source.last(TOPIC).status("CHANNEL_ERROR")
        assert controller.exhausted

        controller.setup()

        assert not controller.exhausted
        assert controller.failures == 0
        assert controller.state is SubscriptionState.CONNECTING

    def test_status_snapshot(self, controller):
        status = controller.status()

        assert status == {
            "topic": TOPIC,
            "state": "idle",
            "failures": 0,
            "max_attempts": 3,
            "exhausted": False,
            "last_error": None,
            "handlers": 0,
        }
