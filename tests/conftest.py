"""
테스트 설정 및 픽스처

이 모듈은 pytest 설정과 공통 픽스처를 제공합니다.
"""

import pytest
import asyncio
import tempfile
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

from safeguard.adapters.storage import InMemoryKVStore, SafeKVStore
from safeguard.core.models import ApiResult, IncidentRecord
from safeguard.dispatch import NotificationEngine, PreferenceRepository
from safeguard.dispatch.channels import HapticChannel, InAppChannel, SoundChannel
from safeguard.settings import Settings


class FakeSubscription:
    """가짜 이벤트 소스의 구독 한 건"""

    def __init__(self, topic: str, on_event: Callable, on_status: Callable):
        self.topic = topic
        self.on_event = on_event
        self.on_status = on_status
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def emit(self, event: Dict[str, Any]) -> None:
        self.on_event(event)

    def status(self, status: str, error: Any = None) -> None:
        self.on_status(status, error)


class FakeEventSource:
    """subscribe 호출을 기록하는 이벤트 소스"""

    def __init__(self):
        self.subscriptions: List[FakeSubscription] = []

    def subscribe(self, topic, on_event, on_status):
        sub = FakeSubscription(topic, on_event, on_status)
        self.subscriptions.append(sub)
        return sub.cancel

    def for_topic(self, topic: str) -> List[FakeSubscription]:
        return [s for s in self.subscriptions if s.topic == topic]

    def last(self, topic: str) -> FakeSubscription:
        return self.for_topic(topic)[-1]


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """call_later 대체: 타이머를 기록만 하고 fire_next()로 실행"""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def delays(self) -> List[float]:
        return [t.delay for t in self.timers]

    def fire_next(self) -> None:
        timer = self.pending[0]
        timer.fired = True
        timer.callback()


class FakePushProvider:
    """호출을 기록하는 푸시 제공자"""

    def __init__(self, state: str = "granted", request_result: Optional[str] = None):
        self.state = state
        self.request_result = request_result
        self.shown: List[Dict[str, Any]] = []
        self.show_error: Optional[BaseException] = None
        self.foreground: List[Callable] = []
        self.permission_requests = 0

    def permission_state(self) -> str:
        return self.state

    async def request_permission(self) -> str:
        self.permission_requests += 1
        if self.request_result is not None:
            self.state = self.request_result
        return self.state

    async def get_token(self) -> Optional[str]:
        return "token" if self.state == "granted" else None

    def on_foreground_message(self, callback):
        self.foreground.append(callback)
        return lambda: self.foreground.remove(callback)

    async def show(self, title, body, *, tag, data, require_interaction=False, silent=False):
        if self.show_error is not None:
            raise self.show_error
        self.shown.append({
            "title": title,
            "body": body,
            "tag": tag,
            "data": data,
            "require_interaction": require_interaction,
            "silent": silent,
        })


class MutableClock:
    """테스트용 벽시계"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class MonotonicClock:
    """테스트용 monotonic 시계"""

    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class Recorder:
    """호출 인자를 기록하는 콜백"""

    def __init__(self):
        self.calls: List[tuple] = []

    def __call__(self, *args) -> None:
        self.calls.append(args)


def _make_record(record_id: str = "inc-1", **fields) -> IncidentRecord:
    data = {
        "id": record_id,
        "title": "Phone snatched near taxi rank",
        "incident_type": "theft",
        "severity": "medium",
        "location_address": "Taxi rank, Eldorado Park",
        "location_point": "POINT(27.9388 -26.3052)",
    }
    data.update(fields)
    return IncidentRecord.model_validate(data)


def _make_row(record_id: str = "inc-1", **fields) -> Dict[str, Any]:
    data = {
        "id": record_id,
        "reporter_id": "profile-9",
        "title": "Phone snatched near taxi rank",
        "incident_type": "theft",
        "severity": "medium",
        "location_address": "Taxi rank, Eldorado Park",
        "location_point": "POINT(27.9388 -26.3052)",
        "verification_count": 0,
        "is_verified": False,
        "is_urgent": False,
        "is_resolved": False,
        "created_at": "2025-06-01T10:00:00+00:00",
        "updated_at": "2025-06-01T10:00:00+00:00",
    }
    data.update(fields)
    return data


@pytest.fixture
def temp_db_path():
    """임시 데이터베이스 파일 경로"""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        temp_path = f.name
    yield temp_path
    # 테스트 후 파일 정리
    if os.path.exists(temp_path):
        os.unlink(temp_path)


@pytest.fixture
def sample_settings():
    """테스트용 설정"""
    settings = Settings()
    settings.observability.service_name = "test-service"
    settings.observability.build_version = "1.0.0"
    settings.observability.log_level = "INFO"
    settings.observability.http_port = 8080
    return settings


@pytest.fixture
def make_record():
    """IncidentRecord 팩토리"""
    return _make_record


@pytest.fixture
def make_row():
    """백엔드 원시 행 팩토리"""
    return _make_row


@pytest.fixture
def event_source():
    return FakeEventSource()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def wall_clock():
    """낮 12시에 고정된 벽시계"""
    return MutableClock(datetime(2025, 6, 1, 12, 0))


@pytest.fixture
def mono_clock():
    return MonotonicClock()


@pytest.fixture
def kv_store():
    return InMemoryKVStore()


@pytest.fixture
def repository(kv_store):
    return PreferenceRepository(SafeKVStore(kv_store))


@pytest.fixture
def sound_player():
    return Recorder()


@pytest.fixture
def vibrator():
    return Recorder()


@pytest.fixture
def in_app_sink():
    return Recorder()


@pytest.fixture
def engine(repository, push_provider, wall_clock, sound_player, vibrator, in_app_sink):
    """초기화되지 않은 알림 엔진 (푸시 권한 granted)"""
    in_app = InAppChannel()
    in_app.connect(in_app_sink)
    return NotificationEngine(
        repository,
        push_provider,
        in_app=in_app,
        sound=SoundChannel(sound_player),
        haptic=HapticChannel(vibrator),
        app_origin="https://safeguard.example",
        clock=wall_clock,
    )


@pytest.fixture
def mock_backend():
    """테스트용 백엔드 (모든 메서드가 AsyncMock)"""
    backend = AsyncMock()
    backend.get_incidents.return_value = ApiResult(data=[])
    return backend


# pytest 설정
def pytest_configure(config):
    """pytest 설정"""
    config.addinivalue_line(
        "markers", "asyncio: 비동기 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "slow: 느린 테스트 마커"
    )
    config.addinivalue_line(
        "markers", "integration: 통합 테스트 마커"
    )


def pytest_collection_modifyitems(config, items):
    """테스트 아이템 수정"""
    for item in items:
        # 비동기 테스트에 asyncio 마커 추가
        if asyncio.iscoroutinefunction(getattr(item, "function", None)):
            item.add_marker(pytest.mark.asyncio)

        # 통합 테스트 마커 추가
        if "integration" in item.name:
            item.add_marker(pytest.mark.integration)
