"""
Common 모듈 단위 테스트

이 모듈은 지리 유틸리티, 재시도 로직, 요청 스코프의 기능을 테스트합니다.
"""

import pytest
import asyncio
from unittest.mock import AsyncMock, patch
from hypothesis import given, strategies as st
from safeguard.common.geo import BoundingBox, haversine_meters, validate_coordinates
from safeguard.common.retry import backoff_delay, retry_with_backoff
from safeguard.common.scope import RequestScope, ScopeDisposedError


class TestHaversineDistance:
    """Haversine 거리 계산 테스트"""

    def test_haversine_same_point(self):
        """같은 지점 간 거리 테스트"""
        assert haversine_meters(-26.3054, 27.9389, -26.3054, 27.9389) == 0.0

    def test_haversine_johannesburg_to_pretoria(self):
        """요하네스버그에서 프리토리아까지 거리 테스트"""
        # 실제 거리는 약 54km
        distance = haversine_meters(-26.2041, 28.0473, -25.7479, 28.2293)
        assert 50_000 <= distance <= 58_000

    def test_haversine_equator(self):
        """적도상의 거리 테스트"""
        # 1도는 약 111km
        assert 110_000 <= haversine_meters(0, 0, 0, 1) <= 112_000

    @given(
        lat1=st.floats(min_value=-35, max_value=-22), lon1=st.floats(min_value=16, max_value=33),
        lat2=st.floats(min_value=-35, max_value=-22), lon2=st.floats(min_value=16, max_value=33),
    )
    def test_haversine_symmetric_and_bounded(self, lat1, lon1, lat2, lon2):
        """국가 범위 안의 거리는 대칭이며 음수가 아님"""
        d1 = haversine_meters(lat1, lon1, lat2, lon2)
        d2 = haversine_meters(lat2, lon2, lat1, lon1)
        assert d1 == pytest.approx(d2, abs=1e-6)
        assert 0 <= d1 <= 3_000_000


class TestBoundingBox:
    """경계 상자 테스트"""

    def test_contains_inclusive(self):
        box = BoundingBox(min_lat=-1, max_lat=1, min_lon=-2, max_lon=2)

        assert box.contains(0, 0)
        assert box.contains(1, 2)
        assert not box.contains(1.01, 0)

    def test_validate_coordinates(self):
        assert validate_coordinates(-26.3, 27.9)
        assert validate_coordinates(90, 180)
        assert not validate_coordinates(91, 0)
        assert not validate_coordinates(0, -181)
        assert not validate_coordinates(float("nan"), 0)


class TestBackoffDelay:
    """백오프 지연 계산 테스트"""

    def test_doubles_until_cap(self):
        assert [backoff_delay(i, 1.0, 30.0) for i in range(7)] == [1, 2, 4, 8, 16, 30, 30]

    def test_large_attempt_does_not_overflow(self):
        assert backoff_delay(10_000, 1.0, 30.0) == 30.0

    def test_negative_attempt_treated_as_zero(self):
        assert backoff_delay(-3, 2.0, 30.0) == 2.0


class TestRetryWithBackoff:
    """백오프와 함께 재시도 테스트"""

    @pytest.mark.asyncio
    async def test_retry_with_backoff_success_first_attempt(self):
        """첫 번째 시도에서 성공 테스트"""
        func = AsyncMock(return_value="success")

        result = await retry_with_backoff(func, max_retries=3)

        assert result == "success"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_with_backoff_success_after_retries(self):
        """재시도 후 성공 테스트"""
        func = AsyncMock(side_effect=[Exception("Temporary error"), Exception("Temporary error"), "success"])

        with patch("safeguard.common.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry_with_backoff(func, max_retries=3, jitter=False)

        assert result == "success"
        assert func.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_with_backoff_max_retries_exceeded(self):
        """최대 재시도 횟수 초과 테스트"""
        func = AsyncMock(side_effect=Exception("Permanent error"))

        with patch("safeguard.common.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(Exception, match="Permanent error"):
                await retry_with_backoff(func, max_retries=2)

        assert func.await_count == 3  # 1번 시도 + 2번 재시도

    @pytest.mark.asyncio
    async def test_retry_only_on_selected_exceptions(self):
        """재시도 대상이 아닌 예외는 즉시 전파"""
        func = AsyncMock(side_effect=KeyError("no"))

        with pytest.raises(KeyError):
            await retry_with_backoff(func, max_retries=3, retry_on=(ConnectionError,))

        assert func.await_count == 1


class TestRequestScope:
    """요청 스코프 테스트"""

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        scope = RequestScope("screen")

        async def work():
            return 42

        assert await scope.run(work()) == 42
        assert scope.active == 0

    @pytest.mark.asyncio
    async def test_dispose_cancels_pending_tasks(self):
        scope = RequestScope("screen")
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        task = scope.spawn(slow())
        await started.wait()
        assert scope.active == 1

        scope.dispose()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert scope.disposed

    @pytest.mark.asyncio
    async def test_run_returns_none_after_dispose(self):
        """폐기된 뒤 도착한 결과는 보이지 않음"""
        scope = RequestScope("screen")
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "late"

        runner = asyncio.ensure_future(scope.run(work()))
        await asyncio.sleep(0)
        scope.dispose()

        assert await runner is None

    @pytest.mark.asyncio
    async def test_spawn_after_dispose_raises(self):
        scope = RequestScope("screen")
        scope.dispose()

        async def work():
            return 1

        with pytest.raises(ScopeDisposedError):
            scope.spawn(work())
