"""
Request scopes for SafeGuard.

A RequestScope owns the tasks started on behalf of one consumer (a
screen, a widget). Disposing it cancels outstanding work and makes
late results invisible to the consumer.
"""

import asyncio
from typing import Awaitable, Optional, Set, TypeVar

from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.scope")

T = TypeVar('T')

class ScopeDisposedError(RuntimeError):
    """폐기된 스코프에서 작업을 시작하려 할 때 발생"""

class RequestScope:
    """요청 스코프"""

    def __init__(self, name: str = "scope"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def spawn(self, coro: Awaitable[T]) -> "asyncio.Task[T]":
        """
        스코프에 속한 태스크를 시작합니다.

        Raises:
            ScopeDisposedError: 이미 폐기된 스코프인 경우
        """
        if self._disposed:
            # 코루틴 미실행 경고 방지
            close = getattr(coro, "close", None)
            if close:
                close()
            raise ScopeDisposedError(f"scope '{self.name}' is disposed")

        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, coro: Awaitable[T]) -> Optional[T]:
        """
        스코프 안에서 작업을 실행하고 결과를 반환합니다.

        작업 도중 스코프가 폐기되면 None을 반환합니다.
        """
        task = self.spawn(coro)
        try:
            result = await task
        except asyncio.CancelledError:
            if self._disposed:
                return None
            raise
        return None if self._disposed else result

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            log.debug(f"스코프 폐기: {self.name}, 취소된 작업 {len(pending)}개")

    @property
    def active(self) -> int:
        return sum(1 for t in self._tasks if not t.done())
