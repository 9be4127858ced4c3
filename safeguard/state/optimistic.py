"""
Optimistic update manager for SafeGuard.

Local writes are applied to the incident store immediately and tracked
by correlation id until the backend confirms or rejects them. Each
tracked entry is an immutable command carrying the snapshot needed to
undo it, so a rollback never depends on captured mutable state.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from safeguard.core.models import IncidentRecord
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from .store import IncidentStore

log = get_logger("safeguard.optimistic")

class UpdateKind(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

@dataclass(frozen=True)
class OptimisticUpdate:
    """
    추적 중인 낙관적 변경.

    Attributes:
        id: 상관관계 id
        kind: 변경 종류
        previous: 변경 전 스냅샷 (ADD이면 None)
        speculative: 변경 후 예상 스냅샷 (DELETE이면 None)
        created_at: 적용 시각 (monotonic 초)
    """
    id: str
    kind: UpdateKind
    previous: Optional[IncidentRecord] = None
    speculative: Optional[IncidentRecord] = None
    created_at: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if self.kind is UpdateKind.ADD and self.speculative is None:
            raise ValueError("ADD update requires a speculative record")
        if self.kind is UpdateKind.UPDATE and self.speculative is None:
            raise ValueError("UPDATE update requires a speculative record")
        if self.kind is UpdateKind.DELETE and self.previous is None:
            raise ValueError("DELETE update requires a previous record")

    @classmethod
    def add(cls, update_id: str, record: IncidentRecord, **kwargs) -> "OptimisticUpdate":
        return cls(id=update_id, kind=UpdateKind.ADD, speculative=record, **kwargs)

    @classmethod
    def update(cls, update_id: str, previous: IncidentRecord, speculative: IncidentRecord, **kwargs) -> "OptimisticUpdate":
        return cls(id=update_id, kind=UpdateKind.UPDATE, previous=previous, speculative=speculative, **kwargs)

    @classmethod
    def delete(cls, update_id: str, previous: IncidentRecord, **kwargs) -> "OptimisticUpdate":
        return cls(id=update_id, kind=UpdateKind.DELETE, previous=previous, **kwargs)

    def apply(self, store: IncidentStore) -> None:
        if self.kind is UpdateKind.ADD:
            store.add(self.speculative)
        elif self.kind is UpdateKind.UPDATE:
            store.upsert(self.speculative)
        else:
            store.remove(self.previous.id)

    def reverse(self, store: IncidentStore) -> None:
        if self.kind is UpdateKind.ADD:
            store.remove(self.speculative.id)
        elif self.kind is UpdateKind.UPDATE:
            if self.previous is not None:
                store.upsert(self.previous)
            else:
                store.remove(self.speculative.id)
        else:
            store.upsert(self.previous)

class OptimisticUpdateManager:
    """낙관적 업데이트 관리자"""

    def __init__(
        self,
        store: IncidentStore,
        expiry_sec: float = 30.0,
        sweep_interval_sec: float = 5.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        초기화합니다.

        Args:
            store: 변경을 반영할 사건 저장소
            expiry_sec: 추적 만료 시간 (초)
            sweep_interval_sec: 만료 정리 주기 (초)
            clock: 현재 시각 함수 (monotonic 초)
        """
        self.store = store
        self.expiry_sec = expiry_sec
        self.sweep_interval_sec = sweep_interval_sec
        self.clock = clock
        self._pending: Dict[str, OptimisticUpdate] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def _track(self, update: OptimisticUpdate) -> None:
        self._pending[update.id] = update
        metrics.optimistic_pending.set(len(self._pending))

    def _untrack(self, update_id: str) -> Optional[OptimisticUpdate]:
        update = self._pending.pop(update_id, None)
        metrics.optimistic_pending.set(len(self._pending))
        return update

    def apply(self, update: OptimisticUpdate) -> OptimisticUpdate:
        """
        변경을 즉시 저장소에 반영하고 추적합니다.

        같은 id가 이미 추적 중이면 최초의 previous 스냅샷을 유지한 채
        speculative 스냅샷만 교체합니다.

        Returns:
            실제로 추적되는 업데이트
        """
        update = replace(update, created_at=self.clock())

        existing = self._pending.get(update.id)
        if existing is not None:
            if existing.kind is UpdateKind.ADD and update.kind is UpdateKind.UPDATE:
                # 아직 확정되지 않은 추가를 다시 수정한 경우 되돌리기는 여전히 제거
                update = replace(update, kind=UpdateKind.ADD, previous=None)
            elif existing.previous is not None:
                update = replace(update, previous=existing.previous)
            log.debug(f"낙관적 업데이트 재적용: {update.id}")

        update.apply(self.store)
        self._track(update)
        metrics.optimistic_applied.labels(kind=update.kind.value).inc()
        log.debug(f"낙관적 업데이트 적용: {update.id} ({update.kind.value})")
        return update

    def confirm(self, update_id: str) -> bool:
        """추적을 종료합니다. 저장소는 변경하지 않습니다."""
        if self._untrack(update_id) is None:
            log.warning(f"확정할 낙관적 업데이트 없음: {update_id}")
            return False
        metrics.optimistic_confirmed.inc()
        log.debug(f"낙관적 업데이트 확정: {update_id}")
        return True

    def rollback(self, update_id: str, reason: str = "") -> bool:
        """
        변경을 되돌리고 추적을 종료합니다.

        두 번째 호출은 경고만 남기고 저장소를 변경하지 않습니다.
        """
        update = self._untrack(update_id)
        if update is None:
            log.warning(f"되돌릴 낙관적 업데이트 없음: {update_id} (reason={reason})")
            return False

        update.reverse(self.store)
        metrics.optimistic_rolled_back.labels(kind=update.kind.value).inc()
        log.info(f"낙관적 업데이트 롤백: {update_id} ({update.kind.value}) reason={reason}")
        return True

    def supersede(self, update_id: str) -> bool:
        """원격 이벤트가 먼저 도착한 경우 되돌리지 않고 추적만 종료합니다."""
        if self._untrack(update_id) is None:
            return False
        log.debug(f"낙관적 업데이트가 원격 이벤트로 대체됨: {update_id}")
        return True

    def rollback_all(self, reason: str = "") -> int:
        """추적 중인 모든 변경을 최신 것부터 되돌립니다."""
        ids = sorted(self._pending, key=lambda i: self._pending[i].created_at, reverse=True)
        count = 0
        for update_id in ids:
            if self.rollback(update_id, reason):
                count += 1
        if count:
            log.warning(f"낙관적 업데이트 {count}개 일괄 롤백 reason={reason}")
        return count

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """
        만료된 추적 항목을 되돌리지 않고 제거합니다.

        Returns:
            제거된 id 목록
        """
        now = self.clock() if now is None else now
        expired = [
            update_id for update_id, update in self._pending.items()
            if now - update.created_at >= self.expiry_sec
        ]
        for update_id in expired:
            self._untrack(update_id)
            metrics.optimistic_expired.inc()
            log.warning(f"낙관적 업데이트 만료 (확정 없이 {self.expiry_sec:.0f}초 경과): {update_id}")
        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_sec)
            try:
                self.sweep()
            except Exception as e:
                log.error(f"낙관적 업데이트 정리 오류: {e}")

    def start(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            log.info("낙관적 업데이트 정리 작업 시작")

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        log.info("낙관적 업데이트 정리 작업 중지")

    def pending(self) -> List[OptimisticUpdate]:
        return list(self._pending.values())

    def is_pending(self, update_id: str) -> bool:
        return update_id in self._pending
