"""
Reactive incident store for SafeGuard.

The store holds the ordered local view of incident records
(most-recent-first) and notifies listeners synchronously after every
change. Records are frozen, so every write replaces a whole record.
"""

from typing import Callable, Dict, List, Optional

from safeguard.core.models import IncidentRecord
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.store")

StoreListener = Callable[[List[IncidentRecord]], None]

class IncidentStore:
    """사건 레코드 저장소"""

    def __init__(self, records: Optional[List[IncidentRecord]] = None):
        self._records: List[IncidentRecord] = []
        self._listeners: List[StoreListener] = []
        if records:
            self.set_all(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return self._index(record_id) is not None

    def _index(self, record_id: str) -> Optional[int]:
        for i, record in enumerate(self._records):
            if record.id == record_id:
                return i
        return None

    def _notify(self) -> None:
        snapshot = list(self._records)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.error(f"스토어 리스너 오류: {e}")

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """
        변경 리스너를 등록합니다.

        Returns:
            등록 해제 함수
        """
        self._listeners.append(listener)

        def _dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _dispose

    def get(self, record_id: str) -> Optional[IncidentRecord]:
        idx = self._index(record_id)
        return None if idx is None else self._records[idx]

    def list(self) -> List[IncidentRecord]:
        return list(self._records)

    def set_all(self, records: List[IncidentRecord]) -> None:
        """전체 레코드를 교체합니다 (같은 id는 처음 것만 유지)."""
        seen = set()
        deduped = []
        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)
            deduped.append(record)
        self._records = deduped
        self._notify()

    def add(self, record: IncidentRecord) -> None:
        """
        레코드를 맨 앞에 추가합니다.

        같은 id가 이미 있으면 제자리 교체로 처리합니다.
        """
        idx = self._index(record.id)
        if idx is not None:
            self._records[idx] = record
        else:
            self._records.insert(0, record)
        self._notify()

    def replace(self, record: IncidentRecord) -> bool:
        idx = self._index(record.id)
        if idx is None:
            return False
        self._records[idx] = record
        self._notify()
        return True

    def upsert(self, record: IncidentRecord) -> None:
        if not self.replace(record):
            self.add(record)

    def remove(self, record_id: str) -> Optional[IncidentRecord]:
        idx = self._index(record_id)
        if idx is None:
            return None
        removed = self._records.pop(idx)
        self._notify()
        return removed

    def swap(self, old_id: str, record: IncidentRecord) -> None:
        """
        임시 레코드를 정식 레코드로 교체합니다.

        정식 id가 이미 실시간 이벤트로 들어와 있으면 임시 레코드만 제거합니다.
        """
        old_idx = self._index(old_id)
        existing_idx = self._index(record.id) if record.id != old_id else None

        if existing_idx is not None:
            self._records[existing_idx] = record
            if old_idx is not None:
                self._records.pop(old_idx)
        elif old_idx is not None:
            self._records[old_idx] = record
        else:
            self._records.insert(0, record)
        self._notify()

    def stats(self) -> Dict[str, int]:
        return {
            "total": len(self._records),
            "verified": sum(1 for r in self._records if r.is_verified),
            "urgent": sum(1 for r in self._records if r.is_urgent),
            "resolved": sum(1 for r in self._records if r.is_resolved),
            "temporary": sum(1 for r in self._records if r.is_temporary),
        }
