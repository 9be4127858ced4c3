"""
Incident synchronization orchestrator for SafeGuard.

This module coordinates the realtime hub, the incident store, the
optimistic update manager, the backend API and the notification engine:

- remote change events are applied to the store (deduplicated by record
  id) and turned into notification candidates
- user actions (report, verify) are applied optimistically, sent to the
  backend and then confirmed or rolled back
- losing realtime connectivity for good rolls back every pending write
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from safeguard.common.scope import RequestScope
from safeguard.core.coordinates import resolve_coordinates
from safeguard.core.errors import classify_mutation_error
from safeguard.core.models import (
    ApiResult,
    ChangeEvent,
    Coordinates,
    IncidentDraft,
    IncidentRecord,
    IncidentType,
    MutationError,
    NotificationLocation,
    Severity,
    VerificationType,
    parse_timestamp,
)
from safeguard.core.verification import apply_verification, counts_toward_threshold
from safeguard.dispatch.engine import NotificationEngine
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from safeguard.ports.backend import BackendPort
from safeguard.realtime.hub import INCIDENT_CHANGES, URGENT_ALERTS, RealtimeHub
from safeguard.state.optimistic import OptimisticUpdate, OptimisticUpdateManager
from safeguard.state.store import IncidentStore

log = get_logger("safeguard.sync")

ALREADY_VERIFIED_MESSAGE = "You have already verified this incident"

# 심각도 -> 알림 우선순위
SEVERITY_PRIORITY = {
    "critical": "urgent",
    "high": "high",
}

def _error(kind: str, message: str, detail: Optional[str] = None) -> ApiResult:
    return ApiResult(error=MutationError(kind=kind, message=message, detail=detail))

class IncidentSync:
    """사건 동기화 오케스트레이터"""

    def __init__(self,
                 store: IncidentStore,
                 optimistic: OptimisticUpdateManager,
                 hub: RealtimeHub,
                 engine: NotificationEngine,
                 backend: BackendPort,
                 *,
                 reporter_id: Optional[str] = None,
                 gazetteer: Optional[Mapping[str, Coordinates]] = None):
        """
        초기화합니다.

        Args:
            store: 사건 저장소
            optimistic: 낙관적 업데이트 관리자
            hub: 실시간 구독 허브
            engine: 알림 전달 엔진
            backend: 백엔드 API
            reporter_id: 로그인 사용자의 프로필 id (없으면 신고/검증 불가)
            gazetteer: 좌표 해석용 지명 사전
        """
        self.store = store
        self.optimistic = optimistic
        self.hub = hub
        self.engine = engine
        self.backend = backend
        self.reporter_id = reporter_id
        self.gazetteer = gazetteer

        self._scope = RequestScope("incident_sync")
        self._disposers: List = []
        self._running = False

        log.info("사건 동기화 오케스트레이터 초기화 완료")

    # ---- 수명주기 ----

    def start(self) -> None:
        """구독 핸들러를 등록하고 실시간 구독과 만료 정리를 시작합니다."""
        if self._running:
            return
        if self._scope.disposed:
            self._scope = RequestScope("incident_sync")

        self._disposers = [
            self.hub.controller(INCIDENT_CHANGES).add_handler(self.handle_incident_change),
            self.hub.controller(URGENT_ALERTS).add_handler(self.handle_urgent_alert),
            self.hub.on_sync_unavailable(self._on_sync_unavailable),
        ]
        self.optimistic.start()
        self.hub.setup_all()
        self._running = True
        log.info("사건 동기화 시작")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.hub.teardown_all()
        for dispose in self._disposers:
            dispose()
        self._disposers = []
        self._scope.dispose()
        await self.optimistic.stop()
        log.info("사건 동기화 중지")

    @property
    def running(self) -> bool:
        return self._running

    def _on_sync_unavailable(self, topic: str) -> None:
        count = self.optimistic.rollback_all(reason=f"sync unavailable ({topic})")
        log.error(f"실시간 동기화 불가: {topic}, 롤백된 낙관적 업데이트 {count}개")

    # ---- 레코드 변환 ----

    def to_record(self, raw: Mapping[str, Any]) -> Optional[IncidentRecord]:
        """
        원시 행을 좌표가 해석된 IncidentRecord로 변환합니다.

        Returns:
            레코드 또는 None (필수 필드 누락 등 유효하지 않은 경우)
        """
        resolution = resolve_coordinates(raw, self.gazetteer)
        data = dict(raw)
        data["extracted_coordinates"] = resolution.coordinates
        data["coordinate_extraction"] = resolution
        try:
            return IncidentRecord.model_validate(data)
        except ValidationError as e:
            log.warning(f"유효하지 않은 사건 레코드 무시: id={raw.get('id')} ({e.error_count()}개 오류)")
            return None

    def _keep_resolved(self, record: IncidentRecord) -> IncidentRecord:
        """해결된 레코드는 해결되지 않은 상태로 되돌아가지 않습니다."""
        current = self.store.get(record.id)
        if current is not None and current.is_resolved and not record.is_resolved:
            log.warning(f"해결됨 -> 미해결 변경 무시: {record.id}")
            return record.model_copy(update={"is_resolved": True, "resolved_at": current.resolved_at})
        return record

    def _apply_remote(self, record: IncidentRecord) -> IncidentRecord:
        record = self._keep_resolved(record)
        self.optimistic.supersede(record.id)
        self.store.upsert(record)
        return record

    # ---- 실시간 핸들러 ----

    def _notify(self, record: IncidentRecord, *, type: str, title: str, message: str, priority: str) -> None:
        if self._scope.disposed:
            return

        coords = record.extracted_coordinates
        location = None
        if coords is not None:
            location = NotificationLocation(
                latitude=coords.latitude,
                longitude=coords.longitude,
                address=record.location_address or "Unknown location",
            )

        data = record.model_dump(mode="json", exclude={"coordinate_extraction"})
        data["incident_id"] = record.id
        if coords is not None:
            data["extracted_latitude"] = coords.latitude
            data["extracted_longitude"] = coords.longitude

        task = self._scope.spawn(self.engine.show_notification(
            type, title, message,
            priority=priority,
            location=location,
            action_url="/",
            data=data,
        ))
        task.add_done_callback(self._notification_done)

    @staticmethod
    def _notification_done(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            log.error(f"알림 전달 작업 오류: {task.exception()}")

    def _parse_event(self, raw: Dict[str, Any], topic: str) -> Optional[ChangeEvent]:
        try:
            return ChangeEvent.model_validate(raw)
        except ValidationError as e:
            log.warning(f"변경 이벤트 형식 오류 ({topic}): {e.error_count()}개 오류")
            return None

    def handle_incident_change(self, raw: Dict[str, Any]) -> None:
        """
        incident_changes 토픽 이벤트를 처리합니다.

        INSERT는 기존 id가 있으면 교체로 처리하며 새 사건일 때만 알림을 만듭니다.
        UPDATE는 검증/해결 상태 전환 시 알림을 만듭니다. DELETE는 레코드를 제거합니다.
        """
        event = self._parse_event(raw, INCIDENT_CHANGES)
        if event is None:
            return

        if event.event_type == "DELETE":
            record_id = event.old.get("id")
            if not record_id:
                log.warning("DELETE 이벤트에 id 없음")
                return
            self.optimistic.supersede(record_id)
            if self.store.remove(record_id) is not None:
                log.info(f"사건 삭제 반영: {record_id}")
            return

        record = self.to_record(event.new)
        if record is None:
            return

        if event.event_type == "INSERT":
            is_new = record.id not in self.store
            record = self._apply_remote(record)
            if not is_new:
                log.debug(f"중복 INSERT를 교체로 처리: {record.id}")
                return
            log.info(f"새 사건 반영: {record.id} ({record.severity})")
            self._notify(
                record,
                type="incident",
                title=f"New {record.severity} incident reported",
                message=record.title,
                priority=SEVERITY_PRIORITY.get(record.severity, "medium"),
            )
            return

        # UPDATE
        previous = self.store.get(record.id)
        old = dict(event.old)
        was_verified = old.get("is_verified", previous.is_verified if previous else False)
        was_resolved = old.get("is_resolved", previous.is_resolved if previous else False)

        record = self._apply_remote(record)

        if record.is_verified and not was_verified:
            self._notify(
                record,
                type="verification",
                title="Incident Verified",
                message=f"{record.title} has been verified by the community",
                priority="medium",
            )
        if record.is_resolved and not was_resolved:
            self._notify(
                record,
                type="incident",
                title="Incident Resolved",
                message=f"{record.title} has been marked as resolved",
                priority="low",
            )

    def handle_urgent_alert(self, raw: Dict[str, Any]) -> None:
        """urgent_alerts 토픽: 긴급 사건 INSERT를 긴급 안전 알림으로 전달합니다."""
        event = self._parse_event(raw, URGENT_ALERTS)
        if event is None or event.event_type != "INSERT" or not event.new.get("is_urgent"):
            return

        record = self.to_record(event.new)
        if record is None:
            return

        log.warning(f"긴급 안전 알림: {record.id}")
        self._notify(
            record,
            type="safety_alert",
            title="URGENT SAFETY ALERT",
            message=f"{record.title} - {record.location_address}",
            priority="urgent",
        )

    # ---- 사용자 동작 ----

    async def report_incident(self, draft: Union[IncidentDraft, Dict[str, Any]]) -> ApiResult:
        """
        사건을 신고합니다.

        임시 레코드(temp-<uuid>)를 즉시 저장소에 추가하고, 백엔드가 정식
        레코드를 반환하면 교체합니다. 실패하면 임시 레코드를 제거합니다.

        Returns:
            data에 정식 IncidentRecord, 또는 분류된 error
        """
        if self.reporter_id is None:
            return ApiResult(error=classify_mutation_error(status=401, message="Must be logged in to report incidents"))

        try:
            if not isinstance(draft, IncidentDraft):
                draft = IncidentDraft.model_validate(draft)
        except ValidationError as e:
            return _error("unknown", "The report is missing required information", detail=str(e))

        payload = draft.model_dump()
        payload["reporter_id"] = self.reporter_id
        payload["location_point"] = f"POINT({draft.longitude} {draft.latitude})"

        temp_id = f"temp-{uuid.uuid4()}"
        temp = self.to_record({**payload, "id": temp_id})
        if temp is None:
            return _error("unknown", "The report could not be prepared")
        self.optimistic.apply(OptimisticUpdate.add(temp_id, temp))

        try:
            result = await self.backend.create_incident(payload)
        except Exception as e:
            result = ApiResult(error=classify_mutation_error(e))

        record = self.to_record(result.data) if result.ok and isinstance(result.data, dict) else None
        if record is None:
            error = result.error or classify_mutation_error(message="backend returned no record")
            self.optimistic.rollback(temp_id, reason=error.kind)
            metrics.mutation_failures.labels(operation="report_incident", kind=error.kind).inc()
            return ApiResult(error=error)

        self.store.swap(temp_id, record)
        self.optimistic.confirm(temp_id)
        log.info(f"사건 신고 완료: {record.id}")
        return ApiResult(data=record)

    async def verify_incident_report(
        self,
        incident_id: str,
        verification_type: VerificationType,
        notes: Optional[str] = None
    ) -> ApiResult:
        """
        사건을 검증합니다.

        confirm은 서버 트리거와 같은 규칙으로 검증 횟수를 낙관적으로 올립니다.
        성공하면 권위 있는 레코드를 다시 조회해 반영하고, 실패하면 롤백합니다.
        """
        if self.reporter_id is None:
            return ApiResult(error=classify_mutation_error(status=401, message="Must be logged in to verify incidents"))

        current = self.store.get(incident_id)
        applied = False
        if current is not None and counts_toward_threshold(verification_type):
            speculative = apply_verification(current, verification_type)
            self.optimistic.apply(OptimisticUpdate.update(incident_id, current, speculative))
            applied = True

        try:
            result = await self.backend.insert_verification(incident_id, verification_type, notes)
        except Exception as e:
            result = ApiResult(error=classify_mutation_error(e))

        if not result.ok:
            error = result.error
            if applied and self.optimistic.is_pending(incident_id):
                self.optimistic.rollback(incident_id, reason=error.kind)
            if error.kind == "duplicate":
                error = error.model_copy(update={"message": ALREADY_VERIFIED_MESSAGE})
            metrics.mutation_failures.labels(operation="verify_incident", kind=error.kind).inc()
            return ApiResult(error=error)

        if applied and self.optimistic.is_pending(incident_id):
            self.optimistic.confirm(incident_id)

        await self._refresh_incident(incident_id)
        log.info(f"사건 검증 완료: {incident_id} ({verification_type})")
        return ApiResult(data=result.data)

    async def _refresh_incident(self, incident_id: str) -> Optional[IncidentRecord]:
        try:
            fetched = await self.backend.get_incident(incident_id)
        except Exception as e:
            log.warning(f"사건 재조회 실패: {incident_id}: {e}")
            return None
        if not fetched.ok or not isinstance(fetched.data, dict):
            return None
        record = self.to_record(fetched.data)
        if record is None:
            return None
        return self._apply_remote(record)

    def _replace_all(self, rows: Any) -> List[IncidentRecord]:
        records = [r for r in (self.to_record(row) for row in rows or [] if isinstance(row, dict)) if r is not None]
        fetched_ids = {r.id for r in records}
        # 확정 대기 중인 임시 레코드는 유지
        pending = [
            u.speculative for u in self.optimistic.pending()
            if u.speculative is not None and u.speculative.is_temporary and u.speculative.id not in fetched_ids
        ]
        self.store.set_all(pending + records)
        return records

    async def load_incidents(self, limit: int = 50) -> ApiResult:
        """최근 사건을 불러와 저장소를 교체합니다."""
        try:
            result = await self.backend.get_incidents(limit)
        except Exception as e:
            result = ApiResult(error=classify_mutation_error(e))
        if not result.ok:
            return result
        records = self._replace_all(result.data)
        log.info(f"사건 {len(records)}개 로드")
        return ApiResult(data=records)

    async def load_incidents_near_location(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float = 5000,
        limit: int = 50
    ) -> ApiResult:
        """위치 주변 사건을 불러와 저장소를 교체합니다."""
        try:
            result = await self.backend.get_incidents_near_location(latitude, longitude, radius_meters, limit)
        except Exception as e:
            result = ApiResult(error=classify_mutation_error(e))
        if not result.ok:
            return result
        records = self._replace_all(result.data)
        log.info(f"주변 사건 {len(records)}개 로드 (반경 {radius_meters:.0f}m)")
        return ApiResult(data=records)

    async def get_incident_verification_stats(self, incident_id: str) -> ApiResult:
        try:
            return await self.backend.get_incident_verification_stats(incident_id)
        except Exception as e:
            return ApiResult(error=classify_mutation_error(e))

    # ---- 조회 ----

    def incidents_by_type(self, incident_type: IncidentType) -> List[IncidentRecord]:
        return [r for r in self.store.list() if r.incident_type == incident_type]

    def incidents_by_severity(self, severity: Severity) -> List[IncidentRecord]:
        return [r for r in self.store.list() if r.severity == severity]

    def verified_incidents(self) -> List[IncidentRecord]:
        return [r for r in self.store.list() if r.is_verified]

    def recent_incidents(self, hours: float = 24, now: Optional[datetime] = None) -> List[IncidentRecord]:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        result = []
        for record in self.store.list():
            created = parse_timestamp(record.created_at)
            if created is not None and created > cutoff:
                result.append(record)
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "realtime": self.hub.status(),
            "store": self.store.stats(),
            "optimistic_pending": len(self.optimistic.pending()),
            "unread_notifications": self.engine.unread_count,
        }
