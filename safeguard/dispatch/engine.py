"""
Notification delivery engine for SafeGuard.

Candidates pass through three filters in order: category toggle, hourly
quota and geofence. Accepted notifications are recorded in history,
persisted, pushed to listeners and the in-app channel. Interruptive
channels (push, sound, haptic) additionally respect quiet hours and
document visibility unless the notification is urgent.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Union

from safeguard.core.errors import classify_push_error
from safeguard.core.models import (
    Coordinates,
    NotificationEvent,
    NotificationLocation,
    NotificationPreferences,
    NotificationType,
    Priority,
    parse_timestamp,
)
from safeguard.core.notification_policy import (
    HourlyQuota,
    category_enabled,
    in_quiet_hours,
    within_geofence,
)
from safeguard.core.sanitize import sanitize_action_url, sanitize_body, sanitize_title
from safeguard.observability import metrics
from safeguard.observability.logging_setup import get_logger
from safeguard.ports.push import PushProviderPort
from .channels import HapticChannel, InAppChannel, SoundChannel
from .preferences import HISTORY_LIMIT, PreferenceRepository, merge_preferences

log = get_logger("safeguard.notifications")

NotificationListener = Callable[[List[NotificationEvent]], None]

PRIORITIES = ("low", "medium", "high", "urgent")

def _local_now() -> datetime:
    return datetime.now().astimezone()

class NotificationEngine:
    """알림 전달 엔진"""

    def __init__(
        self,
        repository: PreferenceRepository,
        push: Optional[PushProviderPort] = None,
        *,
        in_app: Optional[InAppChannel] = None,
        sound: Optional[SoundChannel] = None,
        haptic: Optional[HapticChannel] = None,
        quota_limit: int = 20,
        quota_window: timedelta = timedelta(hours=1),
        history_limit: int = HISTORY_LIMIT,
        app_origin: Optional[str] = None,
        clock: Callable[[], datetime] = _local_now
    ):
        """
        초기화합니다.

        Args:
            repository: 설정/이력 저장소
            push: 푸시 제공자 (None이면 인앱 전용)
            in_app: 인앱 채널
            sound: 알림음 채널
            haptic: 진동 채널
            quota_limit: 윈도당 최대 전달 수
            quota_window: 전달 수 제한 윈도
            history_limit: 이력 최대 길이
            app_origin: 이동 URL 검증에 쓰는 앱 origin
            clock: 현재 시각 함수 (방해 금지 시간 판정은 이 시각의 시/분 사용)
        """
        self.repository = repository
        self.in_app = in_app or InAppChannel()
        self.sound = sound or SoundChannel()
        self.haptic = haptic or HapticChannel()
        self.quota = HourlyQuota(limit=quota_limit, window=quota_window)
        self.history_limit = history_limit
        self.app_origin = app_origin
        self.clock = clock

        self._preferences = NotificationPreferences()
        self._notifications: List[NotificationEvent] = []
        self._listeners: List[NotificationListener] = []
        self._user_location: Optional[Coordinates] = None
        self._document_hidden = False
        self._initialized = False

        self.push: Optional[PushProviderPort] = None
        self._push_dispose: Optional[Callable[[], None]] = None
        self._foreground_tasks: Set[asyncio.Task] = set()
        if push is not None:
            self.attach_push_provider(push)

    # ---- 수명주기 ----

    async def initialize(self, user_location: Optional[Coordinates] = None, request_permission: bool = True) -> bool:
        """
        저장된 설정과 이력을 불러오고 푸시 권한을 확인합니다.

        Returns:
            푸시 활성화 여부
        """
        self._preferences = await self.repository.load_preferences()
        self._notifications = await self.repository.load_history()
        if user_location is not None:
            self._user_location = user_location

        if request_permission:
            await self.request_permission()

        self._initialized = True
        self._notify_listeners()
        log.info(
            f"알림 엔진 초기화: 이력 {len(self._notifications)}개, "
            f"push_enabled={self._preferences.push_enabled}"
        )
        return self._preferences.push_enabled

    def attach_push_provider(self, push: PushProviderPort) -> None:
        """푸시 제공자를 연결하고 포그라운드 메시지를 후보로 받습니다."""
        if self._push_dispose is not None:
            self._push_dispose()
        self.push = push
        self._push_dispose = push.on_foreground_message(self._on_foreground_message)

    def update_location(self, location: Optional[Coordinates]) -> None:
        self._user_location = location

    def set_document_hidden(self, hidden: bool) -> None:
        self._document_hidden = hidden

    # ---- 전달 ----

    def _sanitize(self, candidate: NotificationEvent) -> NotificationEvent:
        action_url = None
        if candidate.action_url is not None:
            action_url = sanitize_action_url(candidate.action_url, app_origin=self.app_origin)
        return candidate.model_copy(update={
            "title": sanitize_title(candidate.title),
            "message": sanitize_body(candidate.message),
            "action_url": action_url,
            "read": False,
        })

    async def deliver(self, candidate: NotificationEvent) -> Optional[NotificationEvent]:
        """
        후보 알림을 필터링하고 통과하면 전달합니다.

        Returns:
            전달된 알림 또는 None (필터에서 거부된 경우)
        """
        event = self._sanitize(candidate)

        if not category_enabled(event, self._preferences):
            metrics.notifications_rejected.labels(reason="category").inc()
            log.debug(f"알림 거부 (카테고리 비활성): {event.type}")
            return None

        now = self.clock()
        if not self.quota.available(now):
            metrics.notifications_rejected.labels(reason="quota").inc()
            log.warning(f"알림 거부 (시간당 한도 {self.quota.limit}개 초과): {event.title}")
            return None

        geofence = within_geofence(event, self._user_location, self._preferences.location_radius)
        if not geofence.allowed:
            metrics.notifications_rejected.labels(reason="geofence").inc()
            log.debug(f"알림 거부 (반경 밖): {geofence.reason}")
            return None

        self.quota.consume(now)
        self._notifications.insert(0, event)
        del self._notifications[self.history_limit:]
        metrics.notifications_delivered.labels(type=event.type, priority=event.priority).inc()
        log.info(f"알림 전달: [{event.priority}] {event.title}")

        self._notify_listeners()
        self.in_app.emit(event)
        await self._persist_history()
        await self._interrupt(event, now)
        return event

    async def show_notification(
        self,
        type: NotificationType,
        title: str,
        message: str,
        *,
        priority: Priority = "medium",
        location: Optional[Union[NotificationLocation, Dict[str, Any]]] = None,
        action_url: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Optional[NotificationEvent]:
        """알림을 생성해 전달합니다."""
        if isinstance(location, dict):
            location = NotificationLocation.model_validate(location)
        candidate = NotificationEvent(
            id=str(uuid.uuid4()),
            type=type,
            title=title,
            message=message,
            priority=priority,
            location=location,
            timestamp=self.clock().isoformat(),
            action_url=action_url,
            data=data or {},
        )
        return await self.deliver(candidate)

    async def _interrupt(self, event: NotificationEvent, now: datetime) -> None:
        urgent = event.priority == "urgent"
        if not urgent:
            reason = None
            if in_quiet_hours(self._preferences.quiet_hours, now):
                reason = "quiet_hours"
            elif self._document_hidden:
                reason = "hidden"
            if reason:
                metrics.notifications_suppressed.labels(reason=reason).inc()
                log.debug(f"방해 채널 억제 ({reason}): {event.title}")
                return

        await self._show_push(event)
        if self._preferences.sound_enabled:
            self.sound.emit(event)
        if self._preferences.vibration_enabled:
            self.haptic.emit(event)

    async def _show_push(self, event: NotificationEvent) -> bool:
        if self.push is None or not self._preferences.push_enabled:
            return False
        if self.push.permission_state() != "granted":
            return False

        data = event.model_dump()
        data["url"] = event.action_url or "/"
        try:
            await self.push.show(
                event.title,
                event.message,
                tag=event.type,
                data=data,
                require_interaction=event.priority == "urgent",
                silent=not self._preferences.sound_enabled,
            )
        except Exception as e:
            kind = classify_push_error(e)
            metrics.push_failures.labels(kind=kind.value).inc()
            log.warning(f"푸시 알림 실패 ({kind.value}): {e}")
            return False
        return True

    def _on_foreground_message(self, payload: Dict[str, Any]) -> None:
        candidate = self._candidate_from_push(payload)
        if candidate is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("포그라운드 메시지 수신: 실행 중인 이벤트 루프 없음")
            return
        task = loop.create_task(self.deliver(candidate))
        self._foreground_tasks.add(task)
        task.add_done_callback(self._foreground_done)

    def _foreground_done(self, task: asyncio.Task) -> None:
        self._foreground_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error(f"포그라운드 메시지 전달 오류: {task.exception()}")

    def _candidate_from_push(self, payload: Dict[str, Any]) -> Optional[NotificationEvent]:
        """FCM 형태 페이로드({notification, data})를 후보 알림으로 변환합니다."""
        notification = payload.get("notification") or {}
        data = payload.get("data") or {}
        title = notification.get("title") or data.get("title")
        if not title:
            metrics.push_failures.labels(kind="invalid_payload").inc()
            log.warning("포그라운드 메시지에 제목 없음")
            return None

        priority = data.get("priority", "medium")
        if priority not in PRIORITIES:
            priority = "medium"
        ntype = data.get("type", "incident")
        if ntype not in ("incident", "safety_alert", "community_event", "route_update", "verification"):
            ntype = "incident"

        return NotificationEvent(
            id=str(data.get("notification_id") or uuid.uuid4()),
            type=ntype,
            title=title,
            message=notification.get("body") or data.get("body") or "",
            priority=priority,
            timestamp=self.clock().isoformat(),
            action_url=data.get("url") or data.get("action_url"),
            data=dict(data),
        )

    # ---- 권한 ----

    async def request_permission(self) -> bool:
        """
        푸시 권한을 요청하고 push_enabled를 갱신합니다.

        Returns:
            권한 허용 여부
        """
        if self.push is None:
            log.info("푸시 제공자 없음: 인앱 알림만 사용")
            return False

        try:
            state = self.push.permission_state()
            if state == "default":
                state = await self.push.request_permission()
        except Exception as e:
            kind = classify_push_error(e)
            metrics.push_failures.labels(kind=kind.value).inc()
            log.warning(f"푸시 권한 요청 실패 ({kind.value}): {e}")
            return False

        if state not in ("granted", "default"):
            log.info(f"푸시 권한 없음: {state}")
            return False

        granted = state == "granted"
        self._preferences = self._preferences.model_copy(update={"push_enabled": granted})
        await self.repository.save_preferences(self._preferences)
        return granted

    # ---- 이력 관리 ----

    async def _persist_history(self) -> None:
        result = await self.repository.save_history(self._notifications)
        if not result.ok:
            log.debug("알림 이력 저장 실패 (메모리 상태는 유지)")

    async def mark_as_read(self, notification_id: str) -> bool:
        for i, n in enumerate(self._notifications):
            if n.id == notification_id:
                if not n.read:
                    self._notifications[i] = n.model_copy(update={"read": True})
                self._notify_listeners()
                await self._persist_history()
                return True
        return False

    async def mark_all_as_read(self) -> None:
        self._notifications = [
            n if n.read else n.model_copy(update={"read": True}) for n in self._notifications
        ]
        self._notify_listeners()
        await self._persist_history()

    async def remove_notification(self, notification_id: str) -> bool:
        before = len(self._notifications)
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        if len(self._notifications) == before:
            return False
        self._notify_listeners()
        await self._persist_history()
        return True

    async def clear_all(self) -> None:
        self._notifications = []
        self._notify_listeners()
        await self._persist_history()

    # ---- 설정 ----

    async def update_preferences(self, changes: Union[NotificationPreferences, Dict[str, Any]]) -> NotificationPreferences:
        """
        설정을 부분 갱신하고 저장합니다.

        Raises:
            ValidationError: 갱신 결과가 유효하지 않은 경우
        """
        if isinstance(changes, NotificationPreferences):
            self._preferences = changes
        else:
            self._preferences = merge_preferences(self._preferences, changes)
        await self.repository.save_preferences(self._preferences)
        log.info("알림 설정 갱신")
        return self._preferences

    # ---- 리스너 ----

    def add_listener(self, listener: NotificationListener) -> Callable[[], None]:
        """
        알림 목록 리스너를 등록하고 현재 목록으로 즉시 호출합니다.

        Returns:
            등록 해제 함수
        """
        self._listeners.append(listener)
        self._call_listener(listener, list(self._notifications))
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _call_listener(self, listener: NotificationListener, snapshot: List[NotificationEvent]) -> None:
        try:
            listener(snapshot)
        except Exception as e:
            log.error(f"알림 리스너 오류: {e}")

    def _notify_listeners(self) -> None:
        snapshot = list(self._notifications)
        for listener in list(self._listeners):
            self._call_listener(listener, snapshot)

    # ---- 조회 ----

    @property
    def notifications(self) -> List[NotificationEvent]:
        return list(self._notifications)

    @property
    def preferences(self) -> NotificationPreferences:
        return self._preferences.model_copy(deep=True)

    @property
    def user_location(self) -> Optional[Coordinates]:
        return self._user_location

    @property
    def document_hidden(self) -> bool:
        return self._document_hidden

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def by_type(self, ntype: NotificationType) -> List[NotificationEvent]:
        return [n for n in self._notifications if n.type == ntype]

    def by_priority(self, priority: Priority) -> List[NotificationEvent]:
        return [n for n in self._notifications if n.priority == priority]

    def recent(self, hours: float = 24) -> List[NotificationEvent]:
        cutoff = self.clock() - timedelta(hours=hours)
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        result = []
        for n in self._notifications:
            ts = parse_timestamp(n.timestamp)
            if ts is not None and ts >= cutoff:
                result.append(n)
        return result
