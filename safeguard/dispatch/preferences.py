"""
Persistence of notification preferences and history.

Stored values are validated on load; anything unreadable falls back to
defaults so a corrupted entry never blocks delivery.
"""

from typing import Any, Dict, List

from pydantic import ValidationError

from safeguard.adapters.storage.safe import SafeKVStore, StorageResult
from safeguard.core.models import NotificationEvent, NotificationPreferences
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.preferences")

PREFERENCES_KEY = "notification_preferences"
HISTORY_KEY = "notifications"
HISTORY_LIMIT = 50

def merge_preferences(current: NotificationPreferences, changes: Dict[str, Any]) -> NotificationPreferences:
    """
    부분 변경을 현재 설정에 병합합니다.

    quiet_hours는 중첩 병합합니다.

    Raises:
        ValidationError: 병합 결과가 유효하지 않은 경우
    """
    data = current.model_dump()
    for key, value in changes.items():
        if key == "quiet_hours" and isinstance(value, dict):
            data["quiet_hours"] = {**data["quiet_hours"], **value}
        else:
            data[key] = value
    return NotificationPreferences.model_validate(data)

class PreferenceRepository:
    """알림 설정/이력 저장소"""

    def __init__(self, storage: SafeKVStore, history_limit: int = HISTORY_LIMIT):
        self.storage = storage
        self.history_limit = history_limit

    async def load_preferences(self) -> NotificationPreferences:
        result = await self.storage.get_json(PREFERENCES_KEY)
        if not result.ok or not isinstance(result.value, dict):
            return NotificationPreferences()
        try:
            return merge_preferences(NotificationPreferences(), result.value)
        except ValidationError as e:
            log.warning(f"저장된 알림 설정이 유효하지 않아 기본값 사용: {e.error_count()}개 오류")
            return NotificationPreferences()

    async def save_preferences(self, preferences: NotificationPreferences) -> StorageResult:
        return await self.storage.set_json(PREFERENCES_KEY, preferences.model_dump())

    async def load_history(self) -> List[NotificationEvent]:
        result = await self.storage.get_json(HISTORY_KEY, default=[])
        if not result.ok or not isinstance(result.value, list):
            return []

        history = []
        for item in result.value:
            try:
                history.append(NotificationEvent.model_validate(item))
            except ValidationError:
                log.debug("유효하지 않은 알림 이력 항목 건너뜀")
        return history[: self.history_limit]

    async def save_history(self, history: List[NotificationEvent]) -> StorageResult:
        payload = [n.model_dump() for n in history[: self.history_limit]]
        return await self.storage.set_json(HISTORY_KEY, payload)
