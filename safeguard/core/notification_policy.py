"""
Notification filtering policy for SafeGuard.

This module contains the pure decision functions used by the
notification delivery engine: category toggles, the hourly quota,
geofencing and quiet hours.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from safeguard.common.geo import haversine_meters
from .models import Coordinates, NotificationEvent, NotificationPreferences, QuietHours

# 알림 유형 -> 설정 필드
CATEGORY_PREFERENCE = {
    "incident": "incidents",
    "safety_alert": "safety_alerts",
    "community_event": "community_events",
    "route_update": "route_updates",
    "verification": "verifications",
}

@dataclass
class Decision:
    """필터 평가 결과"""
    allowed: bool
    reason: str

def category_enabled(event: NotificationEvent, preferences: NotificationPreferences) -> bool:
    field = CATEGORY_PREFERENCE.get(event.type)
    if field is None:
        return True
    return bool(getattr(preferences, field))

def within_geofence(
    event: NotificationEvent,
    user_location: Optional[Coordinates],
    radius_m: float
) -> Decision:
    """
    알림 기준점이 사용자 위치로부터 반경 안에 있는지 확인합니다.

    어느 한쪽 위치라도 없으면 허용합니다.
    """
    if event.location is None or user_location is None:
        return Decision(True, "no_location")

    distance = haversine_meters(
        user_location.latitude, user_location.longitude,
        event.location.latitude, event.location.longitude,
    )
    if distance <= radius_m:
        return Decision(True, f"distance({distance:.0f}m) <= radius({radius_m:.0f}m)")
    return Decision(False, f"distance({distance:.0f}m) > radius({radius_m:.0f}m)")

def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))

def in_quiet_hours(window: QuietHours, now: datetime) -> bool:
    """
    현재 시각이 방해 금지 시간대 안인지 확인합니다.

    시작 > 종료이면 자정을 넘기는 구간으로 처리합니다 (예: 22:00-07:00).
    시작 == 종료이면 빈 구간입니다. 분 단위로 비교하며 양 끝을 포함합니다.
    """
    if not window.enabled:
        return False

    start = _parse_hhmm(window.start)
    end = _parse_hhmm(window.end)
    current = time(now.hour, now.minute)

    if start == end:
        return False
    if start < end:
        return start <= current <= end
    return current >= start or current <= end

class HourlyQuota:
    """
    고정 길이 윈도 기반 전달 횟수 제한.

    윈도가 지나면 다음 확인 시점에 지연 초기화됩니다.
    """

    def __init__(self, limit: int = 20, window: timedelta = timedelta(hours=1)):
        self.limit = limit
        self.window = window
        self.count = 0
        self.window_start: Optional[datetime] = None

    def _roll(self, now: datetime) -> None:
        if self.window_start is None or now - self.window_start >= self.window:
            self.window_start = now
            self.count = 0

    def available(self, now: datetime) -> bool:
        self._roll(now)
        return self.count < self.limit

    def consume(self, now: datetime) -> None:
        self._roll(now)
        self.count += 1

    def remaining(self, now: datetime) -> int:
        self._roll(now)
        return max(0, self.limit - self.count)
