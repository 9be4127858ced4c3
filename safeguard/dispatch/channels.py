"""
Output channels for delivered notifications.

In-app delivery always fires for an accepted notification. Sound and
haptic feedback are interruptive and are gated by the engine.
"""

from typing import Callable, List, Optional

from safeguard.core.models import NotificationEvent, Priority
from safeguard.observability.logging_setup import get_logger

log = get_logger("safeguard.channels")

# 우선순위별 진동 패턴 (ms)
HAPTIC_PATTERNS = {
    "urgent": [200, 100, 200, 100, 200],
    "high": [100, 50, 100],
}
DEFAULT_HAPTIC_PATTERN = [100]

SOUNDS = {
    "urgent": "/sounds/urgent-alert.mp3",
    "high": "/sounds/high-priority.mp3",
}
DEFAULT_SOUND = "/sounds/notification.mp3"
SOUND_VOLUME = 0.7

def haptic_pattern(priority: Priority) -> List[int]:
    return list(HAPTIC_PATTERNS.get(priority, DEFAULT_HAPTIC_PATTERN))

def sound_for(priority: Priority) -> str:
    return SOUNDS.get(priority, DEFAULT_SOUND)

class InAppChannel:
    """앱 내부 토스트/배너 채널"""

    def __init__(self):
        self._sinks: List[Callable[[NotificationEvent], None]] = []

    def connect(self, sink: Callable[[NotificationEvent], None]) -> Callable[[], None]:
        self._sinks.append(sink)
        return lambda: self._sinks.remove(sink) if sink in self._sinks else None

    def emit(self, event: NotificationEvent) -> None:
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception as e:
                log.error(f"인앱 알림 출력 오류: {e}")

class SoundChannel:
    """알림음 채널"""

    def __init__(self, player: Optional[Callable[[str, float], None]] = None):
        """
        Args:
            player: (사운드 경로, 볼륨)을 받아 재생하는 함수. None이면 로그만 남김
        """
        self.player = player

    def emit(self, event: NotificationEvent) -> Optional[str]:
        sound = sound_for(event.priority)
        if self.player is None:
            log.debug(f"알림음 (재생기 없음): {sound}")
            return sound
        try:
            self.player(sound, SOUND_VOLUME)
        except Exception as e:
            log.warning(f"알림음 재생 실패: {e}")
            return None
        return sound

class HapticChannel:
    """진동 채널"""

    def __init__(self, vibrator: Optional[Callable[[List[int]], None]] = None):
        self.vibrator = vibrator

    @property
    def supported(self) -> bool:
        return self.vibrator is not None

    def emit(self, event: NotificationEvent) -> Optional[List[int]]:
        if self.vibrator is None:
            return None
        pattern = haptic_pattern(event.priority)
        try:
            self.vibrator(pattern)
        except Exception as e:
            log.warning(f"진동 실패: {e}")
            return None
        return pattern
