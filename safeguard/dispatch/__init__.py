"""
Notification dispatch for SafeGuard.

This module contains the notification delivery engine, the preference
repository and the output channels.
"""

from .engine import NotificationEngine
from .preferences import PreferenceRepository

__all__ = ["NotificationEngine", "PreferenceRepository"]
