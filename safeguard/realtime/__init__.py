"""
Realtime subscriptions for SafeGuard.
"""

from .controller import SubscriptionController, SubscriptionState
from .hub import RealtimeHub

__all__ = ["SubscriptionController", "SubscriptionState", "RealtimeHub"]
