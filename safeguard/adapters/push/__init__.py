"""
Push provider adapters.
"""

from .fcm_relay import FcmRelayPushProvider
from .null import NullPushProvider

__all__ = ["FcmRelayPushProvider", "NullPushProvider"]
