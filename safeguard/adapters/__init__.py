"""
Adapters for SafeGuard hexagonal architecture.

This module contains the concrete implementations of port interfaces
that handle external I/O and infrastructure concerns.
"""

from .storage import SQLiteKVStore, InMemoryKVStore, SafeKVStore
from .backend import PostgrestBackend
from .push import FcmRelayPushProvider, NullPushProvider
from .realtime import MqttEventSource

__all__ = [
    "SQLiteKVStore", "InMemoryKVStore", "SafeKVStore", "PostgrestBackend",
    "FcmRelayPushProvider", "NullPushProvider", "MqttEventSource",
]
