"""
Storage adapters for SafeGuard.

This module contains key/value storage adapters used to persist
notification preferences and history.
"""

from .sqlite_kv import SQLiteKVStore
from .memory import InMemoryKVStore
from .safe import SafeKVStore, StorageResult

__all__ = ["SQLiteKVStore", "InMemoryKVStore", "SafeKVStore", "StorageResult"]
