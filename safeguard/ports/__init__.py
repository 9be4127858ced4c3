"""
Port interfaces for SafeGuard hexagonal architecture.

This module defines the port interfaces (Protocols) that define
the contracts between the core domain and external adapters.
"""

from .event_source import EventSourcePort
from .kvstore import KVStorePort
from .backend import BackendPort
from .push import PushProviderPort

__all__ = ["EventSourcePort", "KVStorePort", "BackendPort", "PushProviderPort"]
