"""
Local incident state for SafeGuard.

The reactive incident store and the optimistic update manager that
writes speculative records into it.
"""

from .store import IncidentStore
from .optimistic import OptimisticUpdate, OptimisticUpdateManager, UpdateKind

__all__ = ["IncidentStore", "OptimisticUpdate", "OptimisticUpdateManager", "UpdateKind"]
