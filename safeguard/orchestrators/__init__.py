"""
Orchestrators for SafeGuard.

This module contains the orchestrators that coordinate
the flow between ports and adapters.
"""
from .incident_sync import IncidentSync

__all__ = ["IncidentSync"]
