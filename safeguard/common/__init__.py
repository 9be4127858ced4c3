"""
Common utilities for SafeGuard.

Geometry, retry/backoff helpers and request scopes shared by the
state, realtime and dispatch layers.
"""
