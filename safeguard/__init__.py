"""
SafeGuard realtime sync and notification delivery.

This package keeps a local incident record set consistent with a remote
event stream, applies local writes optimistically and decides which
events should interrupt the user.
"""

__version__ = "0.3.0"
