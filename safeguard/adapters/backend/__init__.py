"""
Backend API adapters.
"""

from .client import PostgrestBackend

__all__ = ["PostgrestBackend"]
