"""
Gazetteer file loaders.
"""

from .loader import load_gazetteer

__all__ = ["load_gazetteer"]
