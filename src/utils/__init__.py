"""Utility modules for the ops dashboard core."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
