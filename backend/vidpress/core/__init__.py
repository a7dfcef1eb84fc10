"""Core module for configuration and shared infrastructure."""

from vidpress.core.config import settings

__all__ = [
    "settings",
]
