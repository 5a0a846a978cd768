"""Core module for configuration and shared infrastructure."""

from media_worker.core.config import settings

__all__ = [
    "settings",
]
