"""Core utilities for the SceneGate application."""

from scenegate.app.core.config import settings
from scenegate.app.core.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
]
