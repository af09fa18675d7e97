"""Core modules for the roster engine."""

from .config import Settings, get_settings
from .database import DatabaseManager, PoolConfig
from .logging import setup_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "DatabaseManager",
    "PoolConfig",
    # Logging
    "setup_logging",
]
