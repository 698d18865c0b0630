"""
Base infrastructure for service daemons.

This module provides common functionality used by all daemons:
- BaseDaemon: Base class with CLI, signals, and lifecycle management
"""

from services.base.daemon import EXIT_OK, EXIT_STARTUP_FAILURE, BaseDaemon

__all__ = [
    "BaseDaemon",
    "EXIT_OK",
    "EXIT_STARTUP_FAILURE",
]
