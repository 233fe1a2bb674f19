"""
Utility modules for the Crew Notify service.

- logging_config: Structured JSON/console logging
"""

from crewnotify.src.utils.logging_config import get_logger, init_logging

__all__ = [
    "get_logger",
    "init_logging",
]
