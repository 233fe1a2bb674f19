"""
Configuration module for Crew Notify.

Provides centralized configuration for:
- Push channel credentials (VAPID, mobile push gateway)
- Scheduled dispatcher cadence and retry policy
- Inventory trigger thresholds
"""

from crewnotify.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
