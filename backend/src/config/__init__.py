"""
Configuration module for the Am Lich notification backend.

Provides centralized configuration for:
- Web Push (VAPID) credentials
- Cron trigger authentication
- Dispatch run limits (workers, deadline, push timeout)
"""

from backend.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
