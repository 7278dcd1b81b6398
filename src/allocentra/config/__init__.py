"""
Allocentra configuration.

Pydantic-based settings read from environment variables (ALLOCENTRA_ prefix)
and an optional .env file.
"""

from allocentra.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
