"""Telebridge configuration -- environment-backed settings."""

from .settings import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
