"""Configuration module for the Stageworks backend."""

from stageworks.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
