"""Configuration module for the Tectonic client."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
