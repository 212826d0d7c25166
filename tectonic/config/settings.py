"""
Tectonic Client Configuration Settings

This module contains the configuration defaults for the Tectonic client.
Every value can be overridden from the environment or per client instance.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Client configuration settings."""

    # Network settings
    HOST: str = os.environ.get("TECTONIC_HOST", "localhost")
    PORT: int = int(os.environ.get("TECTONIC_PORT", "9001"))

    # Timeouts (seconds, 0 disables the request timeout)
    CONNECT_TIMEOUT: float = float(os.environ.get("TECTONIC_CONNECT_TIMEOUT", "5"))
    REQUEST_TIMEOUT: float = float(os.environ.get("TECTONIC_TIMEOUT", "30"))

    # Framing settings
    READ_BUFFER_SIZE: int = 4096
    MAX_FRAME_SIZE: int = 64 * 1024 * 1024

    # Logging settings
    DEBUG: bool = os.environ.get("TECTONIC_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("TECTONIC_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
