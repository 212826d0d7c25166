"""
Tectonic Client: asyncio client for the Tectonic time-series database

Commands travel as newline-terminated text lines over one TCP connection;
responses come back as length-prefixed binary frames.
"""

from .errors import (
    ConnectionClosedError,
    FramingError,
    RequestCancelledError,
    RequestTimeoutError,
    TectonicConnectionError,
    TectonicError,
)
from .network.client import TectonicClient
from .protocol.commands import Command, CommandType, Response, Update

__version__ = "1.0.0"

__all__ = [
    "TectonicClient",
    "Command",
    "CommandType",
    "Response",
    "Update",
    "TectonicError",
    "TectonicConnectionError",
    "ConnectionClosedError",
    "FramingError",
    "RequestTimeoutError",
    "RequestCancelledError",
]
