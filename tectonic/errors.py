"""
Tectonic Client Errors

Protocol failures reported by the server (success flag 0) are NOT
exceptions; they come back as ``Response(success=False, ...)``. The
classes below cover transport, framing and request lifecycle failures.
"""


class TectonicError(Exception):
    """Base class for all client errors."""


class TectonicConnectionError(TectonicError, ConnectionError):
    """The transport failed (refused, reset, broken pipe)."""


class ConnectionClosedError(TectonicConnectionError):
    """The connection is closed and cannot carry further commands."""


class FramingError(TectonicError):
    """A response frame was truncated, oversized or otherwise malformed."""


class RequestTimeoutError(TectonicError, TimeoutError):
    """No response arrived within the request timeout."""


class RequestCancelledError(TectonicError):
    """The caller cancelled the request before its response arrived."""
