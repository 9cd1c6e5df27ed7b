"""
Custom exceptions for the Irmin HTTP client.

Every error raised by the client derives from IrminError, so callers can
catch a single type. Errors found after a stream has been handed to the
caller are delivered in-band rather than raised from the background task.
"""


class IrminError(Exception):
    """Base exception for all client errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(IrminError):
    """Raised when client configuration is missing or invalid."""

    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid configuration for {field}: {reason}",
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class IrminConnectionError(IrminError):
    """Raised when the server cannot be reached.

    Note: Named IrminConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class IrminHTTPError(IrminError):
    """Raised when the server answers with a non-2xx status."""

    def __init__(self, endpoint: str, status: int, reason: str | None = None):
        details: dict = {"endpoint": endpoint, "status": status}
        if reason:
            details["reason"] = reason
        message = f"Irmin HTTP server returned status {status}"
        if reason:
            message += f" {reason}"
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status = status
        self.reason = reason


class ServerError(IrminError):
    """Raised when a reply carries a non-empty error value."""

    def __init__(self, message: str, endpoint: str | None = None):
        details = {}
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(f"Server returned an error: {message}", details)
        self.server_message = message
        self.endpoint = endpoint


class ProtocolError(IrminError):
    """Raised when a reply body does not follow the wire protocol."""


class FramingError(ProtocolError):
    """Raised when the stream framing (array, start/end sentinels) is wrong."""

    def __init__(self, reason: str, endpoint: str | None = None):
        details = {"reason": reason}
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(f"Stream framing error: {reason}", details)
        self.reason = reason
        self.endpoint = endpoint


class StreamDecodeError(ProtocolError):
    """Raised when a streamed element cannot be decoded."""

    def __init__(self, reason: str, cause: Exception | None = None):
        details = {"reason": reason}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Stream decode error: {reason}", details)
        self.reason = reason
        self.cause = cause


class ValueDecodeError(ProtocolError):
    """Raised when a value, commit hash or path payload is malformed."""

    def __init__(self, reason: str, value: object = None):
        details: dict = {"reason": reason}
        if value is not None:
            details["value"] = repr(value)
        super().__init__(f"Decode failed: {reason}", details)
        self.reason = reason
        self.value = value


class PathParseError(IrminError):
    """Raised when a path string cannot be parsed."""

    def __init__(self, text: str, reason: str):
        super().__init__(
            f"Cannot parse path {text!r}: {reason}",
            {"path": text, "reason": reason},
        )
        self.text = text
        self.reason = reason
