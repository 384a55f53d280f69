"""Error taxonomy for the telemetry hub.

Every error carries the HTTP status class it maps to when it reaches a REST
caller. Errors raised inside the bus ingestion path are logged and contained
by the handlers; they never reach HTTP.
"""

from __future__ import annotations

from typing import Any, List, Optional


class TelemetryError(Exception):
    """Base class for errors surfaced by the hub."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[List[dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class BusConnectionError(TelemetryError):
    """Broker unreachable or connect timed out."""

    status_code = 503


class SubscriptionError(TelemetryError):
    """Broker rejected (or never acknowledged) a subscription."""

    status_code = 503


class ParseError(TelemetryError):
    """Malformed inbound bus message."""

    status_code = 400

    def __init__(self, message: str, *, topic: Optional[str] = None):
        super().__init__(message)
        self.topic = topic


class ValidationError(TelemetryError):
    """Malformed client input, with optional field-level details."""

    status_code = 400

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message}])


class NotFoundError(TelemetryError):
    status_code = 404


class ConflictError(TelemetryError):
    status_code = 409


class AuthorizationError(TelemetryError):
    """Missing credential (401) or insufficient capability (403)."""

    status_code = 401

    @classmethod
    def forbidden(cls, message: str = "Insufficient permissions") -> "AuthorizationError":
        return cls(message, status_code=403)


class StorageError(TelemetryError):
    """A persistence operation failed."""

    status_code = 500


class UpstreamTimeoutError(TelemetryError):
    """Weather upstream did not answer within the bounded timeout."""

    status_code = 504


class UpstreamError(TelemetryError):
    """Weather upstream answered with an error or an unexpected shape."""

    status_code = 502
