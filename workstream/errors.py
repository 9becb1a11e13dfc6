"""Error taxonomy shared by the store, sync, correlation, and reporting layers."""
from __future__ import annotations


class WorkstreamError(Exception):
    """Base class for expected, reportable failures."""

    code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.code

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ConfigurationError(WorkstreamError):
    """Missing credential or allow-list. Never retried automatically."""

    code = "configuration_error"


class TransportError(WorkstreamError):
    """Timeout, non-2xx response, or connection failure from a collaborator."""

    code = "transport_error"


class NotFoundError(WorkstreamError):
    code = "not_found"


class ValidationError(WorkstreamError):
    """Structurally invalid source record."""

    code = "validation_error"
