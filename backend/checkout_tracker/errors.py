# Overview: Domain error taxonomy shared by services and routes.

"""
Every error a service raises on purpose derives from TrackerError and knows
the HTTP status it maps to. Routes render them with `to_dict()`.

UpstreamError is reserved for notification/email transport failures. The
dispatcher catches it and records a failed channel; it never escapes an
engine operation.
"""

from __future__ import annotations


class TrackerError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(TrackerError, ValueError):
    """400-level input problem. `errors` carries field-level detail."""
    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None, **details):
        super().__init__(message, errors=errors, **details)
        self.errors = errors or []


class NotFoundError(TrackerError, LookupError):
    status_code = 404


class ForbiddenError(TrackerError):
    status_code = 403


class InvalidStateError(TrackerError):
    """Operation not allowed in the entity's current status."""
    status_code = 409


class ConflictError(TrackerError, ValueError):
    """409-level uniqueness conflict (e.g., duplicate SKU)."""
    status_code = 409


class UpstreamError(TrackerError):
    """Notification or email transport failure."""
    status_code = 502
