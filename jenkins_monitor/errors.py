"""
Exception taxonomy for the failure monitor.

Each error carries the HTTP-equivalent ``status`` the server reports, so the
request layer can raise and the server can render without a lookup table.
"""

from __future__ import annotations


class MonitorError(Exception):
    status = 500


class ValidationError(MonitorError):
    """A request is missing required fields or carries an invalid value."""

    status = 400

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class NotFoundError(MonitorError):
    status = 404


class MalformedInputError(MonitorError):
    """A client-supplied JSON blob could not be parsed."""

    status = 400


class UpstreamError(MonitorError):
    """A Jenkins call failed, timed out, or returned a non-2xx status.

    ``original`` keeps the underlying requests exception for debugging.
    """

    status = 500

    def __init__(self, message: str, status_code: int | None = None,
                 original: Exception | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.original = original


def require_fields(body: dict, *names: str) -> None:
    """Raise ValidationError naming every required field that is missing or empty."""
    missing = [name for name in names if not body.get(name)]
    if missing:
        raise ValidationError(
            f"Missing required parameters: {', '.join(missing)}", missing=missing,
        )
