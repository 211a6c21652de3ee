"""
Error taxonomy shared by the storage, auth and reconciliation components.

Every error carries a ``detail`` string that is safe to return to clients;
backend-specific context belongs in the chained ``__cause__`` and the logs.
"""

from __future__ import annotations


class TaglineError(Exception):
    """Base class for all errors raised by tagline components."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(TaglineError):
    status_code = 404
    default_detail = "Not found"


class ConflictError(TaglineError):
    """Stale ``last_modified`` supplied to a metadata update."""

    status_code = 409
    default_detail = "Photo has been modified since last retrieval"


class UnauthorizedError(TaglineError):
    status_code = 401
    default_detail = "Not authenticated"


class BackendUnavailableError(TaglineError):
    """A storage, database or token backend could not be reached."""

    status_code = 503
    default_detail = "Storage backend unavailable"


class MetadataValidationError(TaglineError):
    status_code = 422
    default_detail = "Invalid metadata payload"


class InvalidObjectKeyError(TaglineError):
    """Object key is empty or resolves outside the provider namespace."""

    status_code = 400
    default_detail = "Invalid object key"


class RescanInProgressError(TaglineError):
    status_code = 409
    default_detail = "Rescan already in progress"


class ConfigurationError(TaglineError):
    """Raised at startup when required settings are missing."""

    default_detail = "Invalid configuration"
