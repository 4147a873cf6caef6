"""
Error taxonomy for the sync core.

Each error carries a stable machine-readable ``code``; the HTTP layer maps
the class to a status code and returns the code verbatim.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every error surfaced by the sync core."""

    status_code = 500
    default_code = "error"

    def __init__(self, code: Optional[str] = None, detail: Optional[str] = None):
        self.code = code or self.default_code
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_dict(self):
        return {"error": self.code, "detail": self.detail}


class ValidationError(SyncError):
    """Malformed or missing input. Never retried, never mutates a store."""

    status_code = 400
    default_code = "invalid_payload"


class ConflictError(SyncError):
    """Duplicate identity key."""

    status_code = 409
    default_code = "conflict"


class NotFoundError(SyncError):
    """No matching primary record."""

    status_code = 404
    default_code = "not_found"


class DependencyUnavailable(SyncError):
    """Derived store unreachable and the mutation policy says to surface it."""

    status_code = 503
    default_code = "graph_sync_failed"


class InternalError(SyncError):
    """Primary store failure. Aborts the mutation before any derived write."""

    status_code = 500
    default_code = "primary_store_error"


class GraphStoreError(Exception):
    """Raised by graph adapters; wraps driver specific exceptions."""
