from __future__ import annotations


class CatalogError(Exception):
    """Base class for failures raised by the document store and export core."""


class NotFound(CatalogError):
    """Raised when a document or record id does not exist for the current owner."""


class Unauthenticated(CatalogError):
    """Raised when an owner-scoped operation runs without a valid owner identity."""


class ValidationError(CatalogError):
    """Raised when caller input must be corrected before retrying."""


class StorageFailure(CatalogError):
    """Raised when the persisted blob or the database rejects a read or write.

    The core never retries on its own; callers may.
    """

    retryable = True


class PartialGenerationFailure(CatalogError):
    """One record's code image could not be rendered.

    Collected and returned next to the successful images instead of raised.
    """

    def __init__(self, record_id: str, reason: str) -> None:
        super().__init__(f"Code generation failed for record {record_id}: {reason}")
        self.record_id = record_id
        self.reason = reason
