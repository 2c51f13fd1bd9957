"""
Error Taxonomy
==============
Every failure the service can surface derives from FlipbookError.
Each error carries a user-facing message and the HTTP status it maps to
when raised through a request handler.

Pipeline errors (DecodeError, RenderError, StorageError, RecordStoreError)
never reach an HTTP status once a progress stream is open; they become a
terminal ``error`` event instead.
"""

from __future__ import annotations

from dataclasses import dataclass


class FlipbookError(Exception):
    """Base class for all service errors."""

    status_code = 500
    default_message = "An unknown server error occurred."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(FlipbookError):
    """Missing or malformed request fields."""
    status_code = 400
    default_message = "Invalid request."


class NotFoundError(FlipbookError):
    """Unknown job token or record."""
    status_code = 404
    default_message = "Not found."


class DecodeError(FlipbookError):
    """Input is not a well-formed PDF document."""
    status_code = 422
    default_message = "The uploaded file is not a readable PDF document."


class RenderError(FlipbookError):
    """A specific page failed to rasterize."""
    status_code = 422
    default_message = "Failed to render PDF page."


class StorageError(FlipbookError):
    """Blob store operation failed."""
    default_message = "Blob storage operation failed."


class BlobNotFoundError(StorageError):
    """The addressed blob does not exist."""
    status_code = 404
    default_message = "Blob not found."


class RecordStoreError(FlipbookError):
    """Record store operation failed."""
    default_message = "Record store operation failed."


class TransactionError(RecordStoreError):
    """A multi-record transaction could not be committed."""
    default_message = "Transaction failed."


@dataclass(frozen=True)
class IgnoredError:
    """
    A failure that was deliberately tolerated.

    Returned (never raised) by best-effort operations such as deleting a
    source PDF that may already be gone.
    """
    operation: str
    target: str
    error: Exception

    @property
    def message(self) -> str:
        return f"{self.operation} {self.target}: {self.error}"
