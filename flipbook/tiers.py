"""
Tier Manager
============
Publication workflow operations across the two record collections.

    approve   Pending → Public, moved in one record-store transaction
    delete    page images (prefix) → source PDF (best effort) → record
    replace   same cleanup as delete, re-render the new file under the
              same bookId, then update the pending record in place

Blob cleanup always precedes record deletion: a crash mid-delete leaves a
record pointing at missing blobs (visible, retryable) rather than blobs no
record can lead back to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .database import RecordStore, table_for
from .errors import IgnoredError, NotFoundError, TransactionError
from .models import FlipbookRecord, Tier, utc_timestamp
from .pipeline import ConversionPipeline
from .storage import BlobStore, page_images_prefix

logger = logging.getLogger(__name__)

_NOT_FOUND_MESSAGES = {
    Tier.PUBLIC: "Flipbook not found.",
    Tier.PENDING: "Pending flipbook not found.",
}


@dataclass
class CleanupReport:
    """What blob cleanup removed, and which failure it tolerated."""
    book_id: str
    pages_deleted: int
    ignored: Optional[IgnoredError] = None


class TierManager:
    """Approve, delete and replace flipbooks."""

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: RecordStore,
        pipeline: ConversionPipeline,
    ):
        self.blob_store = blob_store
        self.record_store = record_store
        self.pipeline = pipeline

    # ─── Reads ────────────────────────────────────────────────────────────

    def get(self, book_id: str, tier: Tier) -> FlipbookRecord:
        record = self.record_store.get(tier, book_id)
        if record is None:
            raise NotFoundError(_NOT_FOUND_MESSAGES[Tier(tier)])
        return record

    def list_records(self, tier: Tier) -> list[FlipbookRecord]:
        return self.record_store.list_records(tier)

    # ─── Approve ──────────────────────────────────────────────────────────

    def approve(self, book_id: str) -> FlipbookRecord:
        """
        Move a pending record to the public collection atomically.

        Raises:
            TransactionError: The pending record does not exist (checked
                inside the transaction) or the commit failed. Neither
                collection is modified in that case.
        """
        with self.record_store.transaction() as tx:
            record = tx.get(Tier.PENDING, book_id)
            if record is None:
                raise TransactionError(
                    "Pending flipbook does not exist. It may have been deleted.")
            tx.put(Tier.PUBLIC, record)
            tx.delete(Tier.PENDING, book_id)

        logger.info(
            f"[Approval] Book {book_id} approved and moved to public collection.")
        return record

    # ─── Delete ───────────────────────────────────────────────────────────

    def delete(self, book_id: str, tier: Tier) -> CleanupReport:
        """
        Delete a record and every blob it references.

        Raises:
            NotFoundError: No record with ``book_id`` in ``tier``.
        """
        tier = Tier(tier)
        record = self.get(book_id, tier)

        report = self._purge_blobs(record)
        self.record_store.delete(tier, book_id)

        logger.info(
            f"[Delete] Book {book_id} removed from '{table_for(tier)}' "
            f"({report.pages_deleted} page image(s) deleted)"
        )
        return report

    # ─── Replace ──────────────────────────────────────────────────────────

    def replace(
        self,
        book_id: str,
        owner_id: str,
        file_bytes: bytes,
        file_name: str,
        mime_type: str = "application/pdf",
    ) -> FlipbookRecord:
        """
        Swap the PDF behind a pending flipbook, keeping its id and metadata.

        There is no rollback: if rendering the new file fails after the old
        blobs were purged, the record keeps pointing at deleted blobs.

        Raises:
            NotFoundError: No pending record with ``book_id``.
        """
        record = self.record_store.get(Tier.PENDING, book_id)
        if record is None:
            raise NotFoundError("Flipbook to update not found.")

        logger.info(
            f"[Update] Starting update for bookId: {book_id} "
            f"(requested by uid={owner_id})"
        )
        logger.info(
            f"[Update] Deleting old files: {record.image_folder_path} "
            f"and {record.pdf_path_in_storage}"
        )
        self._purge_blobs(record)

        logger.info(f"[Update] Processing new file: {file_name}")
        pdf_path = self.pipeline.upload_original(
            book_id, file_bytes, file_name, mime_type)
        urls = self.pipeline.convert_pages(book_id, file_bytes)

        fields = {
            "pdf_name": file_name,
            "pdf_path_in_storage": pdf_path,
            "image_folder_path": page_images_prefix(book_id),
            "page_image_urls": urls,
            "thumbnail_url": urls[0] if urls else None,
            "timestamp": utc_timestamp(),
        }
        if not self.record_store.update(Tier.PENDING, book_id, **fields):
            raise NotFoundError("Flipbook to update not found.")

        logger.info(f"[Update] Successfully updated bookId: {book_id}")
        return record.model_copy(update=fields)

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _purge_blobs(self, record: FlipbookRecord) -> CleanupReport:
        """Prefix-delete page images, then best-effort delete the source PDF."""
        pages_deleted = 0
        if record.image_folder_path:
            pages_deleted = self.blob_store.delete_prefix(
                record.image_folder_path)

        ignored = None
        if record.pdf_path_in_storage:
            ignored = self.blob_store.try_delete(record.pdf_path_in_storage)
            if ignored is not None:
                logger.warning(
                    f"Old PDF not found, continuing... ({ignored.message})")

        return CleanupReport(
            book_id=record.book_id,
            pages_deleted=pages_deleted,
            ignored=ignored,
        )
