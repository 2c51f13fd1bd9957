"""
Conversion Pipeline
===================
Turns one claimed job into a published flipbook while streaming progress.

Stages (per run):
    1. UPLOAD_ORIGINAL  source PDF → source-pdfs/{bookId}/{fileName}
    2. RASTERIZE        each page → processed-images/{bookId}/page-{n}.jpg,
                        one progress event per page
    3. PERSIST_RECORD   record → target collection under bookId
    4. DONE             terminal success event

Any failure jumps straight to FAILED and emits one terminal error event.
Blobs uploaded before the failure are NOT rolled back; they are logged as
orphans. Runs execute on daemon worker threads so a client that stops
reading the stream never interrupts blob or record writes.
"""

from __future__ import annotations

import logging
import math
import queue
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from .database import RecordStore, table_for
from .errors import NotFoundError
from .jobs import JobRegistry
from .models import FlipbookRecord, Job, PipelineStage, ProgressEvent, Tier
from .rasterizer import Rasterizer
from .storage import (
    BlobStore,
    page_image_path,
    page_images_prefix,
    source_pdf_path,
)

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "An unknown server error occurred."
DONE_MESSAGE = "Flipbook processed successfully!"


def progress_percent(current: int, total: int) -> int:
    """Percentage of pages done, rounded half up."""
    if total <= 0:
        return 100
    return int(math.floor(current / total * 100 + 0.5))


def error_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or UNKNOWN_ERROR_MESSAGE


# ─── Progress Channel ─────────────────────────────────────────────────────────


_CLOSED = object()


class ProgressChannel:
    """
    One-way event queue between a pipeline run and its consumer.

    The producer calls ``send`` and finally ``close``; the consumer iterates
    until the channel is closed. Events sent after ``close`` are dropped.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, event: ProgressEvent):
        if self._closed.is_set():
            logger.debug(f"Dropping event on closed channel: {event.type.value}")
            return
        self._queue.put(event)

    def close(self):
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item


# ─── Pipeline ─────────────────────────────────────────────────────────────────


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""
    token: str
    book_id: str
    stage: PipelineStage
    record: Optional[FlipbookRecord] = None
    error: Optional[str] = None
    orphaned_blobs: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.stage is PipelineStage.DONE


class ConversionPipeline:
    """
    Orchestrates rasterizer, blob store and record store for one job.
    Stateless between runs; safe to share across worker threads.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        record_store: RecordStore,
        rasterizer: Optional[Rasterizer] = None,
        registry: Optional[JobRegistry] = None,
        book_id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.blob_store = blob_store
        self.record_store = record_store
        self.rasterizer = rasterizer or Rasterizer()
        self.registry = registry
        self._new_book_id = book_id_factory

    # ─── Stream entry point ───────────────────────────────────────────────

    def open_stream(self, token: str) -> ProgressChannel:
        """
        Claim the job for ``token`` and start running it in the background.

        Unknown tokens yield a channel holding a single error event.
        """
        channel = ProgressChannel()
        if self.registry is None:
            raise RuntimeError("open_stream requires a job registry")
        try:
            job = self.registry.claim(token)
        except NotFoundError as e:
            logger.warning(f"Stream requested for unknown job {token}")
            channel.send(ProgressEvent.error(e.message))
            channel.close()
            return channel

        self.spawn_run(job, channel)
        return channel

    def spawn_run(self, job: Job, channel: ProgressChannel) -> threading.Thread:
        """Run ``job`` on a daemon worker thread."""
        thread = threading.Thread(
            target=self.run,
            args=(job, channel),
            daemon=True,
            name=f"flipbook-pipeline-{job.token[:8]}",
        )
        thread.start()
        logger.info(f"Spawned pipeline thread for job {job.token}")
        return thread

    # ─── Full run ─────────────────────────────────────────────────────────

    def run(self, job: Job, channel: ProgressChannel) -> PipelineResult:
        """Execute every stage for ``job``, reporting on ``channel``."""
        book_id = self._new_book_id()
        tier = Tier(job.target_tier)
        stage = PipelineStage.UPLOAD_ORIGINAL
        uploaded: list[str] = []

        def send_log(message: str):
            channel.send(ProgressEvent.log(message))

        try:
            send_log("Uploading original PDF to storage...")
            pdf_path = self.upload_original(
                book_id, job.file_bytes, job.file_name, job.mime_type)
            uploaded.append(pdf_path)
            send_log("Original PDF uploaded.")

            stage = PipelineStage.RASTERIZE
            send_log("Converting PDF to images...")
            urls = self.convert_pages(
                book_id,
                job.file_bytes,
                on_progress=lambda value: channel.send(
                    ProgressEvent.progress(value)),
                uploaded=uploaded,
            )
            send_log("All pages converted and uploaded.")

            stage = PipelineStage.PERSIST_RECORD
            send_log(f"Saving flipbook metadata to '{tier.value}'...")
            record = build_record(
                book_id=book_id,
                category=job.category,
                subcategory=job.subcategory,
                file_name=job.file_name,
                page_image_urls=urls,
                owner_id=job.owner_id if tier is Tier.PENDING else None,
            )
            self.record_store.put(tier, record)
            send_log("Metadata saved.")

            channel.send(ProgressEvent.done(DONE_MESSAGE))
            logger.info(
                f"[{job.token}] Book {book_id} published to "
                f"'{table_for(tier)}' with {record.page_count} page(s)"
            )
            return PipelineResult(
                token=job.token,
                book_id=book_id,
                stage=PipelineStage.DONE,
                record=record,
            )

        except Exception as e:
            message = error_message(e)
            logger.error(
                f"[Processing Error for jobId: {job.token}] "
                f"stage={stage.value}: {message}",
                exc_info=True,
            )
            if uploaded:
                logger.warning(
                    f"[{job.token}] {len(uploaded)} blob(s) left without a "
                    f"record for book {book_id}: {', '.join(uploaded)}"
                )
            channel.send(ProgressEvent.error(message))
            return PipelineResult(
                token=job.token,
                book_id=book_id,
                stage=PipelineStage.FAILED,
                error=message,
                orphaned_blobs=list(uploaded),
            )

        finally:
            if self.registry is not None:
                self.registry.discard(job.token)
            channel.close()
            logger.info(f"[{job.token}] Process finished. Cleaning up.")

    # ─── Reusable stages ──────────────────────────────────────────────────

    def upload_original(
        self, book_id: str, file_bytes: bytes, file_name: str, mime_type: str
    ) -> str:
        """Store the source PDF. Returns its blob key."""
        path = source_pdf_path(book_id, file_name)
        self.blob_store.save(path, file_bytes, mime_type or "application/pdf")
        logger.info(f"Original PDF stored at: {path}")
        return path

    def convert_pages(
        self,
        book_id: str,
        file_bytes: bytes,
        on_progress: Optional[Callable[[int], None]] = None,
        uploaded: Optional[list[str]] = None,
    ) -> list[str]:
        """
        Rasterize every page, upload it, and collect the page URLs in order.

        Args:
            book_id: Record id the page blobs belong to.
            file_bytes: Source PDF.
            on_progress: Optional callback(percent) after each page upload.
            uploaded: Optional list that receives each stored blob key.

        Returns:
            Retrieval URLs, one per page, page order preserved.
        """
        urls: list[str] = []
        with self.rasterizer.render(file_bytes) as document:
            total = document.page_count
            for page in document:
                path = page_image_path(book_id, page.number)
                self.blob_store.save(path, page.data, page.content_type)
                if uploaded is not None:
                    uploaded.append(path)
                urls.append(self.blob_store.url_for(path))
                if on_progress:
                    on_progress(progress_percent(page.number, total))

        logger.info(f"Book {book_id}: {len(urls)} page image(s) uploaded")
        return urls


def build_record(
    book_id: str,
    category: str,
    subcategory: str,
    file_name: str,
    page_image_urls: list[str],
    owner_id: Optional[str] = None,
) -> FlipbookRecord:
    """Assemble a record following the blob naming convention."""
    return FlipbookRecord(
        book_id=book_id,
        category=category,
        subcategory=subcategory,
        pdf_name=file_name,
        pdf_path_in_storage=source_pdf_path(book_id, file_name),
        image_folder_path=page_images_prefix(book_id),
        page_image_urls=list(page_image_urls),
        thumbnail_url=page_image_urls[0] if page_image_urls else None,
        uid=owner_id,
    )
