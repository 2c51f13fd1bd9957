"""
Data Models
===========
Pydantic models for jobs, flipbook records, and progress events.
Record field names on the wire match the collections consumed by the
frontend (camelCase), while Python attributes stay snake_case.
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class Tier(str, Enum):
    """Record collection a flipbook lives in."""
    PUBLIC = "flipbooks"
    PENDING = "team-member"


class EventType(str, Enum):
    """Kinds of events pushed over a progress channel."""
    LOG = "log"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"


class PipelineStage(str, Enum):
    """Stages of a single conversion run."""
    UPLOAD_ORIGINAL = "upload_original"
    RASTERIZE = "rasterize"
    PERSIST_RECORD = "persist_record"
    DONE = "done"
    FAILED = "failed"


# ─── Job ──────────────────────────────────────────────────────────────────────


class Job(BaseModel):
    """
    A submitted, not yet processed conversion request.
    Lives only in the process-local job registry.
    """
    model_config = ConfigDict(frozen=True)

    token: str = Field(default_factory=lambda: str(uuid.uuid4()))
    file_bytes: bytes = Field(repr=False)
    file_name: str
    mime_type: str = "application/pdf"
    target_tier: Tier
    owner_id: Optional[str] = None
    category: str
    subcategory: str
    created_at: float = Field(default_factory=time.monotonic)

    @computed_field
    @property
    def size_bytes(self) -> int:
        return len(self.file_bytes)


# ─── Record ───────────────────────────────────────────────────────────────────


def utc_timestamp() -> str:
    """Server-assigned record timestamp (UTC, ISO-8601)."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class FlipbookRecord(BaseModel):
    """
    Persisted metadata for one converted flipbook.

    Invariant: ``page_image_urls`` has one entry per blob stored under
    ``image_folder_path``; ``thumbnail_url`` is its first entry or None.
    """
    model_config = ConfigDict(populate_by_name=True)

    book_id: Optional[str] = Field(default=None, exclude=True)
    category: str = Field(alias="mainCategory")
    subcategory: str
    pdf_name: str = Field(alias="pdfName")
    pdf_path_in_storage: str = Field(alias="pdfPathInStorage")
    image_folder_path: str = Field(alias="imageFolderPath")
    page_image_urls: list[str] = Field(default_factory=list, alias="pageImageUrls")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    timestamp: str = Field(default_factory=utc_timestamp)
    uid: Optional[str] = None

    @property
    def page_count(self) -> int:
        return len(self.page_image_urls)

    def to_document(self) -> dict:
        """Record content as stored in a collection (no id, uid only if set)."""
        data = self.model_dump(by_alias=True)
        if data.get("uid") is None:
            data.pop("uid", None)
        return data

    def to_api(self) -> dict:
        """Record content plus its id, for HTTP responses."""
        data = self.to_document()
        data["id"] = self.book_id
        return data

    @classmethod
    def from_document(cls, book_id: str, data: dict) -> "FlipbookRecord":
        return cls.model_validate({**data, "book_id": book_id})


# ─── Progress Events ──────────────────────────────────────────────────────────


class ProgressEvent(BaseModel):
    """One event on a progress channel."""
    type: EventType
    message: Optional[str] = None
    value: Optional[int] = Field(default=None, ge=0, le=100)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    @classmethod
    def log(cls, message: str) -> "ProgressEvent":
        return cls(type=EventType.LOG, message=message)

    @classmethod
    def progress(cls, value: int) -> "ProgressEvent":
        return cls(type=EventType.PROGRESS, value=value)

    @classmethod
    def done(cls, message: str) -> "ProgressEvent":
        return cls(type=EventType.DONE, message=message)

    @classmethod
    def error(cls, message: str) -> "ProgressEvent":
        return cls(type=EventType.ERROR, message=message)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)

    def to_sse(self) -> str:
        """Serialize as a single Server-Sent Events frame."""
        return f"data: {json.dumps(self.to_dict())}\n\n"
