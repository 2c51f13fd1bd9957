"""Shared fixtures: temporary stores, in-memory PDFs, Flask test client."""

from __future__ import annotations

import fitz  # PyMuPDF
import pytest

from flipbook.config import ServiceConfig
from flipbook.database import SQLiteRecordStore
from flipbook.jobs import JobRegistry
from flipbook.models import Job, Tier
from flipbook.pipeline import ConversionPipeline
from flipbook.rasterizer import Rasterizer
from flipbook.server import build_services, create_app
from flipbook.storage import LocalBlobStore
from flipbook.tiers import TierManager

PUBLIC_URL = "http://testserver"


def make_pdf(pages: int = 3) -> bytes:
    """Build a small PDF in memory with one line of text per page."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page()
        page.insert_text((72, 72), f"Page {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def make_job(
    file_bytes: bytes,
    target_tier: Tier = Tier.PUBLIC,
    owner_id: str = None,
    file_name: str = "book.pdf",
    category: str = "Sports",
    subcategory: str = "Tennis",
) -> Job:
    return Job(
        file_bytes=file_bytes,
        file_name=file_name,
        target_tier=target_tier,
        owner_id=owner_id,
        category=category,
        subcategory=subcategory,
    )


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf(3)


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def job_factory():
    return make_job


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "storage"), PUBLIC_URL)


@pytest.fixture
def record_store(tmp_path) -> SQLiteRecordStore:
    store = SQLiteRecordStore(str(tmp_path / "test.sqlite"))
    store.init_db()
    return store


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry(ttl_seconds=60)


@pytest.fixture
def pipeline(blob_store, record_store, registry) -> ConversionPipeline:
    return ConversionPipeline(
        blob_store=blob_store,
        record_store=record_store,
        rasterizer=Rasterizer(),
        registry=registry,
    )


@pytest.fixture
def tiers(blob_store, record_store, pipeline) -> TierManager:
    return TierManager(blob_store, record_store, pipeline)


@pytest.fixture
def config(tmp_path) -> ServiceConfig:
    return ServiceConfig(
        db_path=str(tmp_path / "app.sqlite"),
        storage_dir=str(tmp_path / "app-storage"),
        public_url=PUBLIC_URL,
        log_level="WARNING",
    )


@pytest.fixture
def services(config):
    return build_services(config)


@pytest.fixture
def app(config, services):
    app = create_app(
        config, overrides={"TESTING": True}, service_overrides=services)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
