"""
Service Configuration
=====================
Environment-driven settings and logging setup for the flipbook service.

Environment variables:
    FLIPBOOK_DB_PATH          SQLite record store path
    FLIPBOOK_STORAGE_DIR      Root directory of the local blob store
    FLIPBOOK_PUBLIC_URL       Base URL used to build page image URLs
    FLIPBOOK_ALLOWED_ORIGINS  Comma-separated CORS origins
    FLIPBOOK_MAX_UPLOAD_MB    Upload size limit
    FLIPBOOK_JOB_TTL          Seconds an unclaimed job stays in the registry
    FLIPBOOK_RENDER_SCALE     Page rasterization scale factor
    FLIPBOOK_JPEG_QUALITY     JPEG quality for page images
    FLIPBOOK_LOG_LEVEL        Logging level
    FLIPBOOK_LOG_FILE         Optional log file
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Project root: one level up from /flipbook/ package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

DEFAULT_ALLOWED_ORIGINS = (
    "https://anantainfotech.com",
    "http://localhost:3000",
    "http://localhost:3001",
)


@dataclass
class ServiceConfig:
    """Configuration for the flipbook service."""

    # Persistence
    db_path: str = str(_PROJECT_ROOT / "database.sqlite")
    storage_dir: str = str(_PROJECT_ROOT / "storage")
    public_url: str = "http://localhost:5000"

    # HTTP
    allowed_origins: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS)
    )
    max_upload_mb: int = 50

    # Jobs
    job_ttl_seconds: int = 900

    # Rendering
    render_scale: float = 1.5
    jpeg_quality: int = 85

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Build a config from FLIPBOOK_* environment variables."""
        defaults = cls()
        origins = os.environ.get("FLIPBOOK_ALLOWED_ORIGINS")
        return cls(
            db_path=os.environ.get("FLIPBOOK_DB_PATH", defaults.db_path),
            storage_dir=os.environ.get(
                "FLIPBOOK_STORAGE_DIR", defaults.storage_dir),
            public_url=os.environ.get(
                "FLIPBOOK_PUBLIC_URL", defaults.public_url),
            allowed_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins else defaults.allowed_origins
            ),
            max_upload_mb=int(os.environ.get(
                "FLIPBOOK_MAX_UPLOAD_MB", defaults.max_upload_mb)),
            job_ttl_seconds=int(os.environ.get(
                "FLIPBOOK_JOB_TTL", defaults.job_ttl_seconds)),
            render_scale=float(os.environ.get(
                "FLIPBOOK_RENDER_SCALE", defaults.render_scale)),
            jpeg_quality=int(os.environ.get(
                "FLIPBOOK_JPEG_QUALITY", defaults.jpeg_quality)),
            log_level=os.environ.get("FLIPBOOK_LOG_LEVEL", defaults.log_level),
            log_file=os.environ.get("FLIPBOOK_LOG_FILE") or None,
        )

    @property
    def max_content_length(self) -> int:
        return self.max_upload_mb * 1024 * 1024


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Attach console (and optional file) handlers to the package logger."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    pkg_logger = logging.getLogger("flipbook")
    pkg_logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    # Console handler
    if not pkg_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(log_level)
        console.setFormatter(formatter)
        pkg_logger.addHandler(console)

    # File handler
    if log_file:
        already = any(
            isinstance(h, logging.FileHandler)
            and Path(h.baseFilename) == Path(log_file).absolute()
            for h in pkg_logger.handlers
        )
        if not already:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            pkg_logger.addHandler(file_handler)
