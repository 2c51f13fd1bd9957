"""
Page Rasterizer
===============
Renders PDF pages to JPEG images using PyMuPDF (fitz).

Pages are rendered strictly one at a time, in order: each page is decoded,
rasterized and encoded before the next one is touched, so peak memory stays
bounded by a single page regardless of document length.

Usage:
    rasterizer = Rasterizer(scale=1.5)
    with rasterizer.render(pdf_bytes) as document:
        for page in document:
            upload(page.number, page.data)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

import fitz  # PyMuPDF

from .errors import DecodeError, RenderError

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 1.5
DEFAULT_JPEG_QUALITY = 85


@dataclass(frozen=True)
class PageImage:
    """One rendered page (1-indexed)."""
    number: int
    data: bytes = field(repr=False)
    width: int
    height: int
    content_type: str = "image/jpeg"


class RenderedDocument:
    """
    An opened PDF whose pages are rendered lazily on iteration.

    ``page_count`` is known as soon as the document is opened. Iteration is
    single-pass; the underlying document is closed when iteration finishes,
    fails, or when ``close()`` is called.
    """

    def __init__(self, doc: fitz.Document, scale: float, jpeg_quality: int):
        self._doc = doc
        self.scale = scale
        self.jpeg_quality = jpeg_quality
        self.page_count = doc.page_count
        self._consumed = False

    def __iter__(self) -> Iterator[PageImage]:
        if self._consumed:
            raise RuntimeError("RenderedDocument can only be iterated once")
        self._consumed = True
        return self._pages()

    def _pages(self) -> Iterator[PageImage]:
        matrix = fitz.Matrix(self.scale, self.scale)
        try:
            for page_idx in range(self.page_count):
                yield self._render_page(page_idx, matrix)
        finally:
            self.close()

    def _render_page(self, page_idx: int, matrix: fitz.Matrix) -> PageImage:
        page_num = page_idx + 1
        try:
            page = self._doc[page_idx]
            pix = page.get_pixmap(matrix=matrix, alpha=False)
            data = pix.tobytes("jpeg", jpg_quality=self.jpeg_quality)
        except Exception as e:
            logger.error(f"Failed rendering page {page_num}/{self.page_count}: {e}")
            raise RenderError(
                f"Failed to render page {page_num}: {e}") from e

        logger.debug(
            f"Rendered page {page_num}/{self.page_count} "
            f"({pix.width}x{pix.height}, {len(data)} bytes)"
        )
        return PageImage(
            number=page_num,
            data=data,
            width=pix.width,
            height=pix.height,
        )

    def output_size(self, page_number: int) -> tuple[int, int]:
        """Pixel size of a page (1-indexed) once rendered at this scale."""
        rect = self._doc[page_number - 1].rect
        irect = (rect * fitz.Matrix(self.scale, self.scale)).irect
        return irect.width, irect.height

    def close(self):
        if not self._doc.is_closed:
            self._doc.close()

    def __enter__(self) -> "RenderedDocument":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class Rasterizer:
    """Converts PDF bytes into an ordered sequence of JPEG page images."""

    def __init__(
        self,
        scale: float = DEFAULT_SCALE,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
    ):
        if scale <= 0:
            raise ValueError("scale must be positive")
        self.scale = scale
        self.jpeg_quality = jpeg_quality

    def render(self, file_bytes: bytes) -> RenderedDocument:
        """
        Open a PDF from memory for page-by-page rendering.

        Raises:
            DecodeError: The bytes are not a readable PDF.
        """
        doc = _open_pdf(file_bytes)
        logger.info(
            f"Opened PDF with {doc.page_count} page(s) "
            f"(scale={self.scale}, quality={self.jpeg_quality})"
        )
        return RenderedDocument(doc, self.scale, self.jpeg_quality)

    def page_count(self, file_bytes: bytes) -> int:
        """Page count without rendering anything."""
        doc = _open_pdf(file_bytes)
        try:
            return doc.page_count
        finally:
            doc.close()


def _open_pdf(file_bytes: Optional[bytes]) -> fitz.Document:
    if not file_bytes:
        raise DecodeError("The uploaded file is empty.")
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as e:
        raise DecodeError(f"Invalid PDF structure: {e}") from e

    if doc.needs_pass:
        doc.close()
        raise DecodeError("The PDF is password protected.")
    return doc
