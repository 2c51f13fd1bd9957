"""
Service Client
==============
Small HTTP client for a running flipbook service.

Usage:
    client = FlipbookClient("http://localhost:5000")
    job_id = client.submit("book.pdf", "Catalogues", "2024")
    for event in client.stream(job_id):
        print(event.type, event.message or event.value)
"""

from __future__ import annotations

import json
import logging
import os
from typing import Iterator, Optional

import requests

from .models import ProgressEvent, Tier

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000"


class ClientError(Exception):
    """Non-2xx response (or transport failure) from the service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def parse_sse_lines(lines) -> Iterator[ProgressEvent]:
    """Decode ``data: {json}`` frames from an iterable of text lines."""
    for line in lines:
        if not line or not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if not payload:
            continue
        yield ProgressEvent.model_validate(json.loads(payload))


class FlipbookClient:
    """Thin wrapper over the service's HTTP API."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: int = 60):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise ClientError(f"Cannot reach {url}: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {"message": resp.text[:500]}

        if not resp.ok:
            message = data.get("message") if isinstance(data, dict) else None
            raise ClientError(
                message or f"HTTP {resp.status_code}", resp.status_code)
        return data

    # ─── Upload + Stream ──────────────────────────────────────────────────

    def submit(
        self,
        pdf_path: str,
        category: str,
        subcategory: str,
        uid: Optional[str] = None,
    ) -> str:
        """
        Upload a PDF and return the job id.
        With ``uid`` the book goes to the pending tier, otherwise public.
        """
        path = "/api/upload-team-pdf" if uid else "/api/upload-pdf"
        form = {"mainCategory": category, "subcategory": subcategory}
        if uid:
            form["uid"] = uid

        with open(pdf_path, "rb") as f:
            files = {
                "pdfFile": (os.path.basename(pdf_path), f, "application/pdf"),
            }
            data = self._request("POST", path, data=form, files=files)

        logger.info(f"Submitted {pdf_path} as job {data['jobId']}")
        return data["jobId"]

    def stream(self, job_id: str) -> Iterator[ProgressEvent]:
        """Open the progress stream and yield events until it ends."""
        url = f"{self.base_url}/api/process-stream/{job_id}"
        try:
            resp = self.session.get(url, stream=True, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ClientError(f"Cannot reach {url}: {e}") from e

        with resp:
            if not resp.ok:
                raise ClientError(
                    f"Stream failed (HTTP {resp.status_code})", resp.status_code)
            lines = resp.iter_lines(decode_unicode=True)
            for event in parse_sse_lines(lines):
                yield event
                if event.is_terminal:
                    return

    # ─── Workflow ─────────────────────────────────────────────────────────

    def approve(self, book_id: str) -> str:
        return self._request(
            "POST", "/api/approve-flipbook", json={"id": book_id})["message"]

    def delete(self, book_id: str, tier: Tier = Tier.PUBLIC) -> str:
        path = (
            "/api/delete-flipbook" if Tier(tier) is Tier.PUBLIC
            else "/api/delete-team-flipbook"
        )
        return self._request("DELETE", path, json={"id": book_id})["message"]

    def list_flipbooks(self, tier: Tier = Tier.PUBLIC) -> list[dict]:
        path = (
            "/api/flipbooks" if Tier(tier) is Tier.PUBLIC
            else "/api/team-flipbooks"
        )
        return self._request("GET", path)
