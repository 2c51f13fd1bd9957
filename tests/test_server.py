"""
HTTP API Tests
==============
End-to-end tests through the Flask test client: upload, progress stream,
update, delete, approve and read endpoints.
"""

from __future__ import annotations

import io
import json
import time
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from flipbook.cli import cli
from flipbook.client import ClientError, FlipbookClient, parse_sse_lines
from flipbook.config import ServiceConfig
from flipbook.models import EventType, Tier
from flipbook.server import create_app
from flipbook.storage import page_image_path

PUBLIC_URL = "http://testserver"


def _upload_form(pdf: bytes, **fields) -> dict:
    form = {
        "pdfFile": (io.BytesIO(pdf), "book.pdf", "application/pdf"),
        "mainCategory": "Sports",
        "subcategory": "Tennis",
    }
    form.update(fields)
    return {k: v for k, v in form.items() if v is not None}


def _parse_stream(body: str) -> list[dict]:
    events = []
    for frame in body.split("\n\n"):
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events


def _submit_and_run(client, pdf: bytes, uid: str = None) -> list[dict]:
    url = "/api/upload-team-pdf" if uid else "/api/upload-pdf"
    extra = {"uid": uid} if uid else {}
    resp = client.post(
        url, data=_upload_form(pdf, **extra), content_type="multipart/form-data")
    assert resp.status_code == 200
    job_id = resp.get_json()["jobId"]
    stream = client.get(f"/api/process-stream/{job_id}")
    return _parse_stream(stream.get_data(as_text=True))


def _only_record(services, tier: Tier):
    records = services.record_store.list_records(tier)
    assert len(records) == 1
    return records[0]


# ═══════════════════════════════════════════════════════════════════════════════
# UPLOAD + STREAM
# ═══════════════════════════════════════════════════════════════════════════════


class TestUpload:
    """Test job submission endpoints."""

    def test_upload_returns_job_id(self, client, services, pdf_bytes):
        resp = client.post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 200
        assert resp.get_json()["jobId"] in services.registry

    def test_missing_subcategory(self, client, pdf_bytes):
        resp = client.post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes, subcategory=None),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {
            "message": "Missing main category or subcategory."}

    def test_missing_file(self, client, pdf_bytes):
        resp = client.post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes, pdfFile=None),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {"message": "Missing file."}

    def test_team_upload_requires_uid(self, client, pdf_bytes):
        resp = client.post(
            "/api/upload-team-pdf",
            data=_upload_form(pdf_bytes),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {
            "message": "User ID (uid) is required for this operation."}

    def test_upload_too_large(self, config, pdf_bytes):
        app = create_app(config, overrides={"MAX_CONTENT_LENGTH": 64})
        resp = app.test_client().post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes),
            content_type="multipart/form-data",
        )
        assert resp.status_code == 413
        assert "message" in resp.get_json()


class TestProcessStream:
    """Test the SSE progress stream."""

    def test_three_page_public_submission(self, client, services, pdf_bytes):
        events = _submit_and_run(client, pdf_bytes)

        assert events[0] == {
            "type": "log", "message": "Uploading original PDF to storage..."}
        progress = [e["value"] for e in events if e["type"] == "progress"]
        assert progress == [33, 67, 100]
        assert events[-1] == {
            "type": "done", "message": "Flipbook processed successfully!"}

        record = _only_record(services, Tier.PUBLIC)
        assert record.category == "Sports"
        assert record.subcategory == "Tennis"
        assert len(record.page_image_urls) == 3

    def test_stream_headers(self, client, pdf_bytes):
        resp = client.post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes),
            content_type="multipart/form-data",
        )
        stream = client.get(f"/api/process-stream/{resp.get_json()['jobId']}")
        assert stream.status_code == 200
        assert stream.mimetype == "text/event-stream"
        assert stream.headers["Cache-Control"] == "no-cache"
        stream.get_data()

    def test_unknown_job(self, client):
        resp = client.get("/api/process-stream/does-not-exist")
        assert resp.status_code == 200
        assert _parse_stream(resp.get_data(as_text=True)) == [
            {"type": "error", "message": "Job not found or has expired."}]

    def test_invalid_pdf_streams_error(self, client, services):
        events = _submit_and_run(client, b"this is not a pdf")
        assert events[-1]["type"] == "error"
        assert [e for e in events if e["type"] == "done"] == []
        assert services.record_store.list_records(Tier.PUBLIC) == []

    def test_team_submission_is_pending(self, client, services, pdf_bytes):
        events = _submit_and_run(client, pdf_bytes, uid="u1")
        assert events[-1]["type"] == "done"
        record = _only_record(services, Tier.PENDING)
        assert record.uid == "u1"
        assert services.record_store.list_records(Tier.PUBLIC) == []

    def test_disconnect_does_not_abort_run(self, client, services, pdf_bytes):
        resp = client.post(
            "/api/upload-pdf",
            data=_upload_form(pdf_bytes),
            content_type="multipart/form-data",
        )
        job_id = resp.get_json()["jobId"]

        stream = client.get(f"/api/process-stream/{job_id}", buffered=False)
        first = next(stream.iter_encoded())
        stream.close()
        assert first.startswith(b"data: ")

        records = []
        deadline = time.monotonic() + 30
        while time.monotonic() < deadline:
            records = services.record_store.list_records(Tier.PUBLIC)
            if records:
                break
            time.sleep(0.05)

        assert len(records) == 1
        assert records[0].page_count == 3


# ═══════════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═══════════════════════════════════════════════════════════════════════════════


class TestApprove:

    def test_approve_publishes(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes, uid="u1")
        book_id = _only_record(services, Tier.PENDING).book_id

        resp = client.post("/api/approve-flipbook", json={"id": book_id})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "message": "Flipbook approved and published successfully!"}
        assert services.record_store.list_records(Tier.PENDING) == []
        assert _only_record(services, Tier.PUBLIC).book_id == book_id

    def test_approve_requires_id(self, client):
        resp = client.post("/api/approve-flipbook", json={})
        assert resp.status_code == 400
        assert resp.get_json() == {"message": "Flipbook ID is required."}

    def test_approve_nonexistent(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes)

        resp = client.post("/api/approve-flipbook", json={"id": "nope"})

        assert resp.status_code == 500
        assert "Pending flipbook does not exist" in resp.get_json()["message"]
        assert len(services.record_store.list_records(Tier.PUBLIC)) == 1


class TestDelete:

    def test_delete_public(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes)
        record = _only_record(services, Tier.PUBLIC)

        resp = client.delete("/api/delete-flipbook", json={"id": record.book_id})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "message": "Public flipbook deleted successfully."}
        assert services.record_store.list_records(Tier.PUBLIC) == []
        assert not services.blob_store.exists(
            page_image_path(record.book_id, 1))

    def test_delete_public_with_missing_original(
        self, client, services, pdf_bytes
    ):
        _submit_and_run(client, pdf_bytes)
        record = _only_record(services, Tier.PUBLIC)
        services.blob_store.delete(record.pdf_path_in_storage)

        resp = client.delete("/api/delete-flipbook", json={"id": record.book_id})

        assert resp.status_code == 200
        assert services.record_store.list_records(Tier.PUBLIC) == []

    def test_delete_pending(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes, uid="u1")
        record = _only_record(services, Tier.PENDING)

        resp = client.delete(
            "/api/delete-team-flipbook", json={"id": record.book_id})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "message": "Pending flipbook deleted successfully."}

    @pytest.mark.parametrize("url,message", [
        ("/api/delete-flipbook", "Flipbook not found."),
        ("/api/delete-team-flipbook", "Pending flipbook not found."),
    ])
    def test_delete_missing(self, client, url, message):
        resp = client.delete(url, json={"id": "nope"})
        assert resp.status_code == 404
        assert resp.get_json() == {"message": message}

    def test_delete_requires_id(self, client):
        resp = client.delete("/api/delete-flipbook", json={})
        assert resp.status_code == 400
        assert resp.get_json() == {"message": "Flipbook ID is required."}

    def test_delete_server_error(self, client, services):
        with patch.object(
            services.tiers, "delete", side_effect=RuntimeError("boom")
        ):
            resp = client.delete("/api/delete-flipbook", json={"id": "x"})
        assert resp.status_code == 500
        assert resp.get_json() == {
            "message": "Server error while deleting flipbook."}


class TestUpdate:

    def test_update_pending(self, client, services, pdf_bytes, pdf_factory):
        _submit_and_run(client, pdf_bytes, uid="u1")
        book_id = _only_record(services, Tier.PENDING).book_id

        resp = client.post(
            f"/api/update-team-pdf/{book_id}",
            data={
                "pdfFile": (io.BytesIO(pdf_factory(2)), "v2.pdf", "application/pdf"),
                "uid": "u1",
            },
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        assert resp.get_json() == {"message": "Flipbook updated successfully!"}
        record = _only_record(services, Tier.PENDING)
        assert record.book_id == book_id
        assert record.pdf_name == "v2.pdf"
        assert record.page_count == 2

    def test_update_missing_fields(self, client):
        resp = client.post(
            "/api/update-team-pdf/abc",
            data={"uid": "u1"},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {
            "message": "Missing book ID, user ID, or new file for update."}

    def test_update_not_found(self, client, pdf_bytes):
        resp = client.post(
            "/api/update-team-pdf/nope",
            data={
                "pdfFile": (io.BytesIO(pdf_bytes), "v2.pdf", "application/pdf"),
                "uid": "u1",
            },
            content_type="multipart/form-data",
        )
        assert resp.status_code == 404
        assert resp.get_json() == {"message": "Flipbook to update not found."}

    def test_update_render_failure(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes, uid="u1")
        book_id = _only_record(services, Tier.PENDING).book_id

        resp = client.post(
            f"/api/update-team-pdf/{book_id}",
            data={
                "pdfFile": (io.BytesIO(b"garbage"), "v2.pdf", "application/pdf"),
                "uid": "u1",
            },
            content_type="multipart/form-data",
        )
        assert resp.status_code == 500
        assert resp.get_json() == {
            "message": "Server error during update process."}


# ═══════════════════════════════════════════════════════════════════════════════
# READS, BLOBS, HEALTH, CORS
# ═══════════════════════════════════════════════════════════════════════════════


class TestReads:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_list_and_get(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes)
        book_id = _only_record(services, Tier.PUBLIC).book_id

        listing = client.get("/api/flipbooks").get_json()
        assert [item["id"] for item in listing] == [book_id]
        assert listing[0]["mainCategory"] == "Sports"

        single = client.get(f"/api/flipbooks/{book_id}")
        assert single.status_code == 200
        assert len(single.get_json()["pageImageUrls"]) == 3

        assert client.get("/api/team-flipbooks").get_json() == []
        missing = client.get(f"/api/team-flipbooks/{book_id}")
        assert missing.status_code == 404
        assert missing.get_json() == {"message": "Pending flipbook not found."}

    def test_team_list_filters_by_uid(self, client, pdf_bytes):
        _submit_and_run(client, pdf_bytes, uid="u1")
        _submit_and_run(client, pdf_bytes, uid="u2")

        assert len(client.get("/api/team-flipbooks").get_json()) == 2
        mine = client.get("/api/team-flipbooks?uid=u1").get_json()
        assert [item["uid"] for item in mine] == ["u1"]

    def test_page_image_url_is_served(self, client, services, pdf_bytes):
        _submit_and_run(client, pdf_bytes)
        url = _only_record(services, Tier.PUBLIC).thumbnail_url

        resp = client.get(url[len(PUBLIC_URL):])

        assert resp.status_code == 200
        assert resp.mimetype == "image/jpeg"
        assert resp.data[:2] == b"\xff\xd8"

    def test_missing_blob(self, client):
        assert client.get("/blobs/processed-images/x/page-1.jpg").status_code == 404

    def test_cors_allows_configured_origin(self, client):
        resp = client.get(
            "/api/health", headers={"Origin": "http://localhost:3000"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    def test_cors_rejects_other_origin(self, client):
        resp = client.get(
            "/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers


class TestConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLIPBOOK_ALLOWED_ORIGINS", "http://a.test, http://b.test")
        monkeypatch.setenv("FLIPBOOK_MAX_UPLOAD_MB", "10")
        monkeypatch.setenv("FLIPBOOK_JOB_TTL", "30")
        config = ServiceConfig.from_env()
        assert config.allowed_origins == ["http://a.test", "http://b.test"]
        assert config.max_content_length == 10 * 1024 * 1024
        assert config.job_ttl_seconds == 30

    def test_defaults(self, monkeypatch):
        for name in ("FLIPBOOK_ALLOWED_ORIGINS", "FLIPBOOK_MAX_UPLOAD_MB",
                     "FLIPBOOK_RENDER_SCALE"):
            monkeypatch.delenv(name, raising=False)
        config = ServiceConfig.from_env()
        assert "http://localhost:3000" in config.allowed_origins
        assert config.max_upload_mb == 50
        assert config.render_scale == 1.5


# ═══════════════════════════════════════════════════════════════════════════════
# CLIENT
# ═══════════════════════════════════════════════════════════════════════════════


class TestClient:

    def test_parse_sse_lines(self):
        lines = [
            'data: {"type": "log", "message": "Uploading original PDF to storage..."}',
            "",
            ": keep-alive comment",
            'data: {"type": "progress", "value": 50}',
            "",
            'data: {"type": "done", "message": "ok"}',
        ]
        events = list(parse_sse_lines(lines))
        assert [e.type for e in events] == [
            EventType.LOG, EventType.PROGRESS, EventType.DONE]
        assert events[1].value == 50

    def test_delete_routes_by_tier(self):
        client = FlipbookClient("http://svc.test/")
        response = MagicMock(ok=True)
        response.json.return_value = {
            "message": "Pending flipbook deleted successfully."}
        with patch.object(
            client.session, "request", return_value=response
        ) as request:
            message = client.delete("b1", Tier.PENDING)

        assert message == "Pending flipbook deleted successfully."
        request.assert_called_once_with(
            "DELETE", "http://svc.test/api/delete-team-flipbook",
            timeout=client.timeout, json={"id": "b1"},
        )

    def test_error_response_raises(self):
        client = FlipbookClient("http://svc.test")
        response = MagicMock(ok=False, status_code=404)
        response.json.return_value = {"message": "Flipbook not found."}
        with patch.object(client.session, "request", return_value=response):
            with pytest.raises(ClientError) as exc:
                client.approve("nope")
        assert exc.value.status_code == 404
        assert exc.value.message == "Flipbook not found."

    def test_approve_returns_message(self):
        client = FlipbookClient("http://svc.test")
        response = MagicMock(ok=True)
        response.json.return_value = {
            "message": "Flipbook approved and published successfully!"}
        with patch.object(
            client.session, "request", return_value=response
        ) as request:
            message = client.approve("b1")

        assert message == "Flipbook approved and published successfully!"
        request.assert_called_once_with(
            "POST", "http://svc.test/api/approve-flipbook",
            timeout=client.timeout, json={"id": "b1"},
        )

    def test_list_routes_by_tier(self):
        client = FlipbookClient("http://svc.test")
        response = MagicMock(ok=True)
        response.json.return_value = [{"id": "b1", "uid": "u1"}]
        with patch.object(
            client.session, "request", return_value=response
        ) as request:
            pending = client.list_flipbooks(Tier.PENDING)
            client.list_flipbooks()

        assert pending == [{"id": "b1", "uid": "u1"}]
        assert [c.args for c in request.call_args_list] == [
            ("GET", "http://svc.test/api/team-flipbooks"),
            ("GET", "http://svc.test/api/flipbooks"),
        ]


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


class TestInfoCommand:

    def test_reports_page_images(self, tmp_path, pdf_bytes):
        pdf_path = tmp_path / "book.pdf"
        pdf_path.write_bytes(pdf_bytes)

        result = CliRunner().invoke(cli, ["info", str(pdf_path)])

        assert result.exit_code == 0
        assert "Page images" in result.output
        assert "3" in result.output

    def test_unreadable_pdf(self, tmp_path):
        pdf_path = tmp_path / "broken.pdf"
        pdf_path.write_bytes(b"not a pdf")

        result = CliRunner().invoke(cli, ["info", str(pdf_path)])

        assert result.exit_code == 1
        assert "Error" in result.output
