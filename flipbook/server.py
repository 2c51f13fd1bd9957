"""
HTTP Microservice
=================
Flask-based HTTP API for the flipbook conversion service.

Upload is two-phase: the client posts a PDF and receives a job id, then
opens a Server-Sent Events stream with that id, which runs the conversion
and reports progress until a single ``done`` or ``error`` event.

Endpoints:
    POST   /api/upload-pdf                 → Submit a job for the public tier
    POST   /api/upload-team-pdf            → Submit a job for the pending tier
    GET    /api/process-stream/<jobId>     → Run a job, stream progress (SSE)
    POST   /api/update-team-pdf/<bookId>   → Replace a pending flipbook's PDF
    DELETE /api/delete-flipbook            → Delete a public flipbook
    DELETE /api/delete-team-flipbook       → Delete a pending flipbook
    POST   /api/approve-flipbook           → Promote pending → public
    GET    /api/flipbooks[/<bookId>]       → Read public flipbooks
    GET    /api/team-flipbooks[/<bookId>]  → Read pending flipbooks
    GET    /api/health                     → Health check
    GET    /blobs/<path>                   → Serve stored blobs (local store)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import (
    Blueprint,
    Flask,
    Response,
    current_app,
    jsonify,
    request,
    send_from_directory,
)
from flask_cors import CORS
from werkzeug.exceptions import RequestEntityTooLarge

from . import __version__
from .config import ServiceConfig, configure_logging
from .database import SQLiteRecordStore
from .errors import FlipbookError, NotFoundError
from .jobs import JobRegistry
from .models import Tier
from .pipeline import ConversionPipeline
from .rasterizer import Rasterizer
from .storage import LocalBlobStore
from .tiers import TierManager

logger = logging.getLogger(__name__)

api = Blueprint("flipbook", __name__)


# ─── Service Wiring ───────────────────────────────────────────────────────────


@dataclass
class Services:
    """Collaborators shared by all request handlers of one app."""
    config: ServiceConfig
    registry: JobRegistry
    blob_store: LocalBlobStore
    record_store: SQLiteRecordStore
    pipeline: ConversionPipeline
    tiers: TierManager


def build_services(config: ServiceConfig) -> Services:
    """Create the storage layers, registry, pipeline and tier manager."""
    record_store = SQLiteRecordStore(config.db_path)
    record_store.init_db()
    blob_store = LocalBlobStore(config.storage_dir, config.public_url)
    registry = JobRegistry(ttl_seconds=config.job_ttl_seconds)
    rasterizer = Rasterizer(
        scale=config.render_scale, jpeg_quality=config.jpeg_quality)
    pipeline = ConversionPipeline(
        blob_store=blob_store,
        record_store=record_store,
        rasterizer=rasterizer,
        registry=registry,
    )
    tiers = TierManager(blob_store, record_store, pipeline)
    return Services(
        config=config,
        registry=registry,
        blob_store=blob_store,
        record_store=record_store,
        pipeline=pipeline,
        tiers=tiers,
    )


def services() -> Services:
    return current_app.extensions["flipbook"]


def create_app(
    config: Optional[ServiceConfig] = None,
    overrides: Optional[dict] = None,
    service_overrides: Optional[Services] = None,
) -> Flask:
    """Create and configure the Flask app."""
    config = config or ServiceConfig.from_env()
    configure_logging(config.log_level, config.log_file)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    if overrides:
        app.config.update(overrides)

    CORS(
        app,
        origins=config.allowed_origins,
        methods=["GET", "POST", "DELETE", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        supports_credentials=True,
    )

    app.extensions["flipbook"] = service_overrides or build_services(config)
    app.register_blueprint(api)

    logger.info(
        f"Flipbook service ready (db={config.db_path}, "
        f"storage={config.storage_dir})"
    )
    return app


# ─── Error Handlers ───────────────────────────────────────────────────────────


@api.app_errorhandler(FlipbookError)
def handle_flipbook_error(error: FlipbookError):
    return jsonify(error.to_dict()), error.status_code


@api.app_errorhandler(RequestEntityTooLarge)
def handle_too_large(error):
    limit_mb = current_app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
    return jsonify({"message": f"File too large (limit {limit_mb} MB)."}), 413


# ─── Health Check ─────────────────────────────────────────────────────────────


@api.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "flipbook",
        "version": __version__,
        "pending_jobs": len(services().registry),
    })


# ─── Stage 1: Upload ──────────────────────────────────────────────────────────


def _create_upload_job(target_tier: Tier, uid: Optional[str] = None):
    file = request.files.get("pdfFile")
    has_file = file is not None and bool(file.filename)

    token = services().registry.submit(
        file_bytes=file.read() if has_file else None,
        file_name=file.filename if has_file else None,
        mime_type=file.mimetype if has_file else None,
        category=request.form.get("mainCategory"),
        subcategory=request.form.get("subcategory"),
        target_tier=target_tier,
        owner_id=uid,
    )
    return jsonify({"jobId": token})


@api.route("/api/upload-pdf", methods=["POST"])
def upload_pdf():
    """Admin upload straight to the public collection."""
    return _create_upload_job(Tier.PUBLIC)


@api.route("/api/upload-team-pdf", methods=["POST"])
def upload_team_pdf():
    """Team upload to the pending collection; requires uid."""
    uid = request.form.get("uid")
    if not uid:
        return jsonify({
            "message": "User ID (uid) is required for this operation."
        }), 400
    return _create_upload_job(Tier.PENDING, uid)


# ─── Stage 2: Process + Stream ────────────────────────────────────────────────


@api.route("/api/process-stream/<job_id>", methods=["GET"])
def process_stream(job_id: str):
    """
    Run the job and stream its progress as Server-Sent Events.
    Always 200; failures arrive as a terminal ``error`` event.
    """
    channel = services().pipeline.open_stream(job_id)

    def generate():
        for event in channel:
            yield event.to_sse()

    return Response(
        generate(),
        status=200,
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ─── Update (Pending Tier) ────────────────────────────────────────────────────


@api.route("/api/update-team-pdf/<book_id>", methods=["POST"])
def update_team_pdf(book_id: str):
    """Replace the PDF (and every page image) of a pending flipbook."""
    uid = request.form.get("uid")
    new_file = request.files.get("pdfFile")

    if not book_id or not uid or new_file is None or not new_file.filename:
        return jsonify({
            "message": "Missing book ID, user ID, or new file for update."
        }), 400

    try:
        services().tiers.replace(
            book_id=book_id,
            owner_id=uid,
            file_bytes=new_file.read(),
            file_name=new_file.filename,
            mime_type=new_file.mimetype,
        )
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception as e:
        logger.error(f"[Update Error for bookId: {book_id}] {e}", exc_info=True)
        return jsonify({"message": "Server error during update process."}), 500

    return jsonify({"message": "Flipbook updated successfully!"}), 200


# ─── Delete & Approval ────────────────────────────────────────────────────────


def _requested_book_id() -> Optional[str]:
    data = request.get_json(silent=True) or {}
    return data.get("id")


def _delete(tier: Tier, success_message: str, error_message: str):
    book_id = _requested_book_id()
    if not book_id:
        return jsonify({"message": "Flipbook ID is required."}), 400

    try:
        services().tiers.delete(book_id, tier)
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception as e:
        logger.error(
            f"[Delete Error for bookId: {book_id}] {e}", exc_info=True)
        return jsonify({"message": error_message}), 500

    return jsonify({"message": success_message}), 200


@api.route("/api/delete-flipbook", methods=["DELETE"])
def delete_flipbook():
    """Delete a public flipbook and all its blobs."""
    return _delete(
        Tier.PUBLIC,
        "Public flipbook deleted successfully.",
        "Server error while deleting flipbook.",
    )


@api.route("/api/delete-team-flipbook", methods=["DELETE"])
def delete_team_flipbook():
    """Delete a pending flipbook and all its blobs."""
    return _delete(
        Tier.PENDING,
        "Pending flipbook deleted successfully.",
        "Server error while deleting pending flipbook.",
    )


@api.route("/api/approve-flipbook", methods=["POST"])
def approve_flipbook():
    """Move a pending flipbook into the public collection."""
    book_id = _requested_book_id()
    if not book_id:
        return jsonify({"message": "Flipbook ID is required."}), 400

    try:
        services().tiers.approve(book_id)
    except Exception as e:
        logger.error(f"[Approval Error for bookId: {book_id}] {e}")
        message = getattr(e, "message", None) or str(e)
        return jsonify({
            "message": message or "Server error during approval process."
        }), 500

    return jsonify({
        "message": "Flipbook approved and published successfully!"
    }), 200


# ─── Reads ────────────────────────────────────────────────────────────────────


@api.route("/api/flipbooks", methods=["GET"])
def list_flipbooks():
    records = services().tiers.list_records(Tier.PUBLIC)
    return jsonify([r.to_api() for r in records])


@api.route("/api/team-flipbooks", methods=["GET"])
def list_team_flipbooks():
    records = services().tiers.list_records(Tier.PENDING)
    uid = request.args.get("uid")
    if uid:
        records = [r for r in records if r.uid == uid]
    return jsonify([r.to_api() for r in records])


@api.route("/api/flipbooks/<book_id>", methods=["GET"])
def get_flipbook(book_id: str):
    return jsonify(services().tiers.get(book_id, Tier.PUBLIC).to_api())


@api.route("/api/team-flipbooks/<book_id>", methods=["GET"])
def get_team_flipbook(book_id: str):
    return jsonify(services().tiers.get(book_id, Tier.PENDING).to_api())


@api.route("/blobs/<path:blob_path>", methods=["GET"])
def serve_blob(blob_path: str):
    """Serve a stored blob; target of page image URLs."""
    store = services().blob_store
    if not store.exists(blob_path):
        return jsonify({"message": "Blob not found."}), 404
    return send_from_directory(str(store.root_dir), blob_path)


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    config: Optional[ServiceConfig] = None,
):
    """Start the microservice server."""
    app = create_app(config)
    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    run_server(debug=True)
