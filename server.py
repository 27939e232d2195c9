"""
Travel Ledger Dashboard — API Server
====================================
Flask API backend for the travel ledger dashboard.
Handles ledger upload and parsing, review edits, metrics and exports.
Supports: raw ledger exports and standard travel sheets (CSV, XLS, XLSX).

Usage:
    python server.py
    Then POST a ledger to http://localhost:5000/api/upload
"""

import io
import os
import time
import base64
import logging
import concurrent.futures
from datetime import datetime

from flask import Flask, request, jsonify, send_file, g
from flask_cors import CORS
from werkzeug.exceptions import RequestEntityTooLarge
from dotenv import load_dotenv

from ledger_parser import parse_file, LedgerParseError, ALLOWED_EXTENSIONS
from travel_report import (
    calculate_dashboard_metrics,
    prepare_chart_data,
    filter_travel_data,
    sort_travel_data,
    export_to_excel,
)
from pdf_export import generate_pdf_report
from db import (
    init_db,
    create_upload_session,
    create_travel_data_batch,
    get_travel_data_by_session,
    get_upload_session,
    update_travel_data,
    delete_travel_data,
    get_recent_upload_sessions,
    UPDATABLE_FIELDS,
)

load_dotenv()

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────
# APP SETUP
# ─────────────────────────────────────────────────────────────

MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", 3 * 1024 * 1024))  # 3MB
PROCESSING_TIMEOUT = float(os.environ.get("PROCESSING_TIMEOUT", 15))         # seconds

RATE_FIELDS = ("customerRate", "companyRate", "profit")

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", "travel-ledger-dev")
# Multipart framing adds a little on top of the file itself
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 64 * 1024

CORS(app)

# Uploads wait at most PROCESSING_TIMEOUT on a parse worker
_parse_pool = concurrent.futures.ThreadPoolExecutor(max_workers=4)


def _error(message, code, status):
    return jsonify({"message": message, "code": code}), status


@app.before_request
def _start_timer():
    g.started = time.time()


@app.after_request
def _log_request(response):
    if request.path.startswith("/api"):
        duration = (time.time() - g.get("started", time.time())) * 1000
        logger.info("%s %s %s in %.0fms", request.method, request.path, response.status_code, duration)
    return response


@app.errorhandler(RequestEntityTooLarge)
def _too_large(_e):
    return _error(f"File size too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
                  "FILE_TOO_LARGE", 413)


# ─────────────────────────────────────────────────────────────
# UPLOAD
# ─────────────────────────────────────────────────────────────

def _incoming_file():
    """Return (filename, bytes) from a multipart 'file' field or a base64 JSON body."""
    if request.is_json:
        data = request.get_json(silent=True) or {}
        fname = data.get("name")
        fdata = data.get("data")  # data:application/vnd...;base64,....
        if fname and fdata:
            if "," in fdata:
                _, fdata = fdata.split(",", 1)
            try:
                return fname, base64.b64decode(fdata)
            except ValueError:
                return fname, b""
        return None, None

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return None, None
    return upload.filename, upload.read()


@app.route("/api/upload", methods=["POST"])
def upload_ledger():
    """Accept one CSV/XLS/XLSX ledger, parse it, persist it, return the entries."""
    fname, file_bytes = _incoming_file()
    if not fname:
        return _error("No file uploaded", "NO_FILE", 400)

    ext = os.path.splitext(fname.lower())[1]
    if ext not in ALLOWED_EXTENSIONS:
        return _error("Invalid file type. Only CSV, XLS, and XLSX files are allowed.",
                      "INVALID_FILE_TYPE", 415)
    if len(file_bytes) > MAX_UPLOAD_BYTES:
        return _too_large(None)
    if not file_bytes:
        return _error("Empty file uploaded", "PROCESSING_ERROR", 400)

    future = _parse_pool.submit(parse_file, file_bytes, fname)
    try:
        result = future.result(timeout=PROCESSING_TIMEOUT)
    except concurrent.futures.TimeoutError:
        logger.error("Parsing '%s' exceeded %.0fs", fname, PROCESSING_TIMEOUT)
        return _error("Request timeout - File processing took too long", "PROCESSING_TIMEOUT", 504)
    except LedgerParseError as e:
        logger.warning("Upload '%s' rejected: %s", fname, e)
        return _error(str(e), "PROCESSING_ERROR", 400)
    except Exception:
        logger.exception("Parser crashed on file '%s'", fname)
        return _error("File processing failed", "PROCESSING_ERROR", 400)

    payload = result.to_dict()

    session_row = create_upload_session(fname, payload["openingBalance"], result.total_records)
    if not session_row:
        return _error("Failed to save upload session", "STORAGE_ERROR", 500)

    saved = create_travel_data_batch(session_row["id"], payload["entries"])
    if saved is None:
        return _error("Failed to save travel data", "STORAGE_ERROR", 500)

    payload["sessionId"] = session_row["id"]
    return jsonify(payload)


# ─────────────────────────────────────────────────────────────
# TRAVEL DATA ROUTES
# ─────────────────────────────────────────────────────────────

@app.route("/api/travel-data/<session_id>", methods=["GET"])
def get_travel_data(session_id):
    """Rows of one upload session, optionally filtered and sorted."""
    rows = get_travel_data_by_session(session_id)
    if rows is None:
        return _error("Failed to retrieve travel data", "STORAGE_ERROR", 500)

    args = request.args
    rows = filter_travel_data(
        rows,
        search=args.get("search"),
        status=args.get("status"),
        start=args.get("start"),
        end=args.get("end"),
    )
    if args.get("sortBy"):
        rows = sort_travel_data(rows, args["sortBy"], descending=args.get("order") == "desc")
    return jsonify(rows)


def _coerce_updates(data):
    """Validate a PATCH body; returns (updates, error_message)."""
    updates = {}
    for key, value in data.items():
        if key not in UPDATABLE_FIELDS or value is None:
            continue
        if key in RATE_FIELDS:
            try:
                updates[key] = float(value)
            except (TypeError, ValueError):
                return None, f"{key} must be a number"
        elif isinstance(value, str):
            updates[key] = value
        else:
            return None, f"{key} must be a string"

    if "customerRate" in updates and "companyRate" in updates and "profit" not in updates:
        updates["profit"] = float(round(updates["customerRate"] - updates["companyRate"]))
    return updates, None


@app.route("/api/travel-data/<record_id>", methods=["PATCH"])
def patch_travel_data(record_id):
    """Update reviewer-editable fields of one row."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _error("Update failed: JSON object expected", "VALIDATION_ERROR", 400)

    updates, problem = _coerce_updates(data)
    if problem:
        return _error(problem, "VALIDATION_ERROR", 400)
    if not updates:
        return _error("No updatable fields provided", "VALIDATION_ERROR", 400)

    updated = update_travel_data(record_id, updates)
    if updated is None:
        return _error("Travel data not found", "NOT_FOUND", 404)
    return jsonify(updated)


@app.route("/api/travel-data/<record_id>", methods=["DELETE"])
def remove_travel_data(record_id):
    """Delete one row."""
    if delete_travel_data(record_id):
        return jsonify({"message": "Travel data deleted successfully"})
    return _error("Delete failed", "STORAGE_ERROR", 500)


@app.route("/api/upload-sessions", methods=["GET"])
def list_upload_sessions():
    """Ten most recent uploads."""
    sessions = get_recent_upload_sessions(limit=10)
    if sessions is None:
        return _error("Failed to retrieve upload sessions", "STORAGE_ERROR", 500)
    return jsonify(sessions)


# ─────────────────────────────────────────────────────────────
# METRICS & EXPORTS
# ─────────────────────────────────────────────────────────────

@app.route("/api/metrics/<session_id>", methods=["GET"])
def session_metrics(session_id):
    """Summary cards and chart series for one session."""
    rows = get_travel_data_by_session(session_id)
    if rows is None:
        return _error("Failed to retrieve travel data", "STORAGE_ERROR", 500)
    return jsonify({
        "metrics": calculate_dashboard_metrics(rows),
        "charts": prepare_chart_data(rows),
    })


@app.route("/api/export/<session_id>/xlsx", methods=["GET"])
def export_session_excel(session_id):
    """Download the session as an Excel workbook."""
    rows = get_travel_data_by_session(session_id)
    if rows is None:
        return _error("Failed to retrieve travel data", "STORAGE_ERROR", 500)
    if not rows:
        return _error("No data available for export", "NO_DATA", 404)

    args = request.args
    try:
        xlsx_bytes = export_to_excel(
            rows,
            include_summary=args.get("summary", "true") != "false",
            include_raw=args.get("raw") == "true",
            status_filter=args.get("status"),
            start=args.get("start"),
            end=args.get("end"),
        )
    except Exception:
        logger.exception("Excel export failed for session %s", session_id)
        return _error("Failed to export to Excel", "EXPORT_ERROR", 500)

    return send_file(
        io.BytesIO(xlsx_bytes),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"Travel_Export_{datetime.now():%Y-%m-%d}.xlsx",
    )


@app.route("/api/export/<session_id>/pdf", methods=["GET"])
def export_session_pdf(session_id):
    """Download a PDF summary of the session."""
    rows = get_travel_data_by_session(session_id)
    if rows is None:
        return _error("Failed to retrieve travel data", "STORAGE_ERROR", 500)
    if not rows:
        return _error("No data available for export", "NO_DATA", 404)

    upload = get_upload_session(session_id) or {}
    try:
        pdf_bytes = generate_pdf_report(
            rows,
            opening_balance=upload.get("openingBalance"),
            source_file=upload.get("filename"),
            currency_symbol=request.args.get("currency", "PKR"),
        )
    except Exception:
        logger.exception("PDF export failed for session %s", session_id)
        return _error("PDF generation failed", "EXPORT_ERROR", 500)

    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"Travel_Report_{datetime.now():%Y-%m-%d}.pdf",
    )


@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})


# ─────────────────────────────────────────────────────────────
# RUN
# ─────────────────────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Initializing Database...")
    init_db()

    port = int(os.environ.get("PORT", 5000))
    logger.info("Travel Ledger API on http://localhost:%d", port)
    app.run(host="0.0.0.0", port=port, debug=False, use_reloader=False)
