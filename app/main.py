from __future__ import annotations

import base64
import binascii
import os
from typing import Any

from flask import Flask, Response, jsonify, request

from app.refpack import config
from app.refpack.archive import ArchiveEntry, assemble, assemble_results
from app.refpack.batch import run_batch
from app.refpack.config import load_settings
from app.refpack.config_validation import validate_runtime_config
from app.refpack.errors import (
    ArchiveError,
    ArchiveTimeoutError,
    ArchiveTooLargeError,
    BatchValidationError,
)
from app.refpack.export_csv import export_filename, results_payload_to_csv
from app.refpack.extraction import (
    ExtractionError,
    extract_article_title,
    extract_references,
    fetch_article_html,
    validate_wikipedia_url,
)
from app.refpack.healthcheck import run_health_checks
from app.refpack.jobs import ReferenceProcessor
from app.refpack.logging_utils import _pipeline_event
from app.refpack.models import Reference, references_from_payload
from app.refpack.utils import ensure_dirs, log_line

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Storage paths are created on import so WSGI entrypoints find them ready.
ensure_dirs()


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _error(message: str, status: int, **extra: Any) -> tuple[Response, int]:
    return jsonify({"ok": False, "error": message, **extra}), status


def _archive_status(exc: ArchiveError) -> int:
    if isinstance(exc, ArchiveTooLargeError):
        return 413
    if isinstance(exc, ArchiveTimeoutError):
        return 504
    return 400


def _parse_concurrency(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@app.post("/api/extract-references")
def api_extract_references() -> Response:
    """Extract the cited sources of a Wikipedia article."""

    wiki_url = str(_json_body().get("wikiUrl") or "").strip()
    if not wiki_url:
        return _error("Wikipedia URL is required", 400)
    if not validate_wikipedia_url(wiki_url):
        return _error(
            "Invalid Wikipedia URL. Must be in format: https://<lang>.wikipedia.org/wiki/...",
            400,
        )

    try:
        html = fetch_article_html(wiki_url)
    except ExtractionError as exc:
        log_line(f"[EXTRACT] {exc}")
        return _error(str(exc), 502)

    references = extract_references(html)
    return jsonify(
        {
            "ok": True,
            "articleTitle": extract_article_title(html),
            "references": [reference.to_dict() for reference in references],
        }
    )


@app.post("/api/process-reference")
def api_process_reference() -> Response:
    """Download or render a single reference and return the PDF inline."""

    try:
        reference = Reference.from_dict(_json_body())
    except BatchValidationError as exc:
        return _error(exc.message, 400)

    result = ReferenceProcessor(load_settings())(reference)
    return jsonify({"ok": True, **result.to_dict(include_bytes=True)})


@app.post("/api/process-references-batch")
def api_process_references_batch() -> Response:
    """Run one batch and return the report, plus the archive when requested."""

    payload = _json_body()
    items = payload.get("references")
    if not isinstance(items, list) or not items:
        return _error("No references provided", 400)

    try:
        validate_runtime_config("ui")
    except ValueError as exc:
        _pipeline_event("error", phase="api", context="batch", error="config_invalid", message=str(exc))
        return _error("config_invalid", 500, details=str(exc))

    settings = load_settings()
    try:
        references = references_from_payload(items)
        report = run_batch(
            references,
            _parse_concurrency(payload.get("batchSize")),
            settings=settings,
            entrypoint="ui",
        )
    except BatchValidationError as exc:
        return _error(exc.message, 400)

    body: dict[str, Any] = {"ok": True, **report.to_dict()}
    if payload.get("includeArchive", True) and report.succeeded:
        try:
            archive_bytes = assemble_results(report.results, settings)
        except ArchiveError as exc:
            log_line(f"[ARCHIVE] {exc}")
            body["archiveError"] = {"error": exc.message, "errorCode": exc.error_code}
        else:
            body["zipBase64"] = base64.b64encode(archive_bytes).decode("ascii")
            body["zipName"] = config.ZIP_NAME
    return jsonify(body)


@app.post("/api/create-zip")
def api_create_zip() -> Response:
    """Pack already-produced PDFs (sent base64-encoded) into one archive."""

    files = _json_body().get("files")
    if not isinstance(files, list) or not files:
        return _error("No files provided", 400)

    settings = load_settings()
    if len(files) > settings.max_batch_size:
        return _error(f"Maximum {settings.max_batch_size} files allowed per ZIP", 400)

    entries: list[ArchiveEntry] = []
    for index, item in enumerate(files):
        if not isinstance(item, dict):
            continue
        try:
            reference_id = int(item.get("id") or index + 1)
            content = base64.b64decode(item.get("contentBase64") or "", validate=True)
        except (TypeError, ValueError, binascii.Error):
            log_line(f"[ARCHIVE] Skipping invalid file entry at index {index}")
            continue
        entries.append(
            ArchiveEntry(
                reference_id=reference_id,
                name=str(item.get("filename") or ""),
                content=content,
            )
        )

    try:
        archive_bytes = assemble(entries, settings)
    except ArchiveError as exc:
        log_line(f"[ARCHIVE] {exc}")
        return _error(exc.message, _archive_status(exc), errorCode=exc.error_code)

    return jsonify(
        {
            "ok": True,
            "zipName": config.ZIP_NAME,
            "zipBase64": base64.b64encode(archive_bytes).decode("ascii"),
        }
    )


@app.post("/api/export-csv")
def api_export_csv() -> Response:
    """Provide a batch's results as a downloadable CSV file."""

    payload = _json_body()
    results = payload.get("results")
    if not isinstance(results, list):
        return _error("results must be a list", 400)

    filename = export_filename(str(payload.get("articleTitle") or "references"))
    return Response(
        results_payload_to_csv(results),
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and browser."""

    result = run_health_checks(entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8080)
