"""CLI for turning a reference list (or a Wikipedia article) into a PDF archive."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from . import config
from .archive import assemble_results
from .batch import run_batch
from .config import load_settings
from .config_validation import validate_runtime_config
from .errors import ArchiveError, BatchValidationError
from .export_csv import export_filename, report_to_csv
from .extraction import (
    ExtractionError,
    extract_article_title,
    extract_references,
    fetch_article_html,
    validate_wikipedia_url,
)
from .models import Reference, references_from_payload
from .utils import ensure_dirs, log_line, setup_run_logger


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the archive CLI."""

    parser = argparse.ArgumentParser(
        description="Download or render every cited source and pack the PDFs into a ZIP.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--references",
        type=Path,
        help="JSON file holding a list of {id, title, sourceUrl} objects.",
    )
    source.add_argument(
        "--article",
        help="Wikipedia article URL to extract references from.",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Parallel jobs (clamped to the interactive ceiling).",
    )
    parser.add_argument(
        "--out-dir",
        type=Path,
        default=None,
        help="Directory for the archive and CSV report (default: data dir).",
    )
    parser.add_argument(
        "--no-archive",
        action="store_true",
        help="Only write the CSV report.",
    )
    return parser


def _load_references(path: Path) -> list[Reference]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("references", [])
    if not isinstance(payload, list):
        raise BatchValidationError("References file must contain a list")
    return references_from_payload(payload)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the archive CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        validate_runtime_config("cli")
    except ValueError as exc:
        parser.error(str(exc))

    label = "references"
    try:
        if args.article:
            if not validate_wikipedia_url(args.article):
                parser.error("Invalid Wikipedia URL. Must be in format: https://<lang>.wikipedia.org/wiki/...")
            html = fetch_article_html(args.article)
            label = extract_article_title(html)
            references = extract_references(html)
        else:
            references = _load_references(args.references)
            label = args.references.stem
    except (OSError, ValueError, ExtractionError, BatchValidationError) as exc:
        parser.error(str(exc))

    if not references:
        print("No references with external links found.")
        return 1

    setup_run_logger()
    settings = load_settings()
    try:
        report = run_batch(references, args.concurrency, settings=settings, entrypoint="cli")
    except BatchValidationError as exc:
        parser.error(str(exc))

    out_dir: Path = args.out_dir or config.OUTPUT_DIR
    ensure_dirs()
    out_dir.mkdir(parents=True, exist_ok=True)

    csv_path = out_dir / export_filename(label)
    csv_path.write_text(report_to_csv(report), encoding="utf-8")

    print(f"References: {len(report.results)}")
    print(f"  downloaded: {report.succeeded}")
    print(f"  failed: {report.failed}")
    print(f"Report: {csv_path}")

    if report.succeeded and not args.no_archive:
        try:
            archive_bytes = assemble_results(report.results, settings)
        except ArchiveError as exc:
            log_line(f"[ARCHIVE] {exc}")
            print(f"Archive: not created ({exc})")
        else:
            zip_path = out_dir / export_filename(label, "zip")
            zip_path.write_bytes(archive_bytes)
            print(f"Archive: {zip_path}")

    return 0 if report.succeeded else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
