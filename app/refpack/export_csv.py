"""CSV projection of a batch report."""

from __future__ import annotations

import csv
import io
import re
from typing import Any, Iterable, Mapping

from .models import BatchReport, Downloaded, Failed

CSV_HEADERS = ["#", "Title", "Source URL", "Status", "Error", "Output File"]


def _row_from_result(result: Downloaded | Failed) -> list[Any]:
    if isinstance(result, Downloaded):
        return [result.id, result.reference.title, result.reference.source_url, result.status.value, "", result.output_name]
    return [result.id, result.reference.title, result.reference.source_url, result.status.value, result.error, ""]


def _row_from_mapping(item: Mapping[str, Any]) -> list[Any]:
    return [
        item.get("id", ""),
        item.get("title", ""),
        item.get("sourceUrl") or item.get("source_url") or "",
        item.get("status", ""),
        item.get("error") or "",
        item.get("outputName") or item.get("output_name") or "",
    ]


def _write(rows: Iterable[list[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(rows)
    return output.getvalue()


def report_to_csv(report: BatchReport) -> str:
    """Serialise a report to CSV, one row per reference in id order."""

    ordered = sorted(report.results, key=lambda result: result.id)
    return _write(_row_from_result(result) for result in ordered)


def results_payload_to_csv(results: Iterable[Mapping[str, Any]]) -> str:
    """Serialise already-serialised job results (as the transport sends them)."""

    return _write(_row_from_mapping(item) for item in results if isinstance(item, Mapping))


def export_filename(label: str, extension: str = "csv") -> str:
    slug = re.sub(r"[^a-z0-9]", "_", (label or "references"), flags=re.IGNORECASE)
    return f"refs-{slug}.{extension}"


__all__ = ["CSV_HEADERS", "report_to_csv", "results_payload_to_csv", "export_filename"]
