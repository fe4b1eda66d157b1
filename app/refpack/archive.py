from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from . import config
from .config import PipelineSettings
from .errors import ArchiveTimeoutError, ArchiveTooLargeError, EmptyArchiveError
from .logging_utils import _pipeline_event
from .models import Downloaded, JobResult
from .utils import log_line, sanitize_filename_component, truncate_to_max_bytes

# Fixed timestamp so equal inputs produce equal entry metadata.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_MAX_ENTRY_NAME_BYTES = 200


@dataclass(frozen=True)
class ArchiveEntry:
    reference_id: int
    name: str
    content: bytes = field(repr=False)


def entries_from_results(results: Iterable[JobResult]) -> list[ArchiveEntry]:
    """Return archive entries for the ``Downloaded`` results only."""

    return [
        ArchiveEntry(reference_id=result.id, name=result.output_name, content=result.output_bytes)
        for result in results
        if isinstance(result, Downloaded)
    ]


def sanitize_entry_name(name: str, reference_id: int) -> str:
    cleaned = sanitize_filename_component(name)
    extension = config.DOCUMENT_EXTENSION
    if not cleaned or cleaned.lower() in (extension, extension.lstrip(".")):
        cleaned = f"Reference_{reference_id}{extension}"
    if len(cleaned.encode("utf-8")) > _MAX_ENTRY_NAME_BYTES:
        stem, dot, suffix = cleaned.rpartition(".")
        if dot and len(suffix) <= 5:
            budget = _MAX_ENTRY_NAME_BYTES - len(suffix) - 1
            cleaned = f"{truncate_to_max_bytes(stem, budget).rstrip(' .')}.{suffix}"
        else:
            cleaned = truncate_to_max_bytes(cleaned, _MAX_ENTRY_NAME_BYTES)
    return cleaned


def assign_entry_names(entries: Sequence[ArchiveEntry]) -> list[tuple[str, ArchiveEntry]]:
    """Sanitise names and resolve collisions, in reference-id order.

    A colliding name gets the reference id prefixed; if that still collides a
    counter is added after the id.
    """

    taken: set[str] = set()
    named: list[tuple[str, ArchiveEntry]] = []
    for entry in sorted(entries, key=lambda item: (item.reference_id, item.name)):
        name = sanitize_entry_name(entry.name, entry.reference_id)
        if name.lower() in taken:
            base = name
            name = f"{entry.reference_id} - {base}"
            counter = 2
            while name.lower() in taken:
                name = f"{entry.reference_id}-{counter} - {base}"
                counter += 1
        taken.add(name.lower())
        named.append((name, entry))
    return named


def assemble(
    entries: Sequence[ArchiveEntry],
    settings: PipelineSettings,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> bytes:
    """Pack ``entries`` into a ZIP archive within the configured ceilings.

    Raises ``EmptyArchiveError`` for an empty entry set,
    ``ArchiveTooLargeError`` when the entry count or archive size goes over its
    ceiling, and ``ArchiveTimeoutError`` when assembly runs out of time.
    """

    usable = [entry for entry in entries if entry.content]
    if not usable:
        raise EmptyArchiveError("No valid files to include in ZIP")
    if len(usable) > settings.max_batch_size:
        raise ArchiveTooLargeError(
            f"Maximum {settings.max_batch_size} files allowed per ZIP (got {len(usable)})"
        )

    max_bytes = settings.max_archive_bytes
    max_mb = max_bytes // (1024 * 1024)
    started = clock()
    deadline = started + settings.archive_timeout_seconds
    named = assign_entry_names(usable)

    log_line(f"Creating ZIP with {len(named)} files...")
    buffer = io.BytesIO()
    raw_total = 0
    with ZipFile(
        buffer,
        "w",
        ZIP_DEFLATED,
        compresslevel=settings.archive_compression_level,
    ) as archive:
        for name, entry in named:
            if clock() > deadline:
                raise ArchiveTimeoutError(
                    f"ZIP creation timeout: archive took longer than {settings.archive_timeout_seconds}s"
                )
            raw_total += len(entry.content)
            info = ZipInfo(name, date_time=_ENTRY_DATE_TIME)
            info.compress_type = ZIP_DEFLATED
            archive.writestr(info, entry.content, compresslevel=settings.archive_compression_level)
            if buffer.tell() > max_bytes:
                raise ArchiveTooLargeError(
                    f"ZIP archive exceeds maximum size limit ({max_mb}MB)"
                )

    payload = buffer.getvalue()
    if len(payload) > max_bytes:
        raise ArchiveTooLargeError(f"ZIP archive exceeds maximum size limit ({max_mb}MB)")
    if clock() > deadline:
        raise ArchiveTimeoutError(
            f"ZIP creation timeout: archive took longer than {settings.archive_timeout_seconds}s"
        )

    _pipeline_event(
        "archive",
        kind="assembled",
        entries=len(named),
        raw_bytes=raw_total,
        archive_bytes=len(payload),
        elapsed_seconds=round(clock() - started, 3),
    )
    log_line(f"ZIP created successfully, size: {len(payload)} bytes")
    return payload


def assemble_results(
    results: Iterable[JobResult],
    settings: PipelineSettings,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> bytes:
    """Assemble an archive from a batch's successful results."""

    return assemble(entries_from_results(results), settings, clock=clock)


__all__ = [
    "ArchiveEntry",
    "entries_from_results",
    "sanitize_entry_name",
    "assign_entry_names",
    "assemble",
    "assemble_results",
]
