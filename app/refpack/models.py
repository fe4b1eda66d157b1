"""Reference, job result and batch report types."""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Iterable, Mapping, Union

from .errors import BatchValidationError


class JobStatus(str, Enum):
    DOWNLOADED = "downloaded"
    FAILED = "failed"


@dataclass(frozen=True)
class Reference:
    id: int
    title: str
    source_url: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, index: int | None = None) -> "Reference":
        """Build a reference from a transport payload.

        Accepts ``sourceUrl`` (transport) or ``source_url`` keys. The title is
        optional and is synthesised as ``Reference #<id>`` when missing.
        """

        where = f" at index {index}" if index is not None else ""
        raw_id = payload.get("id")
        if isinstance(raw_id, bool) or not isinstance(raw_id, int):
            raise BatchValidationError(f"Reference{where} has a non-integer id: {raw_id!r}")
        ref_id = raw_id
        if ref_id < 1:
            raise BatchValidationError(f"Reference{where} must have a positive id, got {raw_id!r}")

        source_url = payload.get("sourceUrl") or payload.get("source_url")
        if not isinstance(source_url, str) or not source_url.strip():
            raise BatchValidationError(f"Reference {ref_id} is missing sourceUrl")

        title = payload.get("title")
        title = str(title).strip() if title is not None else ""
        return cls(id=ref_id, title=title or f"Reference #{ref_id}", source_url=source_url.strip())

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "sourceUrl": self.source_url}


@dataclass(frozen=True)
class Downloaded:
    reference: Reference
    output_name: str
    output_bytes: bytes = field(repr=False)
    attempts: int = 1

    status: ClassVar[JobStatus] = JobStatus.DOWNLOADED

    @property
    def id(self) -> int:
        return self.reference.id

    def to_dict(self, *, include_bytes: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            **self.reference.to_dict(),
            "status": self.status.value,
            "outputName": self.output_name,
            "sizeBytes": len(self.output_bytes),
            "attempts": self.attempts,
        }
        if include_bytes:
            payload["pdfBase64"] = base64.b64encode(self.output_bytes).decode("ascii")
        return payload


@dataclass(frozen=True)
class Failed:
    reference: Reference
    error: str
    error_code: str
    attempts: int = 1

    status: ClassVar[JobStatus] = JobStatus.FAILED

    @property
    def id(self) -> int:
        return self.reference.id

    def to_dict(self, *, include_bytes: bool = False) -> dict[str, Any]:
        return {
            **self.reference.to_dict(),
            "status": self.status.value,
            "error": self.error,
            "errorCode": self.error_code,
            "attempts": self.attempts,
        }


JobResult = Union[Downloaded, Failed]


@dataclass(frozen=True)
class BatchReport:
    results: tuple[JobResult, ...]
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if isinstance(result, Downloaded))

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if isinstance(result, Failed))

    def downloaded(self) -> list[Downloaded]:
        return [result for result in self.results if isinstance(result, Downloaded)]

    def by_id(self) -> dict[int, JobResult]:
        return {result.id: result for result in self.results}

    def to_dict(self, *, include_bytes: bool = False) -> dict[str, Any]:
        ordered = sorted(self.results, key=lambda result: result.id)
        return {
            "results": [result.to_dict(include_bytes=include_bytes) for result in ordered],
            "processed": self.succeeded,
            "failed": self.failed,
            "total": len(self.results),
            "elapsedSeconds": round(self.elapsed_seconds, 3),
        }


def references_from_payload(items: Iterable[Mapping[str, Any]]) -> list[Reference]:
    """Parse transport payloads, rejecting non-mapping entries."""

    references: list[Reference] = []
    for index, item in enumerate(items):
        if not isinstance(item, Mapping):
            raise BatchValidationError(f"Reference at index {index} must be an object")
        references.append(Reference.from_dict(item, index=index))
    return references


__all__ = [
    "JobStatus",
    "Reference",
    "Downloaded",
    "Failed",
    "JobResult",
    "BatchReport",
    "references_from_payload",
]
