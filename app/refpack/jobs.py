"""Turn one reference into a terminal job result."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from . import config
from .classifier import ReferenceKind, classify
from .config import PipelineSettings
from .error_codes import ErrorCode
from .errors import InvalidURLError, PipelineError
from .fetcher import fetch_document
from .logging_utils import _pipeline_event
from .models import Downloaded, Failed, JobResult, Reference
from .renderer import RenderOutcome, SessionFactory, open_render_session, render_url_to_pdf
from .utils import log_line, sanitize_filename_component, sanitize_title, url_basename

FetchFn = Callable[..., bytes]
RenderFn = Callable[..., RenderOutcome]


def build_output_name(reference: Reference, kind: ReferenceKind) -> str:
    """Return ``"<id> - <name>.pdf"`` for a reference.

    Direct documents keep the file name from their URL when it has the document
    extension; everything else is named after the sanitised title.
    """

    extension = config.DOCUMENT_EXTENSION
    if kind is ReferenceKind.DIRECT_DOCUMENT:
        url_name = sanitize_filename_component(url_basename(reference.source_url))
        if url_name.lower().endswith(extension):
            return f"{reference.id} - {url_name}"
    return f"{reference.id} - {sanitize_title(reference.title, reference.id)}{extension}"


def failure_message(exc: PipelineError) -> str:
    """Return the user-facing message for a terminal failure."""

    message = exc.message or type(exc).__name__
    if exc.retryable and exc.attempts > 1:
        return f"{message} (gave up after {exc.attempts} attempts)"
    return message


@dataclass
class ReferenceProcessor:
    """Classify a reference and fetch or render it.

    Every failure, expected or not, ends up as a ``Failed`` result; nothing
    raised here escapes to the batch.
    """

    settings: PipelineSettings
    fetch: FetchFn = fetch_document
    render: RenderFn = render_url_to_pdf
    session_factory: SessionFactory = open_render_session
    http_session: Optional[Any] = None
    render_options: dict[str, Any] = field(default_factory=dict)
    # Monotonic time after which no fetch or render attempt may start.
    deadline: Optional[float] = None

    def __call__(self, reference: Reference) -> JobResult:
        return self.process(reference)

    def process(self, reference: Reference) -> JobResult:
        token = f"ref-{reference.id}"
        try:
            kind = classify(reference.source_url)
        except InvalidURLError as exc:
            return self._failed(reference, exc, token=token)

        try:
            if kind is ReferenceKind.DIRECT_DOCUMENT:
                log_line(f"[JOB] {token} fetching document {reference.source_url}")
                pdf_bytes = self.fetch(
                    reference.source_url,
                    self.settings,
                    session=self.http_session,
                    token=token,
                    deadline=self.deadline,
                )
                attempts = 1
            else:
                log_line(f"[JOB] {token} rendering page {reference.source_url}")
                outcome = self.render(
                    reference.source_url,
                    self.settings,
                    session_factory=self.session_factory,
                    token=token,
                    deadline=self.deadline,
                    **self.render_options,
                )
                pdf_bytes = outcome.pdf_bytes
                attempts = outcome.attempts
        except PipelineError as exc:
            return self._failed(reference, exc, token=token)
        except Exception as exc:  # noqa: BLE001
            _pipeline_event("error", phase="job", token=token, error=repr(exc))
            return Failed(
                reference=reference,
                error=f"Unexpected error: {exc}",
                error_code=ErrorCode.INTERNAL,
            )

        output_name = build_output_name(reference, kind)
        _pipeline_event(
            "job",
            token=token,
            status="downloaded",
            kind=kind.value,
            output_name=output_name,
            bytes=len(pdf_bytes),
            attempts=attempts,
        )
        return Downloaded(
            reference=reference,
            output_name=output_name,
            output_bytes=pdf_bytes,
            attempts=attempts,
        )

    def _failed(self, reference: Reference, exc: PipelineError, *, token: str) -> Failed:
        _pipeline_event(
            "job",
            token=token,
            status="failed",
            error_code=exc.error_code,
            retryable=exc.retryable,
            attempts=exc.attempts,
            error=exc.message,
        )
        return Failed(
            reference=reference,
            error=failure_message(exc),
            error_code=exc.error_code,
            attempts=exc.attempts,
        )


__all__ = ["ReferenceProcessor", "build_output_name", "failure_message"]
