from __future__ import annotations

import time
from typing import Any, Callable, Optional

import requests

from .config import PipelineSettings
from .errors import FetchTimeoutError, HTTPStatusError, MalformedDocumentError, NetworkError
from .logging_utils import _pipeline_event
from .utils import log_line, redact_url

PDF_MAGIC = b"%PDF"


def _validate_pdf_bytes(data: bytes) -> None:
    if not data.startswith(PDF_MAGIC):
        raise MalformedDocumentError("Failed to download PDF: response is not a PDF")


def _timed_out(timeout: float, *, token: Optional[str], safe_url: str) -> FetchTimeoutError:
    _pipeline_event("fetch", token=token, url=safe_url, status="timeout", timeout=timeout)
    return FetchTimeoutError(f"Failed to download PDF: request timeout ({timeout}s exceeded)")


def fetch_document(
    url: str,
    settings: PipelineSettings,
    *,
    session: Optional[Any] = None,
    token: Optional[str] = None,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> bytes:
    """Download a document file directly, bounded by the fetch timeout.

    The timeout covers the whole download, not just each socket read, so a
    server trickling bytes still times out. ``deadline`` (a ``clock`` reading)
    shortens it further when the caller's own budget ends sooner.

    No retries happen here; the caller's retry policy decides. ``session`` may
    be any object with a requests-compatible ``get``.
    """

    safe_url = redact_url(url)
    client = session or requests
    headers = {"User-Agent": settings.user_agent, "Accept": "application/pdf,*/*;q=0.8"}
    timeout = settings.fetch_timeout_seconds
    started = clock()
    ends_at = started + timeout
    read_timeout = timeout
    if deadline is not None and deadline < ends_at:
        ends_at = deadline
        read_timeout = deadline - started
        if read_timeout <= 0:
            raise _timed_out(timeout, token=token, safe_url=safe_url)
    status: Optional[int] = None

    try:
        with client.get(url, headers=headers, stream=True, timeout=read_timeout) as response:
            status = response.status_code
            if status >= 400:
                reason = getattr(response, "reason", "") or ""
                raise HTTPStatusError(
                    status, f"Failed to download PDF: {status} {reason}".strip()
                )
            chunks: list[bytes] = []
            head: Optional[bytes] = b""
            for chunk in response.iter_content(chunk_size=65536):
                if clock() >= ends_at:
                    raise _timed_out(timeout, token=token, safe_url=safe_url)
                if not chunk:
                    continue
                chunks.append(chunk)
                if head is not None:
                    head += chunk
                    if len(head) >= len(PDF_MAGIC):
                        _validate_pdf_bytes(head)
                        head = None
    except requests.Timeout:
        raise _timed_out(timeout, token=token, safe_url=safe_url) from None
    except requests.RequestException as exc:
        _pipeline_event("fetch", token=token, url=safe_url, status="network_error", error=str(exc))
        raise NetworkError(f"Failed to download PDF: network error ({exc})") from None

    body = b"".join(chunks)
    if not body:
        raise MalformedDocumentError("Failed to download PDF: empty response body")
    if head is not None:
        # Shorter than the magic marker.
        _validate_pdf_bytes(body)

    _pipeline_event("fetch", token=token, url=safe_url, status="ok", http_status=status, bytes=len(body))
    log_line(f"[FETCH] token={token or ''} url={safe_url} status={status} bytes={len(body)}")
    return body


__all__ = ["fetch_document", "PDF_MAGIC"]
