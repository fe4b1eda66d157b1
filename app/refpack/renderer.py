# app/refpack/renderer.py
"""Render a live web page to PDF with one disposable Chromium session per attempt."""
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterator, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import TimeoutError as PWTimeout
from playwright.sync_api import sync_playwright

from .blockers import detect_blocker
from .config import PipelineSettings
from .errors import (
    BlockedError,
    FetchTimeoutError,
    NetworkError,
    PipelineError,
    ProtocolError,
    RenderError,
    SubresourceBlockedError,
)
from .logging_utils import _pipeline_event
from .retry_policy import compute_backoff_seconds, decide_retry
from .utils import log_line, redact_url

SessionFactory = Callable[[PipelineSettings], ContextManager[Any]]

RENDER_EXTRA_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

BLOCKED_BY_CLIENT_MESSAGE = (
    "Page resources were blocked (likely ads/trackers). The page may require "
    "JavaScript or have strict security policies that prevent automated access."
)

_CONTEXT_TEARDOWN_MARKERS = (
    "execution context",
    "target closed",
    "has been closed",
    "target page, context or browser",
)
_PROTOCOL_MARKERS = ("protocol error", "navigation", "err_http2")

READY_STATE_SCRIPT = "() => document.readyState === 'complete'"


@dataclass(frozen=True)
class RenderOutcome:
    pdf_bytes: bytes
    attempts: int
    navigation_tier: str


def _ms(seconds: float) -> float:
    return float(seconds) * 1000.0


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


@contextmanager
def open_render_session(settings: PipelineSettings) -> Iterator[Any]:
    """Launch an isolated Chromium and yield a fresh page.

    The browser is closed on every exit path, including errors raised by the
    caller while the page is in use.
    """

    with sync_playwright() as pw:
        browser = pw.chromium.launch(
            headless=True,
            args=settings.launch_args(),
            chromium_sandbox=not settings.disable_sandbox,
        )
        try:
            context = browser.new_context(
                user_agent=settings.user_agent,
                viewport={"width": settings.viewport_width, "height": settings.viewport_height},
                locale="en-US",
                extra_http_headers=RENDER_EXTRA_HEADERS,
                ignore_https_errors=True,
            )
            page = context.new_page()
            page.set_default_timeout(_ms(settings.capture_timeout_seconds))
            page.on("pageerror", lambda err: log_line(f"[RENDER] Page error (non-fatal): {err}"))
            yield page
        finally:
            try:
                browser.close()
            except PWError as exc:
                log_line(f"[RENDER] Browser close failed: {_first_line(exc)}")


class _SubresourceFailures:
    """``requestfailed`` listener counting failed sub-resources."""

    def __init__(self, token: Optional[str]) -> None:
        self.token = token
        self.blocked = 0
        self.failed = 0

    def __call__(self, request: Any) -> None:
        failure = getattr(request, "failure", None) or ""
        if "ERR_BLOCKED_BY_CLIENT" in failure.upper():
            self.blocked += 1
            if self.blocked <= 3:
                log_line(f"[RENDER] token={self.token or ''} blocked sub-resource (non-fatal): {request.url}")
        else:
            self.failed += 1
            if self.failed <= 5:
                log_line(f"[RENDER] token={self.token or ''} request failed: {request.url} {failure}")


def _classify_playwright_error(exc: PWError, *, stage: str) -> PipelineError:
    """Map a Playwright error onto the pipeline taxonomy."""

    message = _first_line(exc)
    lower = message.lower()

    if isinstance(exc, PWTimeout):
        return FetchTimeoutError(f"{stage} timed out: {message}")
    if "err_blocked_by_client" in lower:
        return SubresourceBlockedError(BLOCKED_BY_CLIENT_MESSAGE)
    if any(marker in lower for marker in _CONTEXT_TEARDOWN_MARKERS):
        return ProtocolError(f"Execution context was destroyed during {stage}: {message}")
    if "net::" in lower:
        return NetworkError(message)
    if any(marker in lower for marker in _PROTOCOL_MARKERS):
        return ProtocolError(message)
    return RenderError(f"{stage} failed: {message}")


def _navigate(
    page: Any,
    url: str,
    settings: PipelineSettings,
    *,
    token: Optional[str],
    sleep: Callable[[float], None],
) -> str:
    """Navigate with the three waiting tiers and return the tier that settled.

    Only timeouts fall through to the next tier; any other error propagates.
    """

    try:
        response = page.goto(url, wait_until="domcontentloaded", timeout=_ms(settings.dom_timeout_seconds))
    except PWTimeout:
        _pipeline_event("render", phase="navigate", token=token, tier="domcontentloaded", outcome="timeout")
    else:
        _pipeline_event(
            "render",
            phase="navigate",
            token=token,
            tier="domcontentloaded",
            outcome="ok",
            http_status=getattr(response, "status", None),
        )
        sleep(settings.dom_settle_seconds)
        try:
            page.wait_for_function(READY_STATE_SCRIPT, timeout=_ms(settings.ready_state_timeout_seconds))
        except PWError:
            # Not fully loaded yet; the parsed DOM is enough.
            pass
        return "domcontentloaded"

    try:
        response = page.goto(url, wait_until="load", timeout=_ms(settings.load_timeout_seconds))
    except PWTimeout:
        _pipeline_event("render", phase="navigate", token=token, tier="load", outcome="timeout")
        log_line(f"[RENDER] Navigation had issues for {redact_url(url)}, attempting PDF generation anyway")
        sleep(settings.load_settle_seconds)
        return "settle"

    _pipeline_event(
        "render",
        phase="navigate",
        token=token,
        tier="load",
        outcome="ok",
        http_status=getattr(response, "status", None),
    )
    sleep(settings.load_settle_seconds)
    return "load"


def _capture(page: Any, settings: PipelineSettings, failures: _SubresourceFailures) -> bytes:
    try:
        data = page.pdf(format=settings.page_format, print_background=True)
    except PWError as exc:
        error = _classify_playwright_error(exc, stage="PDF generation")
        if error.retryable:
            raise error from None
        if failures.blocked:
            raise RenderError(
                f"PDF generation failed. Some page resources were blocked ({failures.blocked} requests). "
                "This may indicate the page requires JavaScript or has strict blocking. "
                f"Original error: {_first_line(exc)}"
            ) from None
        raise error from None

    if not data:
        raise RenderError("PDF generation produced an empty document")
    if failures.blocked:
        log_line(
            f"[RENDER] PDF generated despite {failures.blocked} blocked requests (likely ads/trackers)"
        )
    return bytes(data)


def _best_effort_capture(
    page: Any,
    settings: PipelineSettings,
    failures: _SubresourceFailures,
    *,
    token: Optional[str],
) -> bytes:
    """Capture a page whose navigation failed on a blocked sub-resource.

    Any failure here is final: retrying would hit the same blocked resource.
    """

    _pipeline_event("render", phase="best_effort_capture", token=token, blocked_requests=failures.blocked)
    if page.is_closed():
        raise SubresourceBlockedError(BLOCKED_BY_CLIENT_MESSAGE)

    try:
        reason = detect_blocker(page.content(), page.url)
    except PWError:
        reason = None
    if reason:
        raise BlockedError(reason)

    try:
        return _capture(page, settings, failures)
    except PipelineError as exc:
        log_line(f"[RENDER] token={token or ''} best-effort capture failed: {exc}")
        raise SubresourceBlockedError(BLOCKED_BY_CLIENT_MESSAGE) from None


def _render_attempt(
    url: str,
    settings: PipelineSettings,
    session_factory: SessionFactory,
    *,
    token: Optional[str],
    sleep: Callable[[float], None],
) -> tuple[bytes, str]:
    with session_factory(settings) as page:
        failures = _SubresourceFailures(token)
        page.on("requestfailed", failures)

        try:
            tier = _navigate(page, url, settings, token=token, sleep=sleep)
        except PWError as exc:
            error = _classify_playwright_error(exc, stage="navigation")
            if isinstance(error, SubresourceBlockedError):
                return _best_effort_capture(page, settings, failures, token=token), "partial"
            raise error from None

        if page.is_closed():
            raise ProtocolError("Page was closed during navigation")

        try:
            resolved_url = page.url
            content = page.content()
        except PWError as exc:
            raise _classify_playwright_error(exc, stage="content read") from None

        reason = detect_blocker(content, resolved_url)
        if reason:
            _pipeline_event(
                "render",
                phase="blocker",
                token=token,
                resolved_url=redact_url(resolved_url),
                reason=reason,
            )
            raise BlockedError(reason)

        return _capture(page, settings, failures), tier


def render_url_to_pdf(
    url: str,
    settings: PipelineSettings,
    *,
    session_factory: SessionFactory = open_render_session,
    token: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
    deadline: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> RenderOutcome:
    """Render ``url`` to PDF bytes, retrying transient failures with linear backoff.

    Raises the last ``PipelineError`` when attempts run out or the failure is
    not retryable; its ``attempts`` attribute records how many were made.
    With a ``deadline`` (a ``clock`` reading), no retry is scheduled whose
    backoff would end at or after it.
    """

    max_attempts = settings.render_max_attempts
    safe_url = redact_url(url)
    last_error: Optional[PipelineError] = None

    for attempt in range(1, max_attempts + 1):
        _pipeline_event("render", phase="attempt", token=token, url=safe_url, attempt=attempt, max_attempts=max_attempts)
        try:
            try:
                pdf_bytes, tier = _render_attempt(url, settings, session_factory, token=token, sleep=sleep)
            except PWError as exc:
                # Raised outside navigation/capture, e.g. while launching.
                raise _classify_playwright_error(exc, stage="browser session") from None
        except PipelineError as exc:
            exc.attempts = attempt
            last_error = exc
            should_retry = decide_retry(
                attempt_index=attempt,
                max_attempts=max_attempts,
                error=exc,
                error_code=exc.error_code,
                token=token,
            )
            backoff = compute_backoff_seconds(attempt, settings.render_backoff_seconds)
            out_of_time = deadline is not None and clock() + backoff >= deadline
            if should_retry and out_of_time:
                should_retry = False
                log_line(f"[RENDER] Batch deadline leaves no time to retry {safe_url}")
            _pipeline_event(
                "state",
                phase="render_retry",
                token=token,
                attempt=attempt,
                max_attempts=max_attempts,
                error_code=exc.error_code,
                will_retry=should_retry,
                deadline_reached=out_of_time,
                backoff_seconds=backoff if should_retry else None,
                error_message=exc.message,
            )
            if not should_retry:
                raise
            log_line(f"[RENDER] Retry {attempt}/{max_attempts - 1} for {safe_url} due to: {exc.message}")
            sleep(backoff)
            continue

        _pipeline_event(
            "render",
            phase="captured",
            token=token,
            url=safe_url,
            attempt=attempt,
            tier=tier,
            bytes=len(pdf_bytes),
        )
        return RenderOutcome(pdf_bytes=pdf_bytes, attempts=attempt, navigation_tier=tier)

    # Only reachable with max_attempts < 1, which settings never produce.
    raise last_error or RenderError(f"Failed to render {safe_url}")


__all__ = [
    "RenderOutcome",
    "SessionFactory",
    "open_render_session",
    "render_url_to_pdf",
    "BLOCKED_BY_CLIENT_MESSAGE",
]
