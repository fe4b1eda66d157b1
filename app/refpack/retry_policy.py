from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode
from .logging_utils import _pipeline_event

RETRYABLE_ERROR_CODES = {
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK,
    ErrorCode.PROTOCOL,
}

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.INVALID_URL,
    ErrorCode.BLOCKED,
    # Best-effort capture has already been tried against the partial page.
    ErrorCode.SUBRESOURCE_BLOCKED,
    ErrorCode.HTTP_ERROR,
    ErrorCode.MALFORMED_PDF,
    ErrorCode.RENDER_FAILED,
    ErrorCode.BATCH_DEADLINE,
    ErrorCode.INTERNAL,
}


def compute_backoff_seconds(attempt_index: int, base_seconds: float = 1.0) -> float:
    """Return a linear backoff for the given attempt (1-based): 1x, 2x, ..."""

    return float(max(1, attempt_index) * max(0.0, base_seconds))


def decide_retry(
    attempt_index: int,
    max_attempts: int,
    error: BaseException | None = None,
    *,
    error_code: Optional[str] = None,
    token: Optional[str] = None,
) -> bool:
    """Decide whether a failed attempt should be retried."""

    code = (error_code or getattr(error, "error_code", None) or "").strip()

    if attempt_index >= max_attempts:
        _pipeline_event(
            "state",
            phase="retry_decision",
            kind="capped",
            token=token,
            attempt=attempt_index,
            max_attempts=max_attempts,
            error_code=code or None,
            will_retry=False,
        )
        return False

    if code in NON_RETRYABLE_ERROR_CODES:
        _pipeline_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            token=token,
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            will_retry=False,
        )
        return False

    if code in RETRYABLE_ERROR_CODES:
        _pipeline_event(
            "state",
            phase="retry_decision",
            kind="retryable",
            token=token,
            error_code=code,
            attempt=attempt_index,
            max_attempts=max_attempts,
            will_retry=True,
        )
        return True

    # Unknown code: trust the error's own flag when it carries one.
    will_retry = bool(getattr(error, "retryable", False))
    _pipeline_event(
        "state",
        phase="retry_decision",
        kind="unknown" if code else "missing_error_code",
        token=token,
        error_code=code or None,
        attempt=attempt_index,
        max_attempts=max_attempts,
        will_retry=will_retry,
        error_repr=repr(error) if error is not None else None,
    )
    return will_retry


__all__ = [
    "decide_retry",
    "compute_backoff_seconds",
    "RETRYABLE_ERROR_CODES",
    "NON_RETRYABLE_ERROR_CODES",
]
