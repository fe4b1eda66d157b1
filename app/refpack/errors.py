"""Exception types raised by the reference pipeline."""
from __future__ import annotations

from typing import Optional

from .error_codes import ErrorCode


class PipelineError(Exception):
    """Base error carrying a stable error code and a retryability flag."""

    error_code: str = ErrorCode.INTERNAL
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code
        if retryable is not None:
            self.retryable = retryable
        self.attempts: int = 1

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def __str__(self) -> str:  # pragma: no cover - inherited behaviour
        return self.message


class InvalidURLError(PipelineError):
    error_code = ErrorCode.INVALID_URL


class FetchTimeoutError(PipelineError):
    error_code = ErrorCode.TIMEOUT
    retryable = True


class NetworkError(PipelineError):
    error_code = ErrorCode.NETWORK
    retryable = True


class ProtocolError(PipelineError):
    """The browser session or page was torn down mid-operation."""

    error_code = ErrorCode.PROTOCOL
    retryable = True


class BlockedError(PipelineError):
    """The page loaded but is a verification wall, CAPTCHA or missing page."""

    error_code = ErrorCode.BLOCKED

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class SubresourceBlockedError(PipelineError):
    error_code = ErrorCode.SUBRESOURCE_BLOCKED


class HTTPStatusError(PipelineError):
    error_code = ErrorCode.HTTP_ERROR

    def __init__(self, status: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status


class MalformedDocumentError(PipelineError):
    error_code = ErrorCode.MALFORMED_PDF


class RenderError(PipelineError):
    error_code = ErrorCode.RENDER_FAILED


class BatchValidationError(PipelineError):
    """A batch was rejected before any job ran."""

    error_code = ErrorCode.INVALID_BATCH


class ArchiveError(PipelineError):
    """Base for failures fatal to archive assembly (never to the report)."""


class ArchiveTooLargeError(ArchiveError):
    error_code = ErrorCode.ARCHIVE_TOO_LARGE


class ArchiveTimeoutError(ArchiveError):
    error_code = ErrorCode.ARCHIVE_TIMEOUT


class EmptyArchiveError(ArchiveError):
    error_code = ErrorCode.ARCHIVE_EMPTY


__all__ = [
    "PipelineError",
    "InvalidURLError",
    "FetchTimeoutError",
    "NetworkError",
    "ProtocolError",
    "BlockedError",
    "SubresourceBlockedError",
    "HTTPStatusError",
    "MalformedDocumentError",
    "RenderError",
    "BatchValidationError",
    "ArchiveError",
    "ArchiveTooLargeError",
    "ArchiveTimeoutError",
    "EmptyArchiveError",
]
