from __future__ import annotations

"""Centralised error code taxonomy for reference processing failures.

These codes travel with every failed job result, appear in structured logs and
in the CSV export, and drive the retry policy. Keep them stable.
"""


class ErrorCode:
    INVALID_URL = "invalid_url"
    TIMEOUT = "timeout"
    NETWORK = "network_error"
    PROTOCOL = "protocol_error"
    BLOCKED = "blocked"
    SUBRESOURCE_BLOCKED = "subresource_blocked"
    HTTP_ERROR = "http_error"
    RENDER_FAILED = "render_failed"
    MALFORMED_PDF = "malformed_pdf"
    BATCH_DEADLINE = "batch_deadline"
    INVALID_BATCH = "invalid_batch"
    ARCHIVE_TOO_LARGE = "archive_too_large"
    ARCHIVE_TIMEOUT = "archive_timeout"
    ARCHIVE_EMPTY = "archive_empty"
    INTERNAL = "internal_error"


# Failures worth a second look after the first batch pass.
TRANSIENT_ERROR_CODES = frozenset(
    {
        ErrorCode.TIMEOUT,
        ErrorCode.NETWORK,
        ErrorCode.PROTOCOL,
    }
)


__all__ = ["ErrorCode", "TRANSIENT_ERROR_CODES"]
