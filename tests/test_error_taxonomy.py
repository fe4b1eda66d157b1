import pytest

from app.refpack import errors
from app.refpack.error_codes import TRANSIENT_ERROR_CODES, ErrorCode
from app.refpack.retry_policy import NON_RETRYABLE_ERROR_CODES, RETRYABLE_ERROR_CODES


@pytest.mark.parametrize(
    "error",
    [
        errors.InvalidURLError("bad"),
        errors.FetchTimeoutError("slow"),
        errors.NetworkError("reset"),
        errors.ProtocolError("closed"),
        errors.BlockedError("captcha"),
        errors.SubresourceBlockedError("ads"),
        errors.HTTPStatusError(500),
        errors.MalformedDocumentError("html"),
        errors.RenderError("print"),
    ],
)
def test_retryable_flag_matches_transient_codes(error: errors.PipelineError) -> None:
    assert error.retryable is (error.error_code in TRANSIENT_ERROR_CODES)
    assert error.attempts == 1


def test_retry_policy_sets_are_disjoint() -> None:
    assert not RETRYABLE_ERROR_CODES & NON_RETRYABLE_ERROR_CODES
    assert RETRYABLE_ERROR_CODES == set(TRANSIENT_ERROR_CODES)


def test_http_status_error_default_message() -> None:
    error = errors.HTTPStatusError(502)
    assert error.status == 502
    assert error.message == "HTTP 502"
    assert error.error_code == ErrorCode.HTTP_ERROR


def test_archive_errors_share_a_base() -> None:
    for cls in (errors.ArchiveTooLargeError, errors.ArchiveTimeoutError, errors.EmptyArchiveError):
        assert issubclass(cls, errors.ArchiveError)
