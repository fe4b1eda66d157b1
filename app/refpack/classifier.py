from __future__ import annotations

from enum import Enum
from urllib.parse import urlparse

from . import config
from .errors import InvalidURLError


class ReferenceKind(str, Enum):
    DIRECT_DOCUMENT = "direct_document"
    RENDERABLE = "renderable"


_ALLOWED_SCHEMES = {"http", "https"}


def classify(url: str) -> ReferenceKind:
    """Decide whether ``url`` names a document file or must be rendered.

    Raises ``InvalidURLError`` for anything that is not an absolute http(s)
    URL with a host.
    """

    if not isinstance(url, str) or not url.strip():
        raise InvalidURLError("Reference has an empty source URL")

    candidate = url.strip()
    try:
        parsed = urlparse(candidate)
        # Accessing the port validates it.
        parsed.port
    except ValueError as exc:
        raise InvalidURLError(f"Malformed URL {candidate!r}: {exc}") from None

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InvalidURLError(f"Unsupported URL scheme in {candidate!r}")
    if not parsed.hostname or any(ch.isspace() for ch in candidate):
        raise InvalidURLError(f"Malformed URL {candidate!r}")

    if parsed.path.lower().endswith(config.DOCUMENT_EXTENSION):
        return ReferenceKind.DIRECT_DOCUMENT
    return ReferenceKind.RENDERABLE


__all__ = ["ReferenceKind", "classify"]
