"""Heuristic detection of verification walls, CAPTCHAs and missing pages.

Detection is best-effort: a legitimate page quoting one of these phrases will
be reported as blocked, and an unknown wall will slip through and be captured
as-is.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BlockerPattern:
    name: str
    regex: re.Pattern[str]
    reason: str


def _pattern(name: str, expr: str, reason: str) -> BlockerPattern:
    return BlockerPattern(name=name, regex=re.compile(expr, re.IGNORECASE), reason=reason)


URL_MARKERS: tuple[str, ...] = ("captcha", "verify", "blocked")
URL_REASON = "Publisher redirected to a verification / CAPTCHA page."

# Ordered: the first match wins.
CONTENT_PATTERNS: tuple[BlockerPattern, ...] = (
    _pattern(
        "confirm_human",
        r"please confirm you are human",
        "Publisher requires human verification (CAPTCHA).",
    ),
    _pattern(
        "slider_puzzle",
        r"slide right to complete the puzzle",
        "Publisher requires human verification (slider CAPTCHA).",
    ),
    _pattern(
        "security_check",
        r"complete the security check",
        "Publisher requires a security verification (CAPTCHA).",
    ),
    _pattern(
        "press_and_hold",
        r"press and hold",
        "Publisher requires human verification (press-and-hold challenge).",
    ),
    _pattern(
        "verify_human",
        r"verify you (are|re) (a )?(human|robot)",
        "Publisher requires human verification (CAPTCHA).",
    ),
    _pattern(
        "gated_continue",
        r"before we can let you continue",
        "Publisher is gating the content with a verification step.",
    ),
    _pattern(
        "unusual_traffic",
        r"unusual traffic",
        "Publisher detected unusual traffic and blocked automated access.",
    ),
    _pattern(
        "access_denied",
        r"access denied",
        "Publisher denied access (likely due to automated detection).",
    ),
    _pattern(
        "article_not_found",
        r"article not found",
        "Publisher reports this article is not available or was removed.",
    ),
    _pattern(
        "page_not_found",
        r"page not found",
        "Publisher reports this page was not found (404).",
    ),
    _pattern(
        "site_not_found",
        r"not found on this website",
        "Publisher reports this page was not found on the site.",
    ),
    _pattern(
        "cloudflare_challenge",
        r"cf-captcha|cf-chl",
        "Cloudflare CAPTCHA challenge detected.",
    ),
    _pattern(
        "bot_detection",
        r"bot detection",
        "Publisher triggered bot detection and blocked access.",
    ),
)

WIDGET_MARKERS: tuple[str, ...] = ("g-recaptcha", "hcaptcha", "cf-turnstile")
WIDGET_REASON = "Publisher is showing a CAPTCHA widget."


def detect_blocker(content: str, resolved_url: str) -> Optional[str]:
    """Return a human-readable blocking reason, or ``None`` if the page looks usable."""

    lower_url = (resolved_url or "").lower()
    if any(marker in lower_url for marker in URL_MARKERS):
        return URL_REASON

    lower_content = (content or "").lower()
    for pattern in CONTENT_PATTERNS:
        if pattern.regex.search(lower_content):
            return pattern.reason

    if any(marker in lower_content for marker in WIDGET_MARKERS):
        return WIDGET_REASON

    return None


__all__ = ["BlockerPattern", "CONTENT_PATTERNS", "detect_blocker"]
