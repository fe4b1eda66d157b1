"""Citation extraction from Wikipedia article markup.

This is the thin adapter that feeds the pipeline: it produces the ordered
``Reference`` list and knows nothing about fetching or rendering the sources.
"""
from __future__ import annotations

import re
from typing import Any, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from . import config
from .models import Reference
from .utils import log_line

WIKIPEDIA_URL_RE = re.compile(r"^https://([a-z]+)\.wikipedia\.org/wiki/")
MAX_TITLE_CHARS = 200


class ExtractionError(Exception):
    """The article could not be fetched or parsed."""


def validate_wikipedia_url(url: str) -> bool:
    """Return ``True`` for ``https://<lang>.wikipedia.org/wiki/...`` URLs."""

    if not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return bool(WIKIPEDIA_URL_RE.match(parsed.geturl()))


def fetch_article_html(url: str, *, session: Optional[Any] = None, timeout: int = 30) -> str:
    client = session or requests
    try:
        response = client.get(url, headers={"User-Agent": config.USER_AGENT}, timeout=timeout)
    except requests.RequestException as exc:
        raise ExtractionError(f"Failed to fetch article: {exc}") from None
    if response.status_code >= 400:
        raise ExtractionError(f"Failed to fetch article: {response.status_code} {response.reason or ''}".strip())
    return response.text


def extract_article_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    heading = soup.select_one("h1.firstHeading")
    if heading and heading.get_text(strip=True):
        return heading.get_text(" ", strip=True)
    if soup.title and soup.title.string:
        title = soup.title.string.replace(" - Wikipedia", "").strip()
        if title:
            return title
    return "Unknown Article"


def _is_internal_wiki_link(href: str) -> bool:
    return "/wiki/" in href and "wikipedia.org" in href


def _clean_title(text: str) -> str:
    title = re.sub(r"\s+", " ", text or "").strip()
    if len(title) > MAX_TITLE_CHARS:
        title = title[:MAX_TITLE_CHARS] + "..."
    return title


def extract_references(html: str) -> list[Reference]:
    """Extract ``{id, title, sourceUrl}`` for every citation with an external link.

    Ids are assigned in document order starting at 1. The first external link
    of each citation is its source; citations without one are skipped.
    """

    soup = BeautifulSoup(html, "html.parser")
    references: list[Reference] = []
    next_id = 1

    for node in soup.select("ol.references li, .reference"):
        link = node.select_one('a[href^="http"]')
        if link is None:
            continue
        href = (link.get("href") or "").strip()
        if not href or _is_internal_wiki_link(href):
            continue

        cite = node.find("cite")
        title = _clean_title(cite.get_text(" ", strip=True)) if cite else ""
        if not title:
            title = _clean_title(link.get_text(" ", strip=True))
        if not title:
            title = _clean_title(node.get_text(" ", strip=True))
        if not title:
            title = f"Reference #{next_id}"

        references.append(Reference(id=next_id, title=title, source_url=href))
        next_id += 1

    log_line(f"[EXTRACT] Found {len(references)} references with external links")
    return references


__all__ = [
    "ExtractionError",
    "validate_wikipedia_url",
    "fetch_article_html",
    "extract_article_title",
    "extract_references",
]
