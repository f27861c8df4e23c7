"""
Content normalisation and hashing for schedule pages.

The schedule generator embeds a render timestamp, the period validity dates
and a generator tag in every page. Those change on every fetch, so they are
stripped before hashing; two pages that differ only in these fields hash
identically.
"""

import hashlib
import re
from typing import List, Pattern

import structlog

logger = structlog.get_logger(__name__)

# Order matters: date+time patterns must run before the bare date pattern,
# otherwise the bare date consumes the date part and leaves the time behind.
VOLATILE_PATTERNS: List[Pattern] = [
    # "Stand: 03.11.2025 07:45"
    re.compile(r"Stand:\s*\d{2}\.\d{2}\.\d{4}\s+\d{2}:\d{2}(?::\d{2})?", re.IGNORECASE),
    # "generiert am 03.11.2025"
    re.compile(r"generiert.*?\d{2}\.\d{2}\.\d{4}", re.IGNORECASE),
    # "03.11.2025 07:45:12"
    re.compile(r"\d{2}\.\d{2}\.\d{4}\s+\d{2}:\d{2}:\d{2}", re.IGNORECASE),
    # "Periode3   1.9.2025 (...) Zwischenplan"
    re.compile(r"Periode\d+\s+\d{1,2}\.\d{1,2}\.\d{4}.*?(?:Zwischenplan|$)", re.IGNORECASE | re.MULTILINE),
    # bare "03.11.2025" and "3.11."
    re.compile(r"\d{1,2}\.\d{1,2}\.(?:\d{4})?"),
    re.compile(r"<meta\s+name=\"?GENERATOR\"?[^>]*>", re.IGNORECASE),
    re.compile(r"<title>.*?</title>", re.IGNORECASE | re.DOTALL),
]

_WHITESPACE = re.compile(r"\s+")


def _strip_once(markup: str) -> str:
    for pattern in VOLATILE_PATTERNS:
        markup = pattern.sub("", markup)
    return _WHITESPACE.sub(" ", markup).strip()


def normalize(raw_markup: str) -> str:
    """
    Strip volatile substrings and collapse whitespace.

    Removing one match can splice its neighbours into a new match
    ("1<title>x</title>.2." becomes "1.2."), so passes repeat until the text
    is stable. No pass lengthens the text and whitespace is canonical after
    the first one, which bounds the loop and makes the result idempotent.
    """
    current = raw_markup or ""
    while True:
        stripped = _strip_once(current)
        if stripped == current:
            return stripped
        current = stripped


def content_hash(normalized: str) -> str:
    """SHA-256 over the UTF-8 bytes of the normalised markup, hex encoded."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def fingerprint(raw_markup: str) -> str:
    """Normalise and hash a raw page in one step."""
    digest = content_hash(normalize(raw_markup))
    logger.debug("Generated content hash", hash=digest[:16] + "...", size=len(raw_markup or ""))
    return digest
