from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlsplit(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def normalize_url(url: str) -> str:
    """Comparison key for a URL: lower-case scheme/host, no fragment, no trailing slash."""
    raw = (url or "").strip()
    try:
        parsed = urlsplit(raw)
    except ValueError:
        return raw.rstrip("/")
    if not parsed.scheme or not parsed.netloc:
        return raw.split("#", 1)[0].rstrip("/")
    normalized = urlunsplit(
        (parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, parsed.query, "")
    )
    return normalized.rstrip("/")


def clean_content(text: str, max_length: int = 8000) -> str:
    """Clean scraped content: collapse whitespace, trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if max_length > 0 and len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def extract_domain(url: str) -> str:
    """Extract the host name from a URL, empty string if it has none."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
