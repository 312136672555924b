from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin

from bs4 import BeautifulSoup

NAV_MARKERS = (
    "main menu",
    "navigation",
    "jump to content",
    "cookie",
    "subscribe",
)

BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "svg")
MAX_IMAGES = 10


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    images: list[str] = field(default_factory=list)
    raw_length: int = 0


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _looks_low_quality(text: str) -> bool:
    if len(text) < 200:
        return True
    marker_hits = sum(text.lower().count(marker) for marker in NAV_MARKERS)
    return marker_hits >= 4 and len(text) < 2500


def _extract_with_trafilatura(raw_html: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(raw_html, output_format="txt")
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(soup: BeautifulSoup) -> str:
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    return _normalize_text(root.get_text("\n"))


def _extract_images(soup: BeautifulSoup, base_url: str) -> list[str]:
    images: list[str] = []
    for img in soup.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if not src or src.startswith("data:"):
            continue
        absolute = urljoin(base_url, src)
        if absolute not in images:
            images.append(absolute)
        if len(images) >= MAX_IMAGES:
            break
    return images


def extract_main_content(url: str, raw_content: str, *, max_chars: int = 50000) -> ExtractedContent:
    """Extract readable article text, title and image links from an HTML payload."""
    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    primary_input = raw_content if seems_html else f"<html><body>{raw_content}</body></html>"

    soup = BeautifulSoup(primary_input, "html.parser")
    title = _normalize_text(soup.title.string) if soup.title and soup.title.string else ""
    images = _extract_images(soup, url)

    text = _extract_with_trafilatura(primary_input)
    method = "trafilatura"
    if not text or _looks_low_quality(text):
        text = _extract_with_soup(soup)
        method = "beautifulsoup"

    return ExtractedContent(
        url=url,
        title=title,
        text=_truncate(text, max_chars),
        method=method,
        images=images,
        raw_length=len(raw_content),
    )
