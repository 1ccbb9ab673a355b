"""Product page content source.

Responsibilities:
- Fetch one product page over HTTP.
- Reduce its HTML to plain text blocks with BeautifulSoup.
- Sort list items into features and benefits and collect key numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Protocol

from bs4 import BeautifulSoup
import requests

from ..errors import ContentSourceError


_STRIPPED_TAGS = (
    "script",
    "style",
    "noscript",
    "nav",
    "footer",
    "header",
    "aside",
    "form",
    "button",
)
_MAX_FULL_TEXT_CHARS = 4000
_MAX_HIGHLIGHTS = 12
_MAX_LIST_ITEMS = 6

_FEATURE_KEYWORDS = (
    "dashboard",
    "analytics",
    "reporting",
    "integration",
    "api",
    "security",
    "automation",
    "workflow",
    "platform",
    "tool",
    "interface",
    "engine",
)
_BENEFIT_KEYWORDS = (
    "save",
    "boost",
    "improve",
    "increase",
    "reduce",
    "enhance",
    "faster",
    "better",
    "easier",
    "efficient",
    "productive",
)
_NOISE_PATTERN = re.compile(
    r"book a demo|contact us|learn more|get started|try now|click here|read more|sign up",
    re.IGNORECASE,
)
_KEY_NUMBER_PATTERNS = (
    re.compile(
        r"\d+(?:[.,]\d+)*\s*%\s*(?:increase|improvement|boost|faster|more|less|reduction)",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:save|saves|boost|increase|improve)\s+(?:up to\s+)?\d+(?:[.,]\d+)*\s*%",
        re.IGNORECASE,
    ),
    re.compile(
        r"\d+(?:,\d+)*\s*\+?\s*(?:clients|customers|users|companies|businesses|countries)",
        re.IGNORECASE,
    ),
    re.compile(r"\d+\s*(?:minutes|hours|days)\s*(?:daily|per day|weekly|monthly)", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class PageContent:
    """Plain-text content of one product page.

    Attributes:
        url: Page URL.
        title: Page title.
        description: Meta description or first paragraph.
        highlights: Short list-item texts (candidate features and benefits).
        full_text: Page text joined from headings and paragraphs.
        features: Highlights describing product capabilities.
        benefits: Highlights describing outcomes for the customer.
        key_numbers: Numeric claims found in the page text.
    """

    url: str
    title: str
    description: str
    highlights: tuple[str, ...] = field(default_factory=tuple)
    full_text: str = ""
    features: tuple[str, ...] = field(default_factory=tuple)
    benefits: tuple[str, ...] = field(default_factory=tuple)
    key_numbers: tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict[str, Any]:
        """Serialize the content as a stage output."""

        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "highlights": list(self.highlights),
            "features": list(self.features),
            "benefits": list(self.benefits),
            "key_numbers": list(self.key_numbers),
            "full_text": self.full_text,
            "word_count": len(self.full_text.split()),
        }


class ContentSource(Protocol):
    """Protocol for product page retrieval."""

    def fetch(self, url: str) -> PageContent:
        """Return the plain-text content of `url`."""


class HttpContentSource:
    """Fetch pages with `requests` and extract text with BeautifulSoup."""

    _HEADERS = {
        "User-Agent": "Mozilla/5.0 (compatible; reelvoice/0.3)",
        "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        """Initialize request timeout."""

        self.timeout_seconds = timeout_seconds

    def fetch(self, url: str) -> PageContent:
        """Download and parse one page."""

        try:
            response = requests.get(url, headers=self._HEADERS, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.Timeout as exc:
            raise ContentSourceError(
                f"Fetching `{url}` timed out.", failure_kind="timeout"
            ) from exc
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise ContentSourceError(
                f"Fetching `{url}` failed with HTTP {status_code}.",
                failure_kind="http_error",
                status_code=status_code,
            ) from exc
        except requests.RequestException as exc:
            raise ContentSourceError(
                f"Fetching `{url}` failed: {exc}", failure_kind="transport"
            ) from exc

        content = parse_page(url, response.text)
        if not content.full_text and not content.description:
            raise ContentSourceError(
                f"Page `{url}` contains no readable text.", failure_kind="empty_content"
            )
        return content


def parse_page(url: str, html: str) -> PageContent:
    """Extract title, description, highlights, and body text from HTML."""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()

    title = ""
    if soup.title is not None:
        title = soup.title.get_text(" ", strip=True)
    if not title:
        heading = soup.find("h1")
        title = heading.get_text(" ", strip=True) if heading is not None else ""

    description = ""
    meta = soup.find("meta", attrs={"name": "description"}) or soup.find(
        "meta", attrs={"property": "og:description"}
    )
    if meta is not None and meta.get("content"):
        description = str(meta["content"]).strip()

    blocks: list[str] = []
    for element in soup.find_all(["h1", "h2", "h3", "p"]):
        text = element.get_text(" ", strip=True)
        if len(text) >= 15 and text not in blocks and not _NOISE_PATTERN.search(text):
            blocks.append(text)
    if not description and blocks:
        description = blocks[0]

    highlights: list[str] = []
    for item in soup.find_all("li"):
        text = item.get_text(" ", strip=True)
        if (
            15 <= len(text) <= 300
            and text not in highlights
            and not _NOISE_PATTERN.search(text)
        ):
            highlights.append(text)
        if len(highlights) >= _MAX_HIGHLIGHTS:
            break

    full_text = " ".join(blocks)[:_MAX_FULL_TEXT_CHARS]
    features, benefits = categorize_highlights(highlights)
    return PageContent(
        url=url,
        title=title[:200] or url,
        description=description[:500],
        highlights=tuple(highlights),
        full_text=full_text,
        features=tuple(features),
        benefits=tuple(benefits),
        key_numbers=tuple(extract_key_numbers(" ".join([description, full_text, *highlights]))),
    )


def categorize_highlights(highlights: list[str]) -> tuple[list[str], list[str]]:
    """Split highlight texts into `(features, benefits)` by keyword score."""

    features: list[str] = []
    benefits: list[str] = []
    for text in highlights:
        lowered = text.lower()
        feature_score = sum(1 for keyword in _FEATURE_KEYWORDS if keyword in lowered)
        benefit_score = sum(1 for keyword in _BENEFIT_KEYWORDS if keyword in lowered)
        if benefit_score > feature_score:
            if len(benefits) < _MAX_LIST_ITEMS:
                benefits.append(text)
        elif len(features) < _MAX_LIST_ITEMS:
            features.append(text)
    return features, benefits


def extract_key_numbers(text: str) -> list[str]:
    """Return unique numeric claims such as `40% faster` or `500 customers`."""

    found: list[str] = []
    for pattern in _KEY_NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            normalized = re.sub(r"\s+", " ", match.group(0)).strip().lower()
            normalized = re.sub(r"(\d)\s+%", r"\1%", normalized)
            if normalized not in found:
                found.append(normalized)
    return found
