"""
Snapshot content extraction.

Turns one snapshot's raw content into markdown text according to a page
declaration:
- Declarations with ``select`` keep the selected elements, minus ``remove``
  noise selectors, after applying the named filters
- Declarations without ``select`` fall back to a main-content extractor chain:
  trafilatura, readability, then plain bs4 text
- Plain text and markdown snapshots pass through unchanged

Extraction is a pure function of (content, mime type, declaration); the
deduplicator relies on identical inputs giving identical text.
"""

from __future__ import annotations

from typing import Callable
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup
import trafilatura
from readability import Document

from ..core.types import PageDeclaration, Snapshot
from ..errors import ExtractionFailure
from .markdown import html_to_markdown

Filter = Callable[[BeautifulSoup, PageDeclaration], None]

GENERIC_PAGE_DECLARATION = PageDeclaration(
    location="http://service.example",
    select="html",
    filters=["strip_link_query_params"],
)

_HTML_MIME_TYPES = {"text/html", "application/xhtml+xml"}
_PASSTHROUGH_MIME_TYPES = {"text/plain", "text/markdown"}


def _strip_link_query_params(soup: BeautifulSoup, page: PageDeclaration) -> None:
    for link in soup.find_all("a", href=True):
        parts = urlsplit(urljoin(page.location, link["href"]))
        link["href"] = urlunsplit((parts.scheme, parts.netloc, parts.path, "", parts.fragment))


def _remove_images(soup: BeautifulSoup, page: PageDeclaration) -> None:
    for image in soup.find_all(["img", "picture", "svg"]):
        image.decompose()


FILTERS: dict[str, Filter] = {
    "strip_link_query_params": _strip_link_query_params,
    "remove_images": _remove_images,
}


class Extractor:
    """Extraction boundary used by the pipeline.

    Attributes:
        primary: Main-content extractor tried first when a page has no ``select``
        fallback: Extractors tried in order after ``primary``
    """

    def __init__(self, primary: str = "trafilatura", fallback: list[str] | None = None):
        self.primary = primary
        self.fallback = fallback if fallback is not None else ["readability", "bs4"]

    def extract(self, content: str | bytes, mime_type: str, page: PageDeclaration) -> str:
        """Extract markdown text from raw content.

        Raises:
            ExtractionFailure: If the content is unsupported, a selector matches
                               nothing, or the extracted text is empty
        """
        if mime_type in _PASSTHROUGH_MIME_TYPES:
            text = _as_text(content).strip()
            if not text:
                raise ExtractionFailure("The snapshot content is empty")
            return text

        if mime_type not in _HTML_MIME_TYPES:
            raise ExtractionFailure(f"Unsupported content type: {mime_type}")

        soup = BeautifulSoup(content, "html.parser")
        for name in page.filters:
            apply = FILTERS.get(name)
            if apply is None:
                raise ExtractionFailure(f"Unknown filter {name!r} in declaration of {page.location}")
            apply(soup, page)

        for selector in _as_list(page.remove):
            for element in soup.select(selector):
                element.decompose()

        if page.select is None:
            text = extract_text(str(soup), self.primary, self.fallback)
            if not text:
                raise ExtractionFailure(f"No main content found in {page.location}")
            return text

        selected = []
        for selector in _as_list(page.select):
            selected.extend(soup.select(selector))
        if not selected:
            raise ExtractionFailure(
                f"The provided selector {page.select!r} has no match in the web page at {page.location}"
            )

        text = html_to_markdown(selected)
        if not text:
            raise ExtractionFailure(f"The selected content of {page.location} is empty")
        return text

    def fingerprint(self, snapshot: Snapshot) -> str:
        """Whole-page text used to recognise previously skipped content; empty on failure."""
        try:
            return self.extract(snapshot.content, snapshot.mime_type, GENERIC_PAGE_DECLARATION)
        except ExtractionFailure:
            return ""


def extract_text(html: str, primary: str, fallback: list[str]) -> str | None:
    """Extract plain text from HTML using a chain of extractors.

    Tries each extraction method in order until one produces non-empty
    output.

    Args:
        html: The HTML content to extract text from
        primary: Name of the primary extraction method to try first
        fallback: List of fallback method names to try if primary fails

    Returns:
        Extracted text with leading/trailing whitespace stripped,
        or None if all methods fail
    """
    order = [primary] + [name for name in fallback if name != primary]
    for method in order:
        extractor = _get_extractor(method)
        if not extractor:
            continue
        text = extractor(html)
        if text:
            return text.strip()
    return None


def _get_extractor(name: str) -> Callable[[str], str | None] | None:
    if name == "trafilatura":
        return _extract_trafilatura
    if name == "readability":
        return _extract_readability
    if name == "bs4":
        return _extract_bs4
    return None


def _extract_trafilatura(html: str) -> str | None:
    return trafilatura.extract(html)


def _extract_readability(html: str) -> str | None:
    doc = Document(html)
    content_html = doc.summary()
    return _extract_bs4(content_html)


def _extract_bs4(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    # Remove non-content tags
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator="\n")
    cleaned = "\n".join([line.strip() for line in text.splitlines() if line.strip()])
    return cleaned if cleaned else None


def _as_list(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _as_text(content: str | bytes) -> str:
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return content
