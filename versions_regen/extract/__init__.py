"""
Snapshot content extraction.

This package turns raw snapshot content into markdown text according
to a page declaration.
"""

from .extractor import FILTERS, GENERIC_PAGE_DECLARATION, Extractor, extract_text
from .markdown import html_to_markdown

__all__ = [
    "Extractor",
    "FILTERS",
    "GENERIC_PAGE_DECLARATION",
    "extract_text",
    "html_to_markdown",
]
