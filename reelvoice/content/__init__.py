"""Product page retrieval."""

from .source import ContentSource, HttpContentSource, PageContent, parse_page

__all__ = ["ContentSource", "HttpContentSource", "PageContent", "parse_page"]
