"""
Tiered article text extraction from raw HTML.

Tiers are tried in order until one yields enough text:
1. Boilerplate removal via trafilatura (text density, title and date metadata)
2. Structured selection of semantic containers (article, main, .content, ...)
3. Fallback scan for the longest block of text, or the whole body

Bot-protection pages are rejected before any tier runs.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import trafilatura
from selectolax.parser import HTMLParser, Node

from ..errors import InsufficientTextError, ParseError, ProtectedPageError
from ..logging import get_logger
from ..utils import parse_date_string
from .text_utils import clean_content, clean_title, collapse_whitespace

logger = get_logger(__name__)

MIN_TEXT_LENGTH = 100
FALLBACK_BODY_THRESHOLD = 500

PROTECTION_MARKERS = (
    "Cloudflare",
    "DDoS protection",
    "Checking your browser",
    "cf-browser-verification",
)

CONTAINER_SELECTORS = ("article", "main", ".article", ".post", ".content")
TITLE_SELECTORS = ("h1", "h2", ".title", ".article-title")
NOISE_TAGS = ["script", "style", "noscript", "iframe", "nav", "footer", "header", "aside", "form"]
BLOCK_SELECTOR = "p, div, article, section"


@dataclass
class ExtractedContent:
    """Clean article text produced by one extraction tier."""
    title: str
    body: str
    method: str
    published_at: datetime | None = None


def decode_document(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def is_protected_page(html: str) -> bool:
    """Detect challenge pages and protection banners."""
    if any(marker in html for marker in PROTECTION_MARKERS):
        return True
    return len(html) < MIN_TEXT_LENGTH and "<html" in html.lower()


def _node_text(node: Node | None) -> str:
    if node is None:
        return ""
    return collapse_whitespace(node.text(separator=" "))


class ContentExtractor:
    """Turns fetched HTML into clean article text and title."""

    def __init__(self, max_content_size: int = 3500):
        if max_content_size < MIN_TEXT_LENGTH:
            raise ValueError(f"max_content_size must be at least {MIN_TEXT_LENGTH}")
        self.max_content_size = max_content_size

    def extract(self, raw: bytes | str, url: str | None = None) -> ExtractedContent:
        """Extract and normalize article text.

        Args:
            raw: Fetched document
            url: Source URL, used by trafilatura for metadata

        Returns:
            Extracted content with normalized body

        Raises:
            ProtectedPageError: Document is a bot-protection page
            ParseError: Document is not parseable HTML
            InsufficientTextError: No tier produced enough text
        """
        html = decode_document(raw)

        if is_protected_page(html):
            logger.info("Protected page detected", url=url)
            raise ProtectedPageError("Page is protected (Cloudflare or similar)")

        content = self._extract_readability(html, url)
        if content is None:
            parser = self._parse(html)
            content = self._extract_structured(parser)
            if content is None:
                content = self._extract_fallback(parser)

        content.body = clean_content(content.body, self.max_content_size)
        content.title = clean_title(content.title)

        if len(content.body) < MIN_TEXT_LENGTH:
            raise InsufficientTextError(
                f"Only {len(content.body)} characters of text after cleaning"
            )

        logger.debug(
            "Article extracted",
            url=url,
            method=content.method,
            length=len(content.body),
            has_title=bool(content.title),
        )
        return content

    def _parse(self, html: str) -> HTMLParser:
        try:
            parser = HTMLParser(html)
        except Exception as e:
            raise ParseError(f"HTML parsing failed: {e}") from e
        if parser.root is None:
            raise ParseError("Document has no root element")
        return parser

    def _extract_readability(self, html: str, url: str | None) -> ExtractedContent | None:
        """Tier 1: boilerplate removal by text density."""
        try:
            doc = trafilatura.bare_extraction(html, url=url, with_metadata=True)
        except Exception as e:
            logger.debug("Readability extraction failed", url=url, error=str(e))
            return None

        if not doc:
            return None

        data: dict[str, Any] = doc if isinstance(doc, dict) else (
            doc.as_dict() if hasattr(doc, "as_dict") else {}
        )
        text = collapse_whitespace(data.get("text") or "")
        if len(text) <= MIN_TEXT_LENGTH:
            return None

        return ExtractedContent(
            title=data.get("title") or "",
            body=text,
            method="readability",
            published_at=parse_date_string(data.get("date")),
        )

    def _extract_structured(self, parser: HTMLParser) -> ExtractedContent | None:
        """Tier 2: first semantic container and its first heading."""
        container = None
        for selector in CONTAINER_SELECTORS:
            container = parser.css_first(selector)
            if container is not None:
                break
        if container is None:
            return None

        title = ""
        for selector in TITLE_SELECTORS:
            title = _node_text(container.css_first(selector))
            if title:
                break

        text = _node_text(container)
        if len(text) < MIN_TEXT_LENGTH or len(text) > self.max_content_size:
            return None

        return ExtractedContent(title=title, body=text, method="structured")

    def _extract_fallback(self, parser: HTMLParser) -> ExtractedContent:
        """Tier 3: longest block of text, or the whole body."""
        parser.strip_tags(NOISE_TAGS)

        main_content = ""
        for node in parser.css(BLOCK_SELECTOR):
            text = _node_text(node)
            if len(text) > len(main_content):
                main_content = text

        if len(main_content) < FALLBACK_BODY_THRESHOLD:
            main_content = _node_text(parser.body)

        if len(main_content) < MIN_TEXT_LENGTH:
            raise InsufficientTextError(
                f"Insufficient text: {len(main_content)} characters"
            )

        title = _node_text(parser.css_first("title")) or _node_text(parser.css_first("h1"))
        return ExtractedContent(title=title, body=main_content, method="fallback")
