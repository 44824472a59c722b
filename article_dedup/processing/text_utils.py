"""Text processing utilities for the article dedup agent."""

import re
import unicodedata

from ..logging import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r'\s+')
_SPACE_BEFORE_CLOSING = re.compile(r'\s+([.,!?;:)\]}]+)')
_SPACE_AFTER_OPENING = re.compile(r'([(\[{])\s+')
_SEPARATOR_RUN = re.compile(r'[=+*_\-~]{3,}')
_ISOLATED_SYMBOL = re.compile(r'(?:(?<=\s)|^)[^\w\s"\'](?=\s|$)')

# Layout whitespace becomes a space before control characters are dropped
_LAYOUT_CHARS = frozenset('\t\n\r\u2028\u2029')

_QUOTE_TABLE = str.maketrans({
    '«': '"',
    '»': '"',
    '“': '"',
    '”': '"',
    '„': '"',
    '‟': '"',
    '‘': "'",
    '’': "'",
    '‚': "'",
    '‛': "'",
    '‹': "'",
    '›': "'",
})


def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace variant to a single space and trim."""
    return _WHITESPACE.sub(' ', text).strip()


def _strip_invisible(text: str) -> str:
    """Drop control, format and combining-mark characters; blank out symbols."""
    chars = []
    for char in text:
        if char in _LAYOUT_CHARS:
            chars.append(' ')
            continue
        category = unicodedata.category(char)
        if category in ('Cc', 'Cf', 'Co', 'Cs') or category.startswith('M'):
            continue
        if category in ('So', 'Sk'):
            chars.append(' ')
            continue
        chars.append(char)
    return ''.join(chars)


def truncate_codepoints(text: str, max_length: int) -> str:
    """Trim to at most ``max_length`` code points; never splits a character."""
    if max_length < 0:
        raise ValueError("max_length must not be negative")
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip()


def clean_content(content: str, max_length: int | None = None) -> str:
    """Normalize extracted article text.

    Args:
        content: Raw extracted text
        max_length: Optional limit in code points

    Returns:
        Single-line cleaned text
    """
    if not content:
        return ""

    # Compose first so precomposed letters survive combining-mark removal
    text = unicodedata.normalize('NFC', content)
    text = _strip_invisible(text)
    text = collapse_whitespace(text)

    text = _SPACE_BEFORE_CLOSING.sub(r'\1', text)
    text = _SPACE_AFTER_OPENING.sub(r'\1', text)

    text = _SEPARATOR_RUN.sub(' ', text)
    text = text.translate(_QUOTE_TABLE)
    text = _ISOLATED_SYMBOL.sub(' ', text)
    text = collapse_whitespace(text)

    if max_length is not None:
        text = truncate_codepoints(text, max_length)

    return text


def clean_title(title: str | None) -> str:
    """Normalize a title: whitespace and quotes only."""
    if not title:
        return ""
    title = unicodedata.normalize('NFC', title).translate(_QUOTE_TABLE)
    return collapse_whitespace(title)
