"""Utility functions for the article dedup agent."""

import asyncio
import hashlib
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import urlparse

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def extract_domain(url: str) -> str:
    """Lower-cased host of ``url`` without a leading ``www.``."""
    domain = urlparse(url).netloc.lower()
    if domain.startswith('www.'):
        domain = domain[4:]
    return domain


def is_valid_url(url: str) -> bool:
    """Only absolute http(s) URLs are accepted for submission."""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ('http', 'https') and bool(result.netloc)


def generate_content_hash(content: str) -> str:
    """Hex SHA-256 of the cleaned article text."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_timestamp(dt: datetime) -> int:
    """Convert datetime to Unix seconds, treating naive values as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp())


def from_timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, UTC)


def parse_date_string(date_str: str | None) -> datetime | None:
    """Best-effort parse of a publication date found in page metadata.

    Tries RFC 2822, then ISO 8601, then a few day-first and month-name
    layouts. Naive results are taken as UTC. Returns None when nothing matches.
    """
    if not date_str:
        return None

    date_str = date_str.strip()

    # RFC 2822, common in HTTP headers and feeds
    try:
        parsed = parsedate_to_datetime(date_str)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    except (ValueError, TypeError):
        pass

    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
    except ValueError:
        pass

    formats = [
        "%d/%m/%Y",
        "%d.%m.%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
        "%d %b %Y",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt).replace(tzinfo=UTC)
        except ValueError:
            continue

    logger.debug("Failed to parse date string", date_string=date_str)
    return None


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    operation: str = "call",
) -> T:
    """Await ``func()`` up to ``max_retries + 1`` times.

    Only ``exceptions`` are retried; anything else propagates at once. The
    wait before retry ``n`` (0-based) is ``backoff_factor ** n`` seconds, and
    the last error is re-raised when every attempt fails.
    """
    last_exception: BaseException | None = None

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except exceptions as e:
            last_exception = e
            if attempt < max_retries:
                delay = backoff_factor ** attempt
                logger.warning(
                    "Retrying after failure",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e)
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "Giving up after retries",
                    operation=operation,
                    max_retries=max_retries,
                    error=str(e)
                )

    raise last_exception


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await with a deadline, logging which operation expired."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Provider call timed out", operation=operation, timeout=timeout)
        raise


def ensure_directory(path: str | Path, mode: int = 0o700) -> Path:
    """Create the data directory (and parents) readable by the owner only."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True, mode=mode)
    try:
        directory.chmod(mode)
    except OSError as e:
        logger.warning("Cannot restrict data directory", path=str(directory), error=str(e))
    return directory


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Shorten text for table cells; the result is at most ``max_length`` long."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def describe(value: Any) -> str:
    """Short single-line description of an exception or value for diagnostics."""
    if isinstance(value, BaseException):
        message = str(value) or value.__class__.__name__
        return f"{value.__class__.__name__}: {message}"
    return str(value)
