"""HTTP page fetcher for submitted article URLs."""

import asyncio
import itertools

import aiohttp

from ..config import Settings, get_settings
from ..errors import FetchError, ProtectedPageError
from ..logging import get_logger
from ..processing.extractor import decode_document, is_protected_page
from ..utils import is_valid_url, retry_async

logger = get_logger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_5 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.5 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 13; SM-S901B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "ru-RU,ru;q=0.8,en-US;q=0.5,en;q=0.3",
    "Accept-Encoding": "gzip, deflate",
    "Referer": "https://www.google.com/",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}


class Fetcher:
    """Downloads article pages with browser-like headers.

    Use as an async context manager so the underlying session is closed:

        async with Fetcher() as fetcher:
            raw = await fetcher.fetch(url)
    """

    def __init__(self, settings: Settings | None = None, backoff_factor: float = 2.0):
        self.settings = settings or get_settings()
        self.backoff_factor = backoff_factor
        self.session: aiohttp.ClientSession | None = None
        self._agents = itertools.cycle(USER_AGENTS)

    async def __aenter__(self) -> "Fetcher":
        timeout = aiohttp.ClientTimeout(total=self.settings.fetch_timeout_seconds)
        connector = aiohttp.TCPConnector(limit=10, limit_per_host=5)
        self.session = aiohttp.ClientSession(timeout=timeout, connector=connector)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    def _headers(self) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = self.settings.user_agent or next(self._agents)
        return headers

    async def _get(self, session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(url, headers=self._headers()) as response:
            if 400 <= response.status < 500 and response.status != 429:
                # Client errors will not change on retry
                raise FetchError(f"HTTP {response.status} for {url}")
            response.raise_for_status()
            body = await response.read()

        logger.debug("URL fetched", url=url, status=response.status, content_length=len(body))
        return body

    async def fetch(self, url: str) -> bytes:
        """Fetch the raw page body.

        Raises:
            FetchError: Invalid URL, HTTP error or network failure after retries
            ProtectedPageError: The response is a bot-protection page
        """
        session = self.session
        if session is None:
            raise RuntimeError("Session not initialized. Use async context manager.")
        if not is_valid_url(url):
            raise FetchError(f"Invalid URL: {url}")

        try:
            body = await retry_async(
                lambda: self._get(session, url),
                max_retries=self.settings.fetch_retries,
                backoff_factor=self.backoff_factor,
                exceptions=(aiohttp.ClientError, asyncio.TimeoutError),
                operation="fetch",
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Failed to fetch URL after retries", url=url, error=str(e))
            raise FetchError(f"Failed to fetch {url}: {e}") from e

        if is_protected_page(decode_document(body)):
            logger.warning("Protected page detected", url=url)
            raise ProtectedPageError(f"Page at {url} is protected against automated access")

        return body
