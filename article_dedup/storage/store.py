"""
Article persistence.

``ArticleStore`` is the contract the dedup pipeline depends on;
``SQLiteArticleStore`` implements it on top of aiosqlite. Embeddings are
stored as raw float64 bytes so similarity scores are stable across
round trips.
"""

import asyncio
import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable

import aiosqlite
import numpy as np
import orjson

from ..config import UserConfig
from ..errors import (
    ArticleNotFoundError,
    InvariantViolationError,
    SimilarityError,
    StoreError,
)
from ..logging import get_logger
from ..models.article import Article, Candidate
from ..processing.similarity import VectorMetric, normalize, semantic_similarity
from ..utils import from_timestamp, generate_content_hash, to_timestamp, utc_now

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    title TEXT,
    embedding BLOB NOT NULL,
    source_url TEXT UNIQUE,
    created_at INTEGER NOT NULL,
    published_at INTEGER,
    citations INTEGER NOT NULL DEFAULT 0,
    original BOOLEAN NOT NULL DEFAULT 0,
    similar_urls TEXT NOT NULL DEFAULT '[]',
    affiliation TEXT,
    sentiment TEXT,
    justification TEXT
);
CREATE INDEX IF NOT EXISTS idx_articles_time ON articles(created_at);
CREATE INDEX IF NOT EXISTS idx_articles_original ON articles(original);
CREATE INDEX IF NOT EXISTS idx_articles_content_hash ON articles(content_hash);

CREATE TABLE IF NOT EXISTS user_configs (
    user_id INTEGER PRIMARY KEY,
    vector_similarity_threshold REAL NOT NULL DEFAULT 0.5,
    days_lookback INTEGER NOT NULL DEFAULT 7,
    composite_vector_weight REAL NOT NULL DEFAULT 0.7,
    final_similarity_threshold REAL NOT NULL DEFAULT 0.65
);
"""

ARTICLE_COLUMNS = (
    "id, content, title, embedding, source_url, created_at, published_at, "
    "citations, original, similar_urls, affiliation, sentiment, justification"
)


def encode_embedding(embedding: Iterable[float] | np.ndarray) -> bytes:
    return np.asarray(embedding, dtype=np.float64).tobytes()


def decode_embedding(blob: bytes | None) -> np.ndarray:
    if not blob:
        return np.zeros(0, dtype=np.float64)
    return np.frombuffer(blob, dtype=np.float64).copy()


def row_to_article(row: Any) -> Article:
    """Build an Article from a row selected with ``ARTICLE_COLUMNS``."""
    return Article(
        id=row["id"],
        content=row["content"],
        title=row["title"] or "",
        embedding=decode_embedding(row["embedding"]),
        source_url=row["source_url"],
        created_at=from_timestamp(row["created_at"]),
        published_at=from_timestamp(row["published_at"]),
        citations=row["citations"],
        original=bool(row["original"]),
        similar_urls=orjson.loads(row["similar_urls"] or "[]"),
        affiliation=row["affiliation"] or "",
        sentiment=row["sentiment"] or "",
        justification=row["justification"] or "",
    )


class ArticleStore(ABC):
    """Persistence contract for articles and per-user thresholds."""

    @abstractmethod
    async def save_article(self, article: Article) -> Article:
        """Insert a new article row and return it with its id set."""

    @abstractmethod
    async def get_article(self, article_id: int) -> Article:
        """Fetch one article; raises ArticleNotFoundError."""

    @abstractmethod
    async def get_exact_duplicate(self, content: str) -> Article | None:
        """Article with byte-identical content, if any."""

    @abstractmethod
    async def find_candidates(
        self,
        embedding: np.ndarray,
        vector_threshold: float,
        max_age_days: int,
        metric: VectorMetric = semantic_similarity,
        now: datetime | None = None,
    ) -> list[Candidate]:
        """Original articles inside the lookback window scoring >= threshold."""

    @abstractmethod
    async def increment_citation(self, article_id: int) -> None:
        """Add one citation to an original; non-originals raise InvariantViolationError."""

    @abstractmethod
    async def add_similar_url(self, anchor_id: int, url: str) -> bool:
        """Append a backlink to an original article; False if already present."""

    @abstractmethod
    async def record_citation(self, anchor_id: int, url: str) -> bool:
        """Atomically increment citations and append a backlink.

        Returns False (and changes nothing) if the URL was already recorded.
        """

    @abstractmethod
    async def get_all_articles(self) -> list[Article]:
        """All articles ordered by publication time."""

    @abstractmethod
    async def has_article_by_url(self, url: str) -> bool:
        """Whether a row with this source URL exists."""

    @abstractmethod
    async def delete_all_articles(self) -> int:
        """Bulk purge; returns the number of deleted rows."""

    @abstractmethod
    async def get_user_config(self, user_id: int) -> UserConfig:
        """Per-user thresholds, created with defaults on first access."""

    @abstractmethod
    async def save_user_config(self, config: UserConfig) -> None:
        """Insert or replace per-user thresholds."""


class SQLiteArticleStore(ArticleStore):
    """ArticleStore backed by a single aiosqlite connection."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> "SQLiteArticleStore":
        if self._db is not None:
            return self
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; multi-statement writes use explicit BEGIN IMMEDIATE
        self._db = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA busy_timeout=5000")
        await self._db.executescript(SCHEMA)
        logger.info("Article store opened", path=str(self.db_path))
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "SQLiteArticleStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Store is not open. Use 'async with' or call open().")
        return self._db

    async def _fetchone(self, sql: str, params: tuple = ()) -> Any:
        async with self.db.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[Any]:
        async with self.db.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    # ── Articles ───────────────────────────────────────────────────────────

    async def save_article(self, article: Article) -> Article:
        similar_urls = list(dict.fromkeys(article.similar_urls))
        published_at = article.published_at or article.created_at

        async with self._write_lock:
            try:
                cursor = await self.db.execute(
                    """INSERT INTO articles(
                        content, content_hash, title, embedding, source_url,
                        created_at, published_at, citations, original, similar_urls,
                        affiliation, sentiment, justification
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        article.content,
                        generate_content_hash(article.content),
                        article.title,
                        encode_embedding(article.embedding),
                        article.source_url,
                        to_timestamp(article.created_at),
                        to_timestamp(published_at),
                        article.citations,
                        article.original,
                        orjson.dumps(similar_urls).decode(),
                        article.affiliation,
                        article.sentiment,
                        article.justification,
                    ),
                )
            except aiosqlite.IntegrityError as e:
                raise StoreError(f"Cannot save article {article.source_url}: {e}") from e

        article.id = cursor.lastrowid
        article.similar_urls = similar_urls
        article.published_at = published_at
        logger.debug("Article saved", article_id=article.id, url=article.source_url, original=article.original)
        return article

    async def get_article(self, article_id: int) -> Article:
        row = await self._fetchone(
            f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE id = ?", (article_id,)
        )
        if row is None:
            raise ArticleNotFoundError(f"Article {article_id} not found")
        return row_to_article(row)

    async def get_exact_duplicate(self, content: str) -> Article | None:
        row = await self._fetchone(
            f"""SELECT {ARTICLE_COLUMNS} FROM articles
                WHERE content_hash = ? AND content = ?
                ORDER BY id LIMIT 1""",
            (generate_content_hash(content), content),
        )
        return row_to_article(row) if row is not None else None

    async def find_candidates(
        self,
        embedding: np.ndarray,
        vector_threshold: float,
        max_age_days: int,
        metric: VectorMetric = semantic_similarity,
        now: datetime | None = None,
    ) -> list[Candidate]:
        target = normalize(embedding)
        cutoff = (now or utc_now()) - timedelta(days=max_age_days)

        rows = await self._fetchall(
            f"""SELECT {ARTICLE_COLUMNS} FROM articles
                WHERE created_at >= ? AND original = 1
                ORDER BY created_at""",
            (to_timestamp(cutoff),),
        )

        candidates = []
        for row in rows:
            article = row_to_article(row)
            try:
                score = metric(target, article.embedding)
            except SimilarityError as e:
                logger.debug("Skipping incomparable candidate", article_id=article.id, error=str(e))
                continue

            if math.isnan(score) or score < vector_threshold:
                continue

            candidates.append(Candidate(article=article, vector_score=score))

        logger.debug(
            "Candidates retrieved",
            scanned=len(rows),
            matched=len(candidates),
            threshold=vector_threshold,
            max_age_days=max_age_days,
        )
        return candidates

    async def increment_citation(self, article_id: int) -> None:
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                await self._load_anchor(article_id)
                await self.db.execute(
                    "UPDATE articles SET citations = citations + 1 WHERE id = ?", (article_id,)
                )
                await self.db.execute("COMMIT")
            except BaseException:
                await self.db.execute("ROLLBACK")
                raise

    async def add_similar_url(self, anchor_id: int, url: str) -> bool:
        return await self._update_anchor(anchor_id, url, increment=False)

    async def record_citation(self, anchor_id: int, url: str) -> bool:
        return await self._update_anchor(anchor_id, url, increment=True)

    async def _update_anchor(self, anchor_id: int, url: str, increment: bool) -> bool:
        """Read backlinks, check membership, append (and count) in one transaction."""
        async with self._write_lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                row = await self._load_anchor(anchor_id)
                urls = orjson.loads(row["similar_urls"] or "[]")
                if url in urls:
                    await self.db.execute("COMMIT")
                    return False

                urls.append(url)
                await self.db.execute(
                    f"""UPDATE articles
                        SET similar_urls = ?{", citations = citations + 1" if increment else ""}
                        WHERE id = ?""",
                    (orjson.dumps(urls).decode(), anchor_id),
                )
                await self.db.execute("COMMIT")
                return True
            except BaseException:
                await self.db.execute("ROLLBACK")
                raise

    async def _load_anchor(self, anchor_id: int) -> aiosqlite.Row:
        """Only originals accept citations and backlinks."""
        row = await self._fetchone(
            "SELECT original, similar_urls FROM articles WHERE id = ?", (anchor_id,)
        )
        if row is None:
            raise ArticleNotFoundError(f"Article {anchor_id} not found")
        if not row["original"]:
            raise InvariantViolationError(f"Article {anchor_id} is not an original")
        return row

    async def get_all_articles(self) -> list[Article]:
        rows = await self._fetchall(
            f"SELECT {ARTICLE_COLUMNS} FROM articles ORDER BY published_at ASC, id ASC"
        )
        return [row_to_article(row) for row in rows]

    async def has_article_by_url(self, url: str) -> bool:
        row = await self._fetchone("SELECT 1 FROM articles WHERE source_url = ? LIMIT 1", (url,))
        return row is not None

    async def delete_all_articles(self) -> int:
        async with self._write_lock:
            cursor = await self.db.execute("DELETE FROM articles")
        logger.warning("All articles deleted", count=cursor.rowcount)
        return cursor.rowcount

    # ── User configs ───────────────────────────────────────────────────────

    async def get_user_config(self, user_id: int) -> UserConfig:
        row = await self._fetchone(
            """SELECT user_id, vector_similarity_threshold, days_lookback,
                      composite_vector_weight, final_similarity_threshold
               FROM user_configs WHERE user_id = ?""",
            (user_id,),
        )
        if row is None:
            config = UserConfig(user_id=user_id)
            await self.save_user_config(config)
            return config
        return UserConfig(**dict(row))

    async def save_user_config(self, config: UserConfig) -> None:
        async with self._write_lock:
            await self.db.execute(
                """REPLACE INTO user_configs (
                    user_id, vector_similarity_threshold, days_lookback,
                    composite_vector_weight, final_similarity_threshold
                ) VALUES (?, ?, ?, ?, ?)""",
                (
                    config.user_id,
                    config.vector_similarity_threshold,
                    config.days_lookback,
                    config.composite_vector_weight,
                    config.final_similarity_threshold,
                ),
            )
