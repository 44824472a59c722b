"""
Near-duplicate detection for submitted articles.

A submission flows through a fixed sequence of stages, each callable on
its own:
1. Exact duplicate check (byte-identical stored content short-circuits)
2. Embedding, run concurrently with the LLM annotations
3. Candidate retrieval within the lookback window (coarse vector score)
4. Composite verification (vector + lexical blend)
5. Citation bookkeeping on every verified anchor
6. Classification
7. Persistence

Embedding failures abort the submission. Annotation and bookkeeping
failures are reported as diagnostics on an otherwise successful result.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from ..config import UserConfig
from ..errors import ProviderError, SimilarityError, StoreError
from ..logging import PerformanceLogger, get_logger
from ..models.article import Annotations, Article, Candidate, DedupResult, DedupStatus
from ..models.embedding_client import EmbeddingProvider
from ..storage.store import ArticleStore
from ..utils import describe, utc_now, with_timeout
from .annotate import ArticleAnnotator
from .similarity import (
    DEFAULT_ENTITY_FILTER,
    CompositeSimilarity,
    EntityFilter,
    get_vector_metric,
    normalize,
)

logger = get_logger(__name__)


@dataclass
class Submission:
    """Cleaned article text ready for deduplication."""
    url: str
    content: str
    title: str = ""
    published_at: datetime | None = None


class DeduplicationCoordinator:
    """Classifies submissions as original or near-duplicate and records the outcome."""

    def __init__(
        self,
        store: ArticleStore,
        embedder: EmbeddingProvider,
        annotator: ArticleAnnotator | None = None,
        save_similar_articles: bool = False,
        metric: str = "angular",
        timeout: float = 120.0,
        entity_filter: EntityFilter = DEFAULT_ENTITY_FILTER,
    ):
        self.store = store
        self.embedder = embedder
        self.annotator = annotator
        self.save_similar_articles = save_similar_articles
        self.metric_name = metric
        self.vector_metric = get_vector_metric(metric)
        self.timeout = timeout
        self.entity_filter = entity_filter

    # ── Stages ─────────────────────────────────────────────────────────────

    async def check_exact_duplicate(self, content: str) -> Article | None:
        existing = await self.store.get_exact_duplicate(content)
        if existing is not None:
            logger.info("Exact duplicate found", article_id=existing.id, url=existing.source_url)
        return existing

    async def compute_embedding(self, content: str) -> np.ndarray:
        """Embed content and normalize it to unit length.

        Raises:
            TooShortError: Content under the embedding minimum
            ProviderError: Provider failure, timeout or a zero or non-finite vector
        """
        try:
            raw = await with_timeout(self.embedder.embed(content), self.timeout, "embedding")
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Embedding timed out after {self.timeout}s") from e
        embedding = normalize(raw)
        norm = float(np.linalg.norm(embedding))
        if not np.isfinite(norm) or abs(norm - 1.0) > 1e-6:
            raise ProviderError(f"{self.embedder.name} returned a degenerate embedding (norm {norm})")
        return embedding

    async def annotate(self, submission: Submission) -> tuple[Annotations, list[str]]:
        if self.annotator is None:
            return Annotations(), []
        return await self.annotator.annotate(submission.content, need_title=not submission.title)

    async def retrieve_candidates(
        self,
        embedding: np.ndarray,
        user_config: UserConfig,
        now: datetime | None = None,
    ) -> list[Candidate]:
        return await self.store.find_candidates(
            embedding,
            vector_threshold=user_config.vector_similarity_threshold,
            max_age_days=user_config.days_lookback,
            metric=self.vector_metric,
            now=now,
        )

    def verify_candidates(
        self,
        content: str,
        embedding: np.ndarray,
        candidates: list[Candidate],
        user_config: UserConfig,
    ) -> list[Candidate]:
        """Keep candidates whose composite score reaches the final threshold."""
        scorer = CompositeSimilarity(
            user_config.composite_vector_weight,
            vector_metric=self.vector_metric,
            entity_filter=self.entity_filter,
        )

        verified = []
        for candidate in candidates:
            try:
                score = scorer.compare(content, candidate.article.content, embedding, candidate.article.embedding)
            except SimilarityError as e:
                logger.debug("Skipping candidate", article_id=candidate.article.id, error=str(e))
                continue

            candidate.composite_score = score
            if score >= user_config.final_similarity_threshold:
                verified.append(candidate)

        verified.sort(key=lambda c: c.composite_score, reverse=True)
        return verified

    async def record_citations(self, url: str, verified: list[Candidate]) -> list[str]:
        """Cite every verified anchor; failures become diagnostics."""
        diagnostics = []
        for candidate in verified:
            anchor = candidate.article
            try:
                recorded = await self.store.record_citation(anchor.id, url)
            except StoreError as e:
                logger.warning("Citation failed", anchor_id=anchor.id, url=url, error=str(e))
                diagnostics.append(f"citation on article {anchor.id}: {describe(e)}")
                continue

            if recorded:
                anchor.citations += 1
                anchor.similar_urls.append(url)
            else:
                logger.debug("URL already cited", anchor_id=anchor.id, url=url)
        return diagnostics

    def classify(self, verified: list[Candidate]) -> DedupStatus:
        return DedupStatus.DUPLICATE if verified else DedupStatus.ORIGINAL

    async def persist(self, article: Article) -> tuple[bool, list[str]]:
        """Write the article unless its URL is already stored.

        Returns:
            Whether a row was written, and diagnostics
        """
        if await self.store.has_article_by_url(article.source_url):
            logger.info("URL already stored, skipping save", url=article.source_url)
            return False, [f"article with URL {article.source_url} already stored"]

        try:
            await self.store.save_article(article)
        except StoreError as e:
            # Another submission saved the same URL in the meantime
            logger.warning("Save failed", url=article.source_url, error=str(e))
            return False, [f"save: {describe(e)}"]

        logger.info("article_stored", url=article.source_url, article_id=article.id, original=article.original)
        return True, []

    # ── Workflows ──────────────────────────────────────────────────────────

    async def _embed_and_annotate(self, submission: Submission) -> tuple[np.ndarray, Annotations, list[str]]:
        embedding_result, annotation_result = await asyncio.gather(
            self.compute_embedding(submission.content),
            self.annotate(submission),
            return_exceptions=True,
        )
        # Annotations never fail on their own; anything else is a bug worth surfacing
        if isinstance(annotation_result, BaseException):
            raise annotation_result
        if isinstance(embedding_result, BaseException):
            logger.error("Embedding failed, aborting submission", url=submission.url, error=str(embedding_result))
            raise embedding_result

        annotations, diagnostics = annotation_result
        return embedding_result, annotations, diagnostics

    async def process(
        self,
        submission: Submission,
        user_config: UserConfig,
        now: datetime | None = None,
    ) -> DedupResult:
        """Run the full workflow for one submission.

        Raises:
            EmbeddingError: The embedding could not be computed; nothing was stored
        """
        now = now or utc_now()

        with PerformanceLogger("dedup_submission", logger, url=submission.url):
            existing = await self.check_exact_duplicate(submission.content)
            if existing is not None:
                return DedupResult(status=DedupStatus.EXACT_DUPLICATE, article=existing, existing=existing)

            embedding, annotations, diagnostics = await self._embed_and_annotate(submission)

            candidates = await self.retrieve_candidates(embedding, user_config, now)
            verified = self.verify_candidates(submission.content, embedding, candidates, user_config)
            diagnostics.extend(await self.record_citations(submission.url, verified))
            status = self.classify(verified)

            article = Article(
                content=submission.content,
                source_url=submission.url,
                title=submission.title,
                embedding=embedding,
                created_at=now,
                published_at=submission.published_at or now,
                original=status == DedupStatus.ORIGINAL,
            )
            article.apply_annotations(annotations)

            stored = False
            if status == DedupStatus.ORIGINAL or self.save_similar_articles:
                stored, persist_diagnostics = await self.persist(article)
                diagnostics.extend(persist_diagnostics)

            logger.info(
                "Submission classified",
                url=submission.url,
                status=status.value,
                candidates=len(candidates),
                verified=len(verified),
                stored=stored,
            )
            return DedupResult(
                status=status,
                article=article,
                verified=verified,
                stored=stored,
                diagnostics=diagnostics,
            )

    async def find_similar(
        self,
        submission: Submission,
        user_config: UserConfig,
        now: datetime | None = None,
    ) -> DedupResult:
        """Read-only preview: classify without citing or storing anything."""
        now = now or utc_now()

        existing = await self.check_exact_duplicate(submission.content)
        if existing is not None:
            return DedupResult(status=DedupStatus.EXACT_DUPLICATE, article=existing, existing=existing)

        embedding = await self.compute_embedding(submission.content)
        candidates = await self.retrieve_candidates(embedding, user_config, now)
        verified = self.verify_candidates(submission.content, embedding, candidates, user_config)
        status = self.classify(verified)

        article = Article(
            content=submission.content,
            source_url=submission.url,
            title=submission.title,
            embedding=embedding,
            created_at=now,
            published_at=submission.published_at or now,
            original=status == DedupStatus.ORIGINAL,
        )
        return DedupResult(status=status, article=article, verified=verified)
