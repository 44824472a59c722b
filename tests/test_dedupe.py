"""Tests for the deduplication workflow."""

import asyncio
from datetime import timedelta

import pytest

from article_dedup.config import AnalysisConfig, UserConfig
from article_dedup.errors import ProviderError, TooShortError
from article_dedup.models.article import Article, Candidate, DedupStatus
from article_dedup.models.embedding_client import EmbeddingProvider
from article_dedup.models.llm_client import AnnotationProvider, MockLLMClient
from article_dedup.processing.annotate import ArticleAnnotator
from article_dedup.processing.dedupe import DeduplicationCoordinator, Submission
from article_dedup.processing.similarity import normalize

from conftest import ARTICLE_A, ARTICLE_B, ARTICLE_UNRELATED

URL_A = "https://news.example.com/council-budget"
URL_B = "https://other.example.org/budget-approved"


class FailingEmbedder(EmbeddingProvider):
    name = "failing"

    async def _embed(self, text):
        raise RuntimeError("service unavailable")


class SlowEmbedder(EmbeddingProvider):
    name = "slow"

    async def _embed(self, text):
        await asyncio.sleep(5)
        return [1.0, 0.0]


class ZeroEmbedder(EmbeddingProvider):
    name = "zero"

    def __init__(self, value=0.0):
        super().__init__()
        self.value = value

    async def _embed(self, text):
        return [self.value] * 8


class SlowSentimentLLM(AnnotationProvider):
    """Answers instantly except for the sentiment question."""

    async def complete(self, prompt):
        if "attitude" in prompt:
            await asyncio.sleep(5)
        return "Covers the council budget"


@pytest.fixture
def user_config():
    return UserConfig(user_id=1)


@pytest.fixture
def coordinator(store, embedder):
    return DeduplicationCoordinator(store, embedder)


@pytest.mark.asyncio
async def test_first_submission_is_original(coordinator, store, user_config):
    result = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)

    assert result.status == DedupStatus.ORIGINAL
    assert result.is_original
    assert result.stored
    assert result.verified == []
    assert result.diagnostics == []

    stored = await store.get_article(result.article.id)
    assert stored.original is True
    assert stored.citations == 0
    assert stored.similar_urls == []
    assert stored.published_at == stored.created_at


@pytest.mark.asyncio
async def test_near_duplicate_cites_anchor(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    result = await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)

    assert result.status == DedupStatus.DUPLICATE
    assert result.article.original is False
    assert not result.stored
    assert [c.article.id for c in result.verified] == [first.article.id]
    assert result.verified[0].composite_score >= user_config.final_similarity_threshold

    anchor = await store.get_article(first.article.id)
    assert anchor.citations == 1
    assert anchor.similar_urls == [URL_B]
    assert not await store.has_article_by_url(URL_B)


@pytest.mark.asyncio
async def test_resubmitting_duplicate_does_not_cite_twice(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)
    again = await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)

    assert again.status == DedupStatus.DUPLICATE
    anchor = await store.get_article(first.article.id)
    assert anchor.citations == 1
    assert anchor.similar_urls == [URL_B]


@pytest.mark.asyncio
async def test_saved_duplicate_resubmission_is_exact_duplicate(store, embedder, user_config):
    coordinator = DeduplicationCoordinator(store, embedder, save_similar_articles=True)

    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    duplicate = await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)
    assert duplicate.status == DedupStatus.DUPLICATE
    assert duplicate.stored

    stored_copy = await store.get_article(duplicate.article.id)
    assert stored_copy.original is False
    assert stored_copy.citations == 0

    calls = embedder.calls
    again = await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)

    assert again.status == DedupStatus.EXACT_DUPLICATE
    assert again.existing.id == duplicate.article.id
    assert embedder.calls == calls
    assert (await store.get_article(first.article.id)).citations == 1
    assert len(await store.get_all_articles()) == 2


@pytest.mark.asyncio
async def test_exact_duplicate_leaves_store_unchanged(coordinator, store, embedder, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    calls = embedder.calls

    result = await coordinator.process(Submission(url=URL_B, content=ARTICLE_A), user_config)

    assert result.status == DedupStatus.EXACT_DUPLICATE
    assert result.existing.id == first.article.id
    assert not result.stored
    assert embedder.calls == calls

    articles = await store.get_all_articles()
    assert len(articles) == 1
    assert articles[0].citations == 0


@pytest.mark.asyncio
async def test_unrelated_article_is_original(coordinator, store, user_config):
    await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    result = await coordinator.process(
        Submission(url="https://example.net/reefs", content=ARTICLE_UNRELATED), user_config
    )

    assert result.status == DedupStatus.ORIGINAL
    assert result.stored
    assert len(await store.get_all_articles()) == 2


@pytest.mark.asyncio
async def test_cosine_metric(store, embedder, user_config):
    coordinator = DeduplicationCoordinator(store, embedder, metric="cosine")
    await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    result = await coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config)
    assert result.status == DedupStatus.DUPLICATE


@pytest.mark.asyncio
async def test_concurrent_duplicates_count_every_citation(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    urls = [f"https://mirror{i}.example.com/story" for i in range(5)]

    results = await asyncio.gather(
        *(coordinator.process(Submission(url=url, content=ARTICLE_B), user_config) for url in urls)
    )

    assert all(r.status == DedupStatus.DUPLICATE for r in results)
    anchor = await store.get_article(first.article.id)
    assert anchor.citations == 5
    assert sorted(anchor.similar_urls) == sorted(urls)


@pytest.mark.asyncio
async def test_concurrent_same_url_cited_once(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)

    await asyncio.gather(
        *(coordinator.process(Submission(url=URL_B, content=ARTICLE_B), user_config) for _ in range(4))
    )

    anchor = await store.get_article(first.article.id)
    assert anchor.citations == 1
    assert anchor.similar_urls == [URL_B]


@pytest.mark.asyncio
async def test_lookback_window_limits_candidates(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    later = first.article.created_at + timedelta(days=user_config.days_lookback + 1)

    result = await coordinator.process(
        Submission(url="https://late.example.com/story", content=ARTICLE_B), user_config, now=later
    )

    assert result.status == DedupStatus.ORIGINAL
    assert (await store.get_article(first.article.id)).citations == 0


@pytest.mark.asyncio
async def test_too_short_content_aborts(coordinator, store, embedder, user_config):
    with pytest.raises(TooShortError):
        await coordinator.process(Submission(url=URL_A, content="Too short to embed."), user_config)

    assert embedder.calls == 0
    assert await store.get_all_articles() == []


@pytest.mark.asyncio
async def test_provider_failure_aborts(store, user_config):
    coordinator = DeduplicationCoordinator(store, FailingEmbedder())

    with pytest.raises(ProviderError):
        await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    assert await store.get_all_articles() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [0.0, float("nan")])
async def test_degenerate_embedding_aborts(store, user_config, value):
    coordinator = DeduplicationCoordinator(store, ZeroEmbedder(value))

    with pytest.raises(ProviderError, match="degenerate"):
        await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    with pytest.raises(ProviderError):
        await coordinator.process(Submission(url=URL_B, content=ARTICLE_UNRELATED), user_config)
    assert await store.get_all_articles() == []


@pytest.mark.asyncio
async def test_embedding_timeout_aborts(store, user_config):
    coordinator = DeduplicationCoordinator(store, SlowEmbedder(), timeout=0.05)

    with pytest.raises(ProviderError, match="timed out"):
        await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    assert await store.get_all_articles() == []


@pytest.mark.asyncio
async def test_annotations_are_applied(store, embedder, user_config):
    llm = MockLLMClient(responses={
        "headline": "Council approves road budget",
        "related to": "Covers the council vote directly",
        "attitude": "Positive: the article is supportive of the decision",
    })
    config = AnalysisConfig(object="city council", object_metadata="municipal government")
    annotator = ArticleAnnotator(llm, config, timeout=1.0)
    coordinator = DeduplicationCoordinator(store, embedder, annotator)

    result = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)

    article = await store.get_article(result.article.id)
    assert article.title == "Council approves road budget"
    assert article.affiliation == "Covers the council vote directly"
    assert article.sentiment == "Positive"
    assert article.justification.startswith("Positive:")
    assert any("city council (municipal government)" in prompt for prompt in llm.prompts)
    assert all(ARTICLE_A in prompt for prompt in llm.prompts)


@pytest.mark.asyncio
async def test_known_title_skips_title_query(store, embedder, user_config):
    llm = MockLLMClient()
    annotator = ArticleAnnotator(llm, AnalysisConfig(full_analysis=False), timeout=1.0)
    coordinator = DeduplicationCoordinator(store, embedder, annotator)

    result = await coordinator.process(
        Submission(url=URL_A, content=ARTICLE_A, title="Budget approved"), user_config
    )

    assert result.article.title == "Budget approved"
    assert len(llm.prompts) == 1
    assert "attitude" in llm.prompts[0]
    assert result.article.sentiment == "Informational"


@pytest.mark.asyncio
async def test_annotation_timeout_is_a_diagnostic(store, embedder, user_config):
    annotator = ArticleAnnotator(SlowSentimentLLM(), AnalysisConfig(), timeout=0.05)
    coordinator = DeduplicationCoordinator(store, embedder, annotator)

    result = await coordinator.process(
        Submission(url=URL_A, content=ARTICLE_A, title="Budget approved"), user_config
    )

    assert result.status == DedupStatus.ORIGINAL
    assert result.stored
    assert len(result.diagnostics) == 1
    assert result.diagnostics[0].startswith("sentiment:")
    assert result.article.affiliation == "Covers the council budget"
    assert result.article.sentiment == ""


@pytest.mark.asyncio
async def test_existing_url_not_written_again(coordinator, store, user_config):
    await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)
    result = await coordinator.process(Submission(url=URL_A, content=ARTICLE_UNRELATED), user_config)

    assert result.status == DedupStatus.ORIGINAL
    assert not result.stored
    assert any("already stored" in d for d in result.diagnostics)
    assert len(await store.get_all_articles()) == 1


@pytest.mark.asyncio
async def test_find_similar_is_read_only(coordinator, store, user_config):
    first = await coordinator.process(Submission(url=URL_A, content=ARTICLE_A), user_config)

    preview = await coordinator.find_similar(Submission(url=URL_B, content=ARTICLE_B), user_config)

    assert preview.status == DedupStatus.DUPLICATE
    assert [c.article.id for c in preview.verified] == [first.article.id]
    assert not preview.stored

    anchor = await store.get_article(first.article.id)
    assert anchor.citations == 0
    assert anchor.similar_urls == []
    assert not await store.has_article_by_url(URL_B)


@pytest.mark.asyncio
async def test_citation_failure_is_a_diagnostic(coordinator, store):
    copy = await store.save_article(
        Article(content=ARTICLE_A, source_url=URL_A, embedding=normalize([1.0, 0.0]), original=False)
    )

    diagnostics = await coordinator.record_citations(URL_B, [Candidate(article=copy, vector_score=0.9)])

    assert len(diagnostics) == 1
    assert "InvariantViolationError" in diagnostics[0]
    assert (await store.get_article(copy.id)).citations == 0


def test_verify_skips_incomparable_candidates(coordinator, user_config):
    embedding = normalize([1.0, 0.0, 0.0])
    good = Candidate(
        article=Article(content=ARTICLE_A, source_url=URL_A, embedding=embedding, id=1), vector_score=1.0
    )
    broken = Candidate(
        article=Article(content=ARTICLE_A, source_url=URL_B, embedding=normalize([1.0, 0.0]), id=2),
        vector_score=1.0,
    )

    verified = coordinator.verify_candidates(ARTICLE_A, embedding, [broken, good], user_config)
    assert [c.article.id for c in verified] == [1]
    assert good.composite_score == pytest.approx(1.0)


def test_classify(coordinator):
    candidate = Candidate(article=Article(content=ARTICLE_A, source_url=URL_A), vector_score=0.9)
    assert coordinator.classify([]) == DedupStatus.ORIGINAL
    assert coordinator.classify([candidate]) == DedupStatus.DUPLICATE
