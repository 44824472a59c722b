"""Exception hierarchy for the article dedup agent."""


class ArticleDedupError(Exception):
    """Base error for the article dedup agent."""
    pass


# ── Extraction ─────────────────────────────────────────────────────────────

class ExtractionError(ArticleDedupError):
    """Article text could not be obtained from a URL."""
    pass


class FetchError(ExtractionError):
    """Network or HTTP failure while downloading a page."""
    pass


class ProtectedPageError(ExtractionError):
    """Page is hidden behind bot protection (challenge page, DDoS banner)."""
    pass


class ParseError(ExtractionError):
    """Document could not be parsed as HTML."""
    pass


class InsufficientTextError(ExtractionError):
    """No extraction tier produced enough readable text."""
    pass


# ── Embeddings ─────────────────────────────────────────────────────────────

class EmbeddingError(ArticleDedupError):
    """Embedding could not be computed; the submission must be aborted."""
    pass


class TooShortError(EmbeddingError):
    """Text is too short to produce a meaningful embedding."""
    pass


class ProviderError(EmbeddingError):
    """Embedding provider failed, timed out or returned an empty vector."""
    pass


# ── Similarity ─────────────────────────────────────────────────────────────

class SimilarityError(ArticleDedupError, ValueError):
    """Vectors cannot be compared (e.g. length mismatch)."""
    pass


# ── Storage ────────────────────────────────────────────────────────────────

class StoreError(ArticleDedupError):
    """Persistent store operation failed."""
    pass


class ArticleNotFoundError(StoreError):
    """Referenced article does not exist."""
    pass


class InvariantViolationError(StoreError):
    """Operation would break a store invariant (e.g. backlink on a non-original)."""
    pass


# ── LLM annotations ────────────────────────────────────────────────────────

class LLMError(ArticleDedupError):
    """LLM-specific error."""
    pass


# ── Pipeline ───────────────────────────────────────────────────────────────

class SubmissionError(ArticleDedupError):
    """A submission could not be processed; the cause is chained."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
