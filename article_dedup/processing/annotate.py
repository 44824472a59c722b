"""LLM annotations (title, affiliation, sentiment) for submitted articles."""

import asyncio

from ..config import AnalysisConfig
from ..logging import get_logger
from ..models.article import Annotations
from ..models.llm_client import AnnotationProvider
from ..utils import describe, with_timeout

logger = get_logger(__name__)

SENTIMENT_POSITIVE = "Positive"
SENTIMENT_NEGATIVE = "Negative"
SENTIMENT_INFORMATIONAL = "Informational"

_POSITIVE_STEMS = (
    "positive", "favourab", "favorab", "support", "approv", "friendly", "enthusias",
    "позитив", "полож", "доброжелательн", "благоприятн", "поддерживающ", "дружелюбн",
    "восторжен", "одобритель",
)
_NEGATIVE_STEMS = (
    "negative", "critical", "hostile", "condemn", "aggressive", "contempt", "angry",
    "негатив", "отрицат", "критическ", "осуждающ", "агрессивн", "враждебн",
    "презрительн", "гнев", "недовол", "вражд",
)


def extract_sentiment(response: str) -> str:
    """Map a free-text sentiment answer to a label."""
    text = response.lower()
    if any(stem in text for stem in _POSITIVE_STEMS):
        return SENTIMENT_POSITIVE
    if any(stem in text for stem in _NEGATIVE_STEMS):
        return SENTIMENT_NEGATIVE
    return SENTIMENT_INFORMATIONAL


def prepare_prompt(template: str, text: str, config: AnalysisConfig) -> str:
    return (
        template
        .replace("{text}", text)
        .replace("{object_metadata}", config.object_metadata)
        .replace("{object}", config.object)
    )


class ArticleAnnotator:
    """Runs the annotation queries for one article concurrently."""

    def __init__(self, llm: AnnotationProvider, config: AnalysisConfig, timeout: float):
        self.llm = llm
        self.config = config
        self.timeout = timeout

    async def _query(self, kind: str, template: str, content: str) -> str:
        prompt = prepare_prompt(template, content, self.config)
        return await with_timeout(self.llm.complete(prompt), self.timeout, f"annotation:{kind}")

    async def annotate(self, content: str, need_title: bool) -> tuple[Annotations, list[str]]:
        """Query the LLM for every annotation field.

        Failures never propagate: each one becomes a diagnostic and the
        corresponding field stays empty.

        Returns:
            Annotations and diagnostics
        """
        prompts = self.config.prompts
        queries: dict[str, str] = {}
        if need_title:
            queries["title"] = prompts.title
        if self.config.full_analysis:
            queries["affiliation"] = prompts.affiliation
        queries["sentiment"] = prompts.sentiment

        results = await asyncio.gather(
            *(self._query(kind, template, content) for kind, template in queries.items()),
            return_exceptions=True,
        )

        annotations = Annotations()
        diagnostics = []
        for kind, result in zip(queries, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Annotation failed", kind=kind, error=describe(result))
                diagnostics.append(f"{kind}: {describe(result)}")
                continue

            if kind == "title":
                annotations.title = result.strip().strip('"')
            elif kind == "affiliation":
                annotations.affiliation = result.strip()
            elif kind == "sentiment":
                annotations.sentiment = extract_sentiment(result)
                annotations.justification = result.strip()

        return annotations, diagnostics
