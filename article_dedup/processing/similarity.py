"""
Similarity scoring for article deduplication.

Three families of scores are provided:
1. Vector scores over unit-normalized embeddings (cosine, angular)
2. Lexical score: Jaccard overlap of content words after named entities are removed
3. Composite score: weighted blend of a vector score and the lexical score

All functions are deterministic and have no learned parameters.
"""

import math
import string
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

import numpy as np

from ..errors import SimilarityError

VectorLike = Sequence[float] | np.ndarray
VectorMetric = Callable[[VectorLike, VectorLike], float]

MIN_TOKEN_LENGTH = 4

# Stripped from both ends of a token before it is scored
_TOKEN_PUNCTUATION = string.punctuation + "«»“”„‟‘’‚‛‹›…–—"


def normalize(vector: VectorLike) -> np.ndarray:
    """Scale vector to unit Euclidean norm.

    Zero and NaN-norm vectors are returned unchanged.

    Args:
        vector: Raw vector

    Returns:
        New float64 array
    """
    arr = np.array(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0 or math.isnan(norm):
        return arr
    return arr / norm


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine of the angle between two pre-normalized vectors.

    Raises:
        SimilarityError: If the vectors differ in length
    """
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    if vec_a.shape != vec_b.shape:
        raise SimilarityError(
            f"Vectors must have same length ({vec_a.size} != {vec_b.size})"
        )
    # Rounding can push the dot product of unit vectors slightly past 1
    return float(np.clip(np.dot(vec_a, vec_b), -1.0, 1.0))


def semantic_similarity(a: VectorLike, b: VectorLike) -> float:
    """Angular similarity ``1 - arccos(cosine) / pi`` in [0, 1]."""
    cosine = cosine_similarity(a, b)
    if math.isnan(cosine):
        return math.nan
    return 1.0 - math.acos(cosine) / math.pi


VECTOR_METRICS: dict[str, VectorMetric] = {
    "angular": semantic_similarity,
    "cosine": cosine_similarity,
}


def get_vector_metric(name: str) -> VectorMetric:
    """Look up a vector metric by its settings name."""
    try:
        return VECTOR_METRICS[name]
    except KeyError:
        raise ValueError(f"Unknown similarity metric: {name}") from None


class EntityFilter(Protocol):
    """Removes high-salience named entities from a token stream."""

    def __call__(self, tokens: Iterable[str]) -> list[str]: ...


@dataclass(frozen=True)
class CapitalizedWordFilter:
    """Treat long capitalized words as proper nouns and drop them.

    Locale-agnostic heuristic: town names, people and organisations are
    usually capitalized, which is enough to stop them dominating the overlap.
    """
    min_length: int = MIN_TOKEN_LENGTH

    def __call__(self, tokens: Iterable[str]) -> list[str]:
        return [token for token in tokens if not self.is_proper_noun(token)]

    def is_proper_noun(self, token: str) -> bool:
        return len(token) >= self.min_length and token[0].isupper()


DEFAULT_ENTITY_FILTER = CapitalizedWordFilter()


def tokenize(text: str) -> list[str]:
    """Split on whitespace and strip surrounding punctuation."""
    tokens = (word.strip(_TOKEN_PUNCTUATION) for word in text.split())
    return [token for token in tokens if token]


def content_words(text: str, entity_filter: EntityFilter = DEFAULT_ENTITY_FILTER) -> set[str]:
    """Lowercased tokens of length > 3 left after entity filtering."""
    return {
        token.lower()
        for token in entity_filter(tokenize(text))
        if len(token) >= MIN_TOKEN_LENGTH
    }


def lexical_similarity(
    text1: str,
    text2: str,
    entity_filter: EntityFilter = DEFAULT_ENTITY_FILTER,
) -> float:
    """Jaccard index of the content words of two texts.

    Args:
        text1: First text
        text2: Second text
        entity_filter: Strategy removing named entities before scoring

    Returns:
        Similarity score (0.0 to 1.0); 0.0 when both texts have no content words
    """
    words1 = content_words(text1, entity_filter)
    words2 = content_words(text2, entity_filter)

    union = words1 | words2
    if not union:
        return 0.0

    return len(words1 & words2) / len(union)


def composite_similarity(
    text1: str,
    text2: str,
    vec1: VectorLike,
    vec2: VectorLike,
    vector_weight: float,
    vector_metric: VectorMetric = cosine_similarity,
    entity_filter: EntityFilter = DEFAULT_ENTITY_FILTER,
) -> float:
    """Weighted blend ``w * vector + (1 - w) * lexical``.

    Raises:
        SimilarityError: If the vectors cannot be compared
    """
    vector_score = vector_metric(vec1, vec2)
    text_score = lexical_similarity(text1, text2, entity_filter)
    return vector_weight * vector_score + (1.0 - vector_weight) * text_score


@dataclass
class CompositeSimilarity:
    """Composite scorer bound to one weight, metric and entity filter."""
    vector_weight: float
    vector_metric: VectorMetric = cosine_similarity
    entity_filter: EntityFilter = field(default=DEFAULT_ENTITY_FILTER)

    def __post_init__(self) -> None:
        if not 0 <= self.vector_weight <= 1:
            raise ValueError("Vector weight must be between 0 and 1")

    @property
    def text_weight(self) -> float:
        return 1.0 - self.vector_weight

    def compare(self, text1: str, text2: str, vec1: VectorLike, vec2: VectorLike) -> float:
        return composite_similarity(
            text1,
            text2,
            vec1,
            vec2,
            self.vector_weight,
            vector_metric=self.vector_metric,
            entity_filter=self.entity_filter,
        )
