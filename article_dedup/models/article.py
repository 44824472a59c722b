"""Article data structures shared by the store and the dedup pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import numpy as np

from ..utils import extract_domain, utc_now


@dataclass
class Annotations:
    """Opaque LLM annotation fields; not interpreted by the dedup core."""
    title: str = ""
    affiliation: str = ""
    sentiment: str = ""
    justification: str = ""


@dataclass
class Article:
    """Stored (or about to be stored) article."""
    content: str
    source_url: str
    title: str = ""
    embedding: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float64))
    created_at: datetime = field(default_factory=utc_now)
    published_at: datetime | None = None
    citations: int = 0
    original: bool = True
    similar_urls: list[str] = field(default_factory=list)
    affiliation: str = ""
    sentiment: str = ""
    justification: str = ""
    id: int | None = None

    @property
    def domain(self) -> str:
        return extract_domain(self.source_url)

    def apply_annotations(self, annotations: Annotations) -> None:
        if annotations.title and not self.title:
            self.title = annotations.title
        self.affiliation = annotations.affiliation
        self.sentiment = annotations.sentiment
        self.justification = annotations.justification


@dataclass
class Candidate:
    """Stored anchor article considered as a near-duplicate."""
    article: Article
    vector_score: float
    composite_score: float | None = None


class DedupStatus(str, Enum):
    """Classification of a submission."""
    ORIGINAL = "original"
    DUPLICATE = "duplicate"
    EXACT_DUPLICATE = "exact_duplicate"


@dataclass
class DedupResult:
    """Outcome of one submission through the dedup pipeline."""
    status: DedupStatus
    article: Article
    verified: list[Candidate] = field(default_factory=list)
    existing: Article | None = None
    stored: bool = False
    diagnostics: list[str] = field(default_factory=list)

    @property
    def is_original(self) -> bool:
        return self.status == DedupStatus.ORIGINAL
