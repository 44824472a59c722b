"""Data models and external provider clients."""

from .article import Annotations, Article, Candidate, DedupResult, DedupStatus

__all__ = [
    'Annotations',
    'Article',
    'Candidate',
    'DedupResult',
    'DedupStatus',
]
