"""Content processing module."""

from .extractor import ContentExtractor, ExtractedContent
from .similarity import (
    CapitalizedWordFilter,
    CompositeSimilarity,
    composite_similarity,
    cosine_similarity,
    lexical_similarity,
    normalize,
    semantic_similarity,
)
from .text_utils import clean_content, clean_title

__all__ = [
    'ContentExtractor',
    'ExtractedContent',
    'CapitalizedWordFilter',
    'CompositeSimilarity',
    'composite_similarity',
    'cosine_similarity',
    'lexical_similarity',
    'normalize',
    'semantic_similarity',
    'clean_content',
    'clean_title',
]
