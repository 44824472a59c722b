"""Page downloading."""

from .fetcher import Fetcher

__all__ = ['Fetcher']
