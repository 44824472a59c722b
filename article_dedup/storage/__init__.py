"""Article persistence."""

from .store import ArticleStore, SQLiteArticleStore

__all__ = ['ArticleStore', 'SQLiteArticleStore']
