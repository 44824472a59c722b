"""Article dedup agent: extraction, near-duplicate detection and citation tracking."""

__version__ = "0.1.0"
