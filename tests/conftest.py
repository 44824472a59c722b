"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

# Set test environment
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["JSON_LOGGING"] = "false"
os.environ["MOCK"] = "true"

from article_dedup.models.embedding_client import MockEmbeddingClient  # noqa: E402
from article_dedup.storage.store import SQLiteArticleStore  # noqa: E402

ARTICLE_A = (
    "the city council voted on tuesday to approve a new budget for road repairs "
    "and public parks after a long debate about rising costs and the needs of "
    "local residents who complained about potholes near the old bridge"
)

# Same story, reworded slightly
ARTICLE_B = (
    "the city council voted on wednesday to approve a new budget for road repairs "
    "and public parks after a long debate about rising costs and the needs of "
    "local residents who complained about potholes near the old bridge, officials said"
)

ARTICLE_UNRELATED = (
    "scientists studying coral reefs reported bleaching across several shallow "
    "lagoons this summer, warning that warmer ocean water threatens fragile "
    "marine ecosystems and the fishing communities depending upon them"
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def mock_env(monkeypatch, temp_dir):
    """Mock environment variables for testing."""
    monkeypatch.setenv("DATA_DIR", str(temp_dir / "data"))
    monkeypatch.setenv("MOCK", "true")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_AI_API_KEY", raising=False)


@pytest_asyncio.fixture
async def store(temp_dir) -> AsyncGenerator[SQLiteArticleStore, None]:
    """Temporary SQLite store."""
    async with SQLiteArticleStore(temp_dir / "articles.db") as article_store:
        yield article_store


@pytest.fixture
def embedder() -> MockEmbeddingClient:
    """Deterministic embeddings; wide enough that unrelated words rarely collide."""
    return MockEmbeddingClient(dimensions=1024)


@pytest.fixture
def article_html() -> str:
    """Article page with navigation and footer noise."""
    paragraphs = "".join(
        f"<p>{sentence}</p>"
        for sentence in (
            "The city council voted on Tuesday to approve a new budget for road repairs and public parks.",
            "The debate lasted more than four hours as members argued about rising construction costs.",
            "Local residents had complained for months about potholes near the old bridge on Main Street.",
            "Officials said the first repairs would begin next spring once contracts are signed.",
        )
    )
    return (
        "<!DOCTYPE html><html><head><title>Council approves road budget</title></head><body>"
        "<nav><a href='/'>Home</a> <a href='/news'>News</a> <a href='/sport'>Sport</a></nav>"
        f"<article><h1>Council approves road budget</h1>{paragraphs}</article>"
        "<footer>Copyright 2024 Example News. All rights reserved.</footer>"
        "</body></html>"
    )


@pytest.fixture
def short_html() -> str:
    """Well-formed page with only 50 characters of text."""
    text = "Short notice about the weather in the city, today."
    assert len(text) == 50
    return (
        "<!DOCTYPE html><html><head><meta charset='utf-8'></head>"
        f"<body><div><p>{text}</p></div></body></html>"
    )


@pytest.fixture
def protected_html() -> str:
    return (
        "<!DOCTYPE html><html><head><title>Just a moment...</title></head>"
        "<body><h1>Checking your browser before accessing the site.</h1>"
        "<p>This process is automatic. Cloudflare Ray ID: 1234</p></body></html>"
    )
