"""Embedding clients: Google Gemini, local Ollama and a deterministic mock."""

import asyncio
import hashlib
from abc import ABC, abstractmethod

import httpx
import numpy as np
from google import genai

from ..config import Settings, get_settings
from ..errors import ProviderError, TooShortError
from ..logging import get_logger

logger = get_logger(__name__)

MIN_EMBEDDING_TEXT_LENGTH = 50


class EmbeddingProvider(ABC):
    """Produces raw (not necessarily normalized) embedding vectors."""

    name = "embedding"

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    async def embed(self, text: str) -> list[float]:
        """Embed text.

        Args:
            text: Cleaned article text

        Returns:
            Raw embedding vector

        Raises:
            TooShortError: Text under 50 characters; the provider is not called
            ProviderError: Provider failed or returned an empty vector
        """
        if len(text) < MIN_EMBEDDING_TEXT_LENGTH:
            raise TooShortError(
                f"Text too short for meaningful embedding ({len(text)} < {MIN_EMBEDDING_TEXT_LENGTH})"
            )

        try:
            vector = await self._embed(f"{self.prefix}{text}")
        except ProviderError:
            raise
        except Exception as e:
            logger.error("Embedding request failed", provider=self.name, error=str(e))
            raise ProviderError(f"{self.name} embedding request failed: {e}") from e

        if not vector:
            raise ProviderError(f"{self.name} returned an empty embedding")

        logger.debug("Generated embedding", provider=self.name, size=len(vector), text_length=len(text))
        return vector

    @abstractmethod
    async def _embed(self, text: str) -> list[float]:
        """Call the provider."""

    async def aclose(self) -> None:
        pass


class GeminiEmbeddingClient(EmbeddingProvider):
    """Client for generating embeddings using Google Gemini API."""

    name = "gemini"

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        super().__init__(prefix=self.settings.embedding_prefix)
        if not self.settings.google_ai_api_key:
            raise ProviderError("Google AI API key not configured")
        self._client = genai.Client(api_key=self.settings.google_ai_api_key)
        logger.info("Google AI embedding client initialized")

    async def _embed(self, text: str) -> list[float]:
        # SDK call is blocking; keep it off the event loop
        result = await asyncio.to_thread(
            self._client.models.embed_content,
            model=self.settings.embedding_model,
            contents=[text],
            config={
                "output_dimensionality": self.settings.embedding_dimensions,
                "task_type": "SEMANTIC_SIMILARITY",
            },
        )

        if not getattr(result, "embeddings", None):
            raise ProviderError(f"Unexpected Gemini response format: {type(result)}")

        embedding_obj = result.embeddings[0]
        values = getattr(embedding_obj, "values", embedding_obj)
        return [float(v) for v in values]


class OllamaEmbeddingClient(EmbeddingProvider):
    """Embeddings from a local Ollama server."""

    name = "ollama"

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        super().__init__(prefix=self.settings.embedding_prefix)
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.ollama_host,
            timeout=self.settings.provider_timeout_seconds,
        )

    async def _embed(self, text: str) -> list[float]:
        response = await self._client.post(
            "/api/embeddings",
            json={
                "model": self.settings.embedding_model,
                "prompt": text,
                "options": {"temperature": 0},
            },
        )
        response.raise_for_status()
        return [float(v) for v in response.json().get("embedding") or []]

    async def aclose(self) -> None:
        await self._client.aclose()


class MockEmbeddingClient(EmbeddingProvider):
    """Deterministic hashed bag-of-words embeddings for tests and mock mode."""

    name = "mock"

    def __init__(self, dimensions: int = 64):
        super().__init__()
        self.dimensions = dimensions
        self.calls = 0

    async def _embed(self, text: str) -> list[float]:
        self.calls += 1
        vector = np.zeros(self.dimensions, dtype=np.float64)
        for word in text.lower().split():
            digest = hashlib.sha256(word.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self.dimensions
            vector[index] += 1.0
        return vector.tolist()


def create_embedding_client(settings: Settings | None = None, mock: bool = False) -> EmbeddingProvider:
    """Factory function to create an embedding client.

    Args:
        settings: Application settings
        mock: Whether to use the mock client

    Returns:
        Embedding provider instance
    """
    settings = settings or get_settings()
    if mock or settings.mock or settings.embedding_backend == "mock":
        return MockEmbeddingClient()
    if settings.embedding_backend == "ollama":
        return OllamaEmbeddingClient(settings)
    return GeminiEmbeddingClient(settings)
