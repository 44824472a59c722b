"""Async LLM client with fallback and retry logic, used for article annotations."""

import asyncio
import re
import time
from abc import ABC, abstractmethod

import httpx
from google import genai
from openai import AsyncOpenAI
from pydantic import BaseModel

from ..config import ModelSettings, Settings, get_settings
from ..errors import LLMError
from ..logging import get_logger
from ..utils import retry_async

logger = get_logger(__name__)

OPENAI_MODELS = {
    "gpt-4o": "gpt-4o",
    "gpt-4o-mini": "gpt-4o-mini",
    "gpt-4.1-mini": "gpt-4.1-mini",
}

GEMINI_MODELS = {
    "gemini-2.5-flash": "gemini-2.5-flash",
    "gemini-2.5-flash-lite": "gemini-2.5-flash-lite",
}

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)


def remove_think_block(text: str) -> str:
    """Strip reasoning blocks some models emit before the answer."""
    return _THINK_BLOCK.sub("", text).strip()


class LLMResponse(BaseModel):
    """LLM response wrapper."""
    content: str
    model: str
    response_time: float | None = None


class AnnotationProvider(ABC):
    """Completes a prompt with free text."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return the model's answer, raising LLMError on failure."""

    async def aclose(self) -> None:
        pass


class LLMClient(AnnotationProvider):
    """OpenAI client with Gemini fallback."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.model_settings: ModelSettings = self.settings.llm

        if self.settings.openai_api_key:
            self._openai_client = AsyncOpenAI(api_key=self.settings.openai_api_key)
            logger.info("OpenAI client initialized")
        else:
            self._openai_client = None
            logger.warning("OpenAI API key not found")

        if self.settings.google_ai_api_key:
            self._gemini_client = genai.Client(api_key=self.settings.google_ai_api_key)
            logger.info("Gemini client initialized as fallback")
        else:
            self._gemini_client = None
            logger.warning("Google AI API key not found")

        if not self._openai_client and not self._gemini_client:
            raise LLMError("Neither OpenAI nor Google AI API keys are available")

    async def _make_openai_request(self, model: str, prompt: str) -> LLMResponse:
        if not self._openai_client:
            raise LLMError("OpenAI client not initialized")

        start_time = time.monotonic()
        try:
            response = await self._openai_client.chat.completions.create(
                model=OPENAI_MODELS.get(model, model),
                messages=[{"role": "user", "content": prompt}],
                temperature=self.model_settings.temperature,
                max_tokens=self.model_settings.max_tokens,
                timeout=self.settings.provider_timeout_seconds,
            )
        except Exception as e:
            raise LLMError(f"OpenAI API error for model {model}: {e}") from e

        content = response.choices[0].message.content
        if not content:
            raise LLMError("Empty response content from OpenAI")

        return LLMResponse(content=content, model=model, response_time=time.monotonic() - start_time)

    async def _make_gemini_request(self, model: str, prompt: str) -> LLMResponse:
        if not self._gemini_client:
            raise LLMError("Gemini client not initialized")

        start_time = time.monotonic()
        try:
            response = await asyncio.to_thread(
                self._gemini_client.models.generate_content,
                model=f"models/{GEMINI_MODELS.get(model, model)}",
                contents=prompt,
                config={
                    "temperature": self.model_settings.temperature,
                    "max_output_tokens": self.model_settings.max_tokens,
                },
            )
        except Exception as e:
            raise LLMError(f"Gemini API error for model {model}: {e}") from e

        content = getattr(response, "text", None)
        if not content or not content.strip():
            raise LLMError("Empty response content from Gemini")

        return LLMResponse(content=content, model=model, response_time=time.monotonic() - start_time)

    async def _make_request(self, model: str, prompt: str) -> LLMResponse:
        """Route request to appropriate API based on model type."""
        if model in GEMINI_MODELS or model.startswith("gemini"):
            return await self._make_gemini_request(model, prompt)
        if model in OPENAI_MODELS or self._openai_client:
            return await self._make_openai_request(model, prompt)
        logger.warning("Unknown model, defaulting to Gemini", model=model)
        return await self._make_gemini_request(model, prompt)

    async def complete(self, prompt: str) -> str:
        """Send a prompt, trying the primary model and then each fallback.

        Raises:
            LLMError: If all models and retries fail
        """
        if not prompt.strip():
            raise LLMError("Empty prompt")

        models_to_try = [self.settings.llm_model] + list(self.settings.llm_fallback_models)
        last_error: Exception | None = None

        for model in models_to_try:
            try:
                response = await retry_async(
                    lambda: self._make_request(model, prompt),
                    max_retries=self.model_settings.retry_attempts,
                    backoff_factor=self.model_settings.backoff_factor,
                    exceptions=(LLMError, httpx.RequestError, httpx.TimeoutException),
                    operation=f"complete:{model}",
                )
            except (LLMError, httpx.HTTPError) as e:
                last_error = e
                logger.warning("Model failed after retries", model=model, error=str(e))
                continue

            logger.info("LLM request successful", model=model, response_time=response.response_time)
            return remove_think_block(response.content)

        raise LLMError(f"All models failed: {last_error}") from last_error


class OllamaLLMClient(AnnotationProvider):
    """Annotations from a local Ollama model via ``/api/generate``."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self.model_settings: ModelSettings = self.settings.llm
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.ollama_host,
            timeout=self.settings.provider_timeout_seconds,
        )

    async def _generate(self, prompt: str) -> str:
        try:
            response = await self._client.post(
                "/api/generate",
                json={
                    "model": self.settings.ollama_model,
                    "prompt": prompt,
                    "stream": False,
                    "options": {"temperature": self.model_settings.temperature},
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise LLMError(f"Ollama request failed for model {self.settings.ollama_model}: {e}") from e

        content = response.json().get("response") or ""
        if not content.strip():
            raise LLMError("Empty response content from Ollama")
        return content

    async def complete(self, prompt: str) -> str:
        if not prompt.strip():
            raise LLMError("Empty prompt")

        content = await retry_async(
            lambda: self._generate(prompt),
            max_retries=self.model_settings.retry_attempts,
            backoff_factor=self.model_settings.backoff_factor,
            exceptions=(LLMError,),
            operation=f"complete:{self.settings.ollama_model}",
        )
        return remove_think_block(content)

    async def aclose(self) -> None:
        await self._client.aclose()


class MockLLMClient(AnnotationProvider):
    """Mock LLM client for testing and offline runs."""

    def __init__(self, responses: dict[str, str] | None = None, delay: float = 0.0):
        self.responses = responses or {}
        self.delay = delay
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)

        for marker, answer in self.responses.items():
            if marker in prompt:
                return answer
        return f"Neutral. Mock response to: {prompt[:50]}..."


def create_llm_client(settings: Settings | None = None, mock: bool = False) -> AnnotationProvider:
    """Factory function to create LLM client.

    Args:
        settings: Application settings
        mock: Whether to use mock client

    Returns:
        LLM client instance
    """
    settings = settings or get_settings()
    if mock or settings.mock:
        return MockLLMClient()
    if settings.llm_backend == "ollama":
        return OllamaLLMClient(settings)
    return LLMClient(settings)
