"""Configuration management for the article dedup agent."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging import get_logger

logger = get_logger(__name__)


class ModelSettings(BaseModel):
    """LLM model-specific settings."""
    temperature: float = 0.2
    max_tokens: int = 1024
    retry_attempts: int = 1
    backoff_factor: float = 2.0


class Prompts(BaseModel):
    """Annotation prompts.

    ``{text}``, ``{object}`` and ``{object_metadata}`` are substituted
    literally before the prompt is sent.
    """
    title: str = (
        "Write a short headline for the following news article. "
        "Answer with the headline only.\n\n{text}"
    )
    affiliation: str = (
        "How is the following article related to {object} ({object_metadata})? "
        "Answer in one or two sentences.\n\n{text}"
    )
    sentiment: str = (
        "What is the attitude of the following article towards {object}? "
        "Start the answer with positive, negative or neutral and justify it briefly.\n\n{text}"
    )


class AnalysisConfig(BaseModel):
    """Analysis options persisted in the YAML config file."""
    object: str = Field("", description="Organisation or subject the articles are analysed against")
    object_metadata: str = Field("", description="Extra context about the object")
    max_content_size: int = Field(3500, description="Maximum article length in code points")
    save_similar_articles: bool = Field(False, description="Store near-duplicates as non-original rows")
    full_analysis: bool = Field(True, description="Run affiliation and sentiment annotations")
    prompts: Prompts = Field(default_factory=Prompts)

    @field_validator("max_content_size")
    @classmethod
    def validate_max_content_size(cls, v: int) -> int:
        """Content limit must leave room for the extraction minimum."""
        if v < 100:
            raise ValueError("Max content size must be at least 100 characters")
        return v


class UserConfig(BaseModel):
    """Per-requester similarity thresholds."""
    user_id: int
    vector_similarity_threshold: float = 0.5
    days_lookback: int = 7
    composite_vector_weight: float = 0.7
    final_similarity_threshold: float = 0.65

    @field_validator(
        "vector_similarity_threshold",
        "composite_vector_weight",
        "final_similarity_threshold",
    )
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Validate ratio values are between 0 and 1."""
        if not 0 <= v <= 1:
            raise ValueError("Value must be between 0 and 1")
        return v

    @field_validator("days_lookback")
    @classmethod
    def validate_days_lookback(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Days lookback must not be negative")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    # ── Provider Credentials ───────────────────────────────────────────────
    openai_api_key: str | None = Field(None, description="OpenAI API key for annotations (primary)")
    google_ai_api_key: str | None = Field(None, description="Google AI (Gemini) API key for embeddings and annotations (fallback)")
    ollama_host: str = Field("http://127.0.0.1:11434", description="Ollama server for local embeddings and annotations")

    # ── Embeddings ─────────────────────────────────────────────────────────
    embedding_backend: Literal["gemini", "ollama", "mock"] = Field("gemini", description="Embedding provider")
    embedding_model: str = Field("models/text-embedding-004", description="Embedding model name")
    embedding_dimensions: int = Field(768, description="Output dimensionality (Gemini)")
    embedding_prefix: str = Field("", description="Context prefix prepended to embedded text")

    # ── LLM Annotations ────────────────────────────────────────────────────
    llm_backend: Literal["openai", "ollama"] = Field(
        "openai", description="Annotation provider: hosted OpenAI/Gemini or a local Ollama model"
    )
    ollama_model: str = Field("bambucha/saiga-llama3:latest", description="Ollama model for annotations")
    llm_model: str = Field("gpt-4o-mini", description="Primary annotation model")
    llm_fallback_models: list[str] = Field(
        default_factory=lambda: ["gemini-2.5-flash"], description="Models tried after the primary"
    )
    llm: ModelSettings = Field(default_factory=ModelSettings, description="LLM settings")
    provider_timeout_seconds: float = Field(120.0, description="Timeout for every external provider call")

    # ── Operational Mode ───────────────────────────────────────────────────
    mock: bool = Field(False, description="Use mock embedding and LLM clients")

    # ── Fetching ───────────────────────────────────────────────────────────
    fetch_timeout_seconds: float = Field(30.0, description="HTTP timeout for page downloads")
    fetch_retries: int = Field(2, description="Retries for transient HTTP failures")
    user_agent: str | None = Field(None, description="Fixed user agent; rotates browser agents when unset")

    # ── Deduplication ──────────────────────────────────────────────────────
    similarity_metric: Literal["angular", "cosine"] = Field(
        "angular", description="Vector metric for candidate prefilter and composite score"
    )

    # ── Storage ────────────────────────────────────────────────────────────
    data_dir: Path = Field(Path("./data"), description="Data directory")
    database_file: str = Field("articles.db", description="SQLite file name inside data_dir")

    # ── Logging ────────────────────────────────────────────────────────────
    log_level: str = Field("INFO", description="Log level")
    json_logging: bool = Field(True, description="Enable JSON logging")
    log_file: Path | None = Field(None, description="Optional log file")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir")
    @classmethod
    def ensure_directories(cls, v: Path) -> Path:
        """Ensure directories exist with secure permissions."""
        from .utils import ensure_directory
        ensure_directory(v, mode=0o700)
        return v.resolve()

    @field_validator("provider_timeout_seconds", "fetch_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_file


class ConfigFile:
    """Explicit handle on the YAML analysis config file."""

    def __init__(self, config_path: str | Path = "config.yaml"):
        self.config_path = Path(config_path)

    def load(self) -> AnalysisConfig:
        """Load analysis configuration; defaults when the file does not exist yet."""
        if not self.config_path.exists():
            logger.info("Config file not found, using defaults", path=str(self.config_path))
            return AnalysisConfig()

        with open(self.config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AnalysisConfig(**data)

    def save(self, config: AnalysisConfig) -> None:
        """Write configuration back to the same file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config.model_dump(), f, allow_unicode=True, sort_keys=False)
        logger.debug("Config saved", path=str(self.config_path))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()


def validate_config(settings: Settings) -> bool:
    """Validate configuration completeness."""
    try:
        if settings.mock:
            return True

        if settings.embedding_backend == "gemini" and not settings.google_ai_api_key:
            raise ValueError("GOOGLE_AI_API_KEY is required for the gemini embedding backend")

        if (
            settings.llm_backend == "openai"
            and not settings.google_ai_api_key
            and not settings.openai_api_key
        ):
            raise ValueError("Either GOOGLE_AI_API_KEY or OPENAI_API_KEY is required for annotations")

        return True

    except ValueError as e:
        logger.error("Configuration validation failed", error=str(e))
        return False
