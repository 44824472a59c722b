"""Tests for configuration module."""

import pytest
import yaml

from article_dedup.config import AnalysisConfig, ConfigFile, Settings, UserConfig, validate_config


def test_settings_creation(mock_env, temp_dir):
    """Test settings creation with environment variables."""
    settings = Settings()

    assert settings.mock is True
    assert settings.embedding_backend == "gemini"
    assert settings.similarity_metric == "angular"
    assert settings.provider_timeout_seconds == 120.0
    assert settings.database_path == (temp_dir / "data").resolve() / "articles.db"


def test_directory_creation(temp_dir, mock_env):
    """Test that directories are created automatically."""
    settings = Settings()

    assert settings.data_dir.exists()
    assert settings.data_dir.is_dir()


def test_settings_timeout_validation(mock_env):
    with pytest.raises(ValueError, match="Timeout must be positive"):
        Settings(provider_timeout_seconds=0)


def test_settings_metric_validation(mock_env):
    with pytest.raises(ValueError):
        Settings(similarity_metric="euclidean")


def test_settings_from_environment(mock_env, monkeypatch):
    monkeypatch.setenv("SIMILARITY_METRIC", "cosine")
    monkeypatch.setenv("EMBEDDING_BACKEND", "ollama")
    settings = Settings()

    assert settings.similarity_metric == "cosine"
    assert settings.embedding_backend == "ollama"


def test_user_config_defaults():
    config = UserConfig(user_id=1)

    assert config.vector_similarity_threshold == 0.5
    assert config.days_lookback == 7
    assert config.composite_vector_weight == 0.7
    assert config.final_similarity_threshold == 0.65


@pytest.mark.parametrize("field", [
    "vector_similarity_threshold",
    "composite_vector_weight",
    "final_similarity_threshold",
])
def test_user_config_ratio_validation(field):
    with pytest.raises(ValueError, match="Value must be between 0 and 1"):
        UserConfig(user_id=1, **{field: 1.5})


def test_user_config_negative_lookback():
    with pytest.raises(ValueError):
        UserConfig(user_id=1, days_lookback=-1)


def test_analysis_config_max_content_validation():
    with pytest.raises(ValueError, match="at least 100"):
        AnalysisConfig(max_content_size=50)


def test_config_file_missing_returns_defaults(temp_dir):
    config = ConfigFile(temp_dir / "missing.yaml").load()

    assert config == AnalysisConfig()
    assert config.max_content_size == 3500
    assert config.save_similar_articles is False


def test_config_file_round_trip(temp_dir):
    config_file = ConfigFile(temp_dir / "nested" / "config.yaml")
    config = AnalysisConfig(object="Городской совет", object_metadata="city council", save_similar_articles=True)
    config_file.save(config)

    assert config_file.load() == config
    raw = yaml.safe_load((temp_dir / "nested" / "config.yaml").read_text(encoding="utf-8"))
    assert raw["object"] == "Городской совет"


def test_config_file_partial_yaml(temp_dir):
    path = temp_dir / "config.yaml"
    path.write_text("object: Acme\nmax_content_size: 2000\n", encoding="utf-8")

    config = ConfigFile(path).load()
    assert config.object == "Acme"
    assert config.max_content_size == 2000
    assert config.full_analysis is True
    assert "{text}" in config.prompts.sentiment


def test_validate_config_mock(mock_env):
    assert validate_config(Settings(mock=True))


def test_validate_config_requires_keys(mock_env):
    assert not validate_config(Settings(mock=False))
    assert validate_config(Settings(mock=False, google_ai_api_key="test-key"))
    assert not validate_config(Settings(mock=False, openai_api_key="test-key"))
