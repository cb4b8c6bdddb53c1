"""Unit tests for configuration loading.

Tests cover:
- Hydra config loading from the packaged YAML
- Environment variable interpolation
- Provider defaults and numeric clamping
- Configured / not-configured detection
"""

from pathlib import Path

import pytest

from note_index.config import (
    DEFAULT_DB_PATH,
    DISABLED_MESSAGE,
    MISSING_KEY_MESSAGE,
    EmbeddingsConfig,
    EmbeddingsProvider,
    load_config,
    parse_boolean,
    parse_bounded_int,
)


class TestParsing:
    """Tests for the loose env value parsers."""

    @pytest.mark.parametrize("raw", ["true", "TRUE", " 1 ", "yes"])
    def test_truthy_values(self, raw: str) -> None:
        assert parse_boolean(raw, False) is True

    @pytest.mark.parametrize("raw", ["false", "0", "No"])
    def test_falsy_values(self, raw: str) -> None:
        assert parse_boolean(raw, True) is False

    def test_unrecognized_boolean_uses_default(self) -> None:
        assert parse_boolean("maybe", True) is True
        assert parse_boolean(None, False) is False

    def test_bounded_int_floors_and_clamps(self) -> None:
        assert parse_bounded_int("450.9", 1200, 300, 4000) == 450
        assert parse_bounded_int("10", 1200, 300, 4000) == 300
        assert parse_bounded_int(99999, 1200, 300, 4000) == 4000

    def test_bounded_int_non_numeric_uses_default(self) -> None:
        assert parse_bounded_int("abc", 1200, 300, 4000) == 1200
        assert parse_bounded_int("inf", 1200, 300, 4000) == 1200
        assert parse_bounded_int(None, 16, 1, 64) == 16


class TestEmbeddingsConfig:
    """Tests for EmbeddingsConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = EmbeddingsConfig()

        assert config.enabled is False
        assert config.provider == EmbeddingsProvider.OPENAI
        assert config.model == "text-embedding-3-small"
        assert config.base_url == "https://api.openai.com"
        assert config.db_path == DEFAULT_DB_PATH
        assert config.chunk_chars == 1200
        assert config.chunk_overlap == 200
        assert config.preview_chars == 220
        assert config.default_batch_size == 16
        assert config.default_max_chunks_per_note == 60

    def test_mistral_defaults(self) -> None:
        config = EmbeddingsConfig(provider="mistral")

        assert config.model == "mistral-embed"
        assert config.base_url == "https://api.mistral.ai"

    def test_unknown_provider_falls_back_to_openai(self) -> None:
        config = EmbeddingsConfig(provider="cohere")
        assert config.provider == EmbeddingsProvider.OPENAI

    def test_base_url_trailing_slash_stripped(self) -> None:
        config = EmbeddingsConfig(provider="custom", base_url="http://localhost:1234/ ")
        assert config.base_url == "http://localhost:1234"

    def test_numeric_settings_clamped(self) -> None:
        config = EmbeddingsConfig(chunk_chars=50, chunk_overlap=5000, default_batch_size=0)

        assert config.chunk_chars == 300
        assert config.chunk_overlap == 1000
        assert config.default_batch_size == 1

    def test_config_is_frozen(self) -> None:
        config = EmbeddingsConfig()
        with pytest.raises(ValueError):
            config.chunk_chars = 500  # type: ignore[misc]

    def test_disabled_is_not_configured(self) -> None:
        config = EmbeddingsConfig(api_key="sk-test")

        assert config.is_configured is False
        assert config.not_configured_reason() == DISABLED_MESSAGE

    def test_missing_key_is_not_configured(self) -> None:
        config = EmbeddingsConfig(enabled=True)
        assert config.not_configured_reason() == MISSING_KEY_MESSAGE

    def test_custom_provider_needs_no_key(self) -> None:
        config = EmbeddingsConfig(enabled=True, provider="custom")
        assert config.is_configured is True


class TestConfigLoading:
    """Tests for loading config from Hydra YAML."""

    def test_load_default_config(self) -> None:
        config = load_config("default")

        assert isinstance(config, EmbeddingsConfig)
        assert config.enabled is False
        assert config.chunk_chars == 1200

    def test_env_vars_are_interpolated(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("NOTEPLAN_EMBEDDINGS_ENABLED", "true")
        monkeypatch.setenv("NOTEPLAN_EMBEDDINGS_PROVIDER", "mistral")
        monkeypatch.setenv("NOTEPLAN_EMBEDDINGS_API_KEY", "mk-test")
        monkeypatch.setenv("NOTEPLAN_EMBEDDINGS_CHUNK_CHARS", "800")
        monkeypatch.setenv("NOTEPLAN_EMBEDDINGS_DB_PATH", str(tmp_path / "e.db"))

        config = load_config()

        assert config.enabled is True
        assert config.provider == EmbeddingsProvider.MISTRAL
        assert config.model == "mistral-embed"
        assert config.chunk_chars == 800
        assert config.db_path == (tmp_path / "e.db").resolve()
        assert config.is_configured is True

    def test_overrides(self) -> None:
        config = load_config(overrides=["chunk_overlap=50", "provider=custom"])

        assert config.chunk_overlap == 50
        assert config.base_url == "http://localhost:11434"

    def test_missing_config_dir_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            load_config(config_path=tmp_path / "nope")
