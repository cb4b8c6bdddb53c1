"""Configuration management for the note embeddings backend using Hydra.

Configuration is composed from ``conf/default.yaml`` (shipped inside the
package), which reads every setting from the environment through OmegaConf
``oc.env`` interpolation. The composed dict is validated by the frozen
``EmbeddingsConfig`` Pydantic model, which also applies defaults and clamps
numeric settings to their documented ranges.

Resolve the config once at startup and hand it to ``EmbeddingsContext``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

PACKAGE_ROOT = Path(__file__).parent
DEFAULT_CONFIG_DIR = PACKAGE_ROOT / "conf"
DEFAULT_DB_PATH = Path.home() / ".noteplan-mcp" / "embeddings.db"
DEFAULT_REFERENCE_DOCS_PATH = PACKAGE_ROOT / "data" / "reference_docs.db.gz"
DEFAULT_REFERENCE_CACHE_PATH = Path.home() / ".noteplan-mcp" / "templates.db"

DISABLED_MESSAGE = (
    "Embeddings are disabled. Set NOTEPLAN_EMBEDDINGS_ENABLED=true to enable embeddings tools."
)
MISSING_KEY_MESSAGE = (
    "Embeddings API key is missing. "
    "Set NOTEPLAN_EMBEDDINGS_API_KEY in your MCP server environment."
)


class EmbeddingsProvider(str, Enum):
    """Embedding providers understood by the backend."""

    OPENAI = "openai"
    MISTRAL = "mistral"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ProviderSpec:
    """Static defaults for one provider.

    Attributes:
        default_model: Model used when NOTEPLAN_EMBEDDINGS_MODEL is unset
        default_base_url: Endpoint base used when NOTEPLAN_EMBEDDINGS_BASE_URL is unset
        requires_api_key: Whether the provider refuses unauthenticated requests
    """

    default_model: str
    default_base_url: str
    requires_api_key: bool


PROVIDER_SPECS: dict[EmbeddingsProvider, ProviderSpec] = {
    EmbeddingsProvider.OPENAI: ProviderSpec(
        "text-embedding-3-small", "https://api.openai.com", requires_api_key=True
    ),
    EmbeddingsProvider.MISTRAL: ProviderSpec(
        "mistral-embed", "https://api.mistral.ai", requires_api_key=True
    ),
    # OpenAI-compatible local server (Ollama, LM Studio, ...)
    EmbeddingsProvider.CUSTOM: ProviderSpec(
        "text-embedding-3-small", "http://localhost:11434", requires_api_key=False
    ),
}

# name -> (default, min, max)
NUMERIC_BOUNDS: dict[str, tuple[int, int, int]] = {
    "chunk_chars": (1200, 300, 4000),
    "chunk_overlap": (200, 0, 1000),
    "preview_chars": (220, 60, 1000),
    "default_batch_size": (16, 1, 64),
    "default_max_chunks_per_note": (60, 1, 400),
    "timeout_seconds": (30, 1, 300),
    "max_retries": (3, 1, 10),
}


def parse_boolean(value: Any, default: bool) -> bool:
    """Parse a loose boolean ("true"/"1"/"yes", "false"/"0"/"no")."""
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes"}:
        return True
    if normalized in {"false", "0", "no"}:
        return False
    return default


def parse_bounded_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    """Floor ``value`` and clamp it to [minimum, maximum]; non-numeric gives ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(numeric):
        return default
    return min(maximum, max(minimum, math.floor(numeric)))


def normalize_base_url(value: str) -> str:
    """Strip whitespace and trailing slashes from an endpoint base."""
    return value.strip().rstrip("/")


class EmbeddingsConfig(BaseModel):
    """Resolved, immutable runtime configuration.

    Attributes:
        enabled: Master switch for every embeddings entry point
        provider: Which embedding API to call
        api_key: Credential for openai/mistral (optional for custom)
        model: Embedding model name (provider default when unset)
        base_url: Endpoint base without trailing slash (provider default when unset)
        db_path: SQLite file backing the live note index
        chunk_chars: Chunk window size in characters
        chunk_overlap: Overlap between consecutive chunks in characters
        preview_chars: Stored/returned preview length in characters
        default_batch_size: Texts per embedding request when the caller gives none
        default_max_chunks_per_note: Chunk cap per note when the caller gives none
        timeout_seconds: HTTP timeout for embedding requests
        max_retries: Attempts per embedding request on rate limits/timeouts
        reference_docs_path: Bundled gzip of the quantized reference index
        reference_cache_path: Where the reference index is decompressed to
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    provider: EmbeddingsProvider = EmbeddingsProvider.OPENAI
    api_key: str = ""
    model: str = ""
    base_url: str = ""
    db_path: Path = DEFAULT_DB_PATH
    chunk_chars: int = 1200
    chunk_overlap: int = 200
    preview_chars: int = 220
    default_batch_size: int = 16
    default_max_chunks_per_note: int = 60
    timeout_seconds: int = 30
    max_retries: int = 3
    reference_docs_path: Path = DEFAULT_REFERENCE_DOCS_PATH
    reference_cache_path: Path = DEFAULT_REFERENCE_CACHE_PATH

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        """Fill provider-dependent defaults and clamp numeric settings."""
        if not isinstance(data, dict):
            return data
        values = dict(data)

        values["enabled"] = parse_boolean(values.get("enabled"), False)

        raw_provider = str(values.get("provider") or "openai").strip().lower()
        try:
            provider = EmbeddingsProvider(raw_provider)
        except ValueError:
            provider = EmbeddingsProvider.OPENAI
        values["provider"] = provider
        spec = PROVIDER_SPECS[provider]

        values["api_key"] = str(values.get("api_key") or "").strip()
        values["model"] = str(values.get("model") or "").strip() or spec.default_model
        values["base_url"] = normalize_base_url(
            str(values.get("base_url") or "") or spec.default_base_url
        )

        for name, (default, minimum, maximum) in NUMERIC_BOUNDS.items():
            values[name] = parse_bounded_int(values.get(name), default, minimum, maximum)

        for name, default_path in (
            ("db_path", DEFAULT_DB_PATH),
            ("reference_docs_path", DEFAULT_REFERENCE_DOCS_PATH),
            ("reference_cache_path", DEFAULT_REFERENCE_CACHE_PATH),
        ):
            raw_path = str(values.get(name) or "").strip()
            values[name] = Path(raw_path).expanduser().resolve() if raw_path else default_path

        return values

    @field_validator("model", "base_url")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be blank")
        return v

    @property
    def provider_spec(self) -> ProviderSpec:
        return PROVIDER_SPECS[self.provider]

    def not_configured_reason(self) -> str | None:
        """Return why indexing/search cannot run, or None when ready."""
        if not self.enabled:
            return DISABLED_MESSAGE
        if self.provider_spec.requires_api_key and not self.api_key:
            return MISSING_KEY_MESSAGE
        return None

    @property
    def is_configured(self) -> bool:
        return self.not_configured_reason() is None


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
) -> EmbeddingsConfig:
    """Load embeddings configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to the packaged conf/)
        overrides: List of config overrides (e.g., ["chunk_chars=800"])

    Returns:
        Validated configuration object

    Example:
        >>> config = load_config()
        >>> config.provider
        <EmbeddingsProvider.OPENAI: 'openai'>

        >>> config = load_config(overrides=["provider=mistral"])
        >>> config.model
        'mistral-embed'
    """
    config_path = Path(config_path or DEFAULT_CONFIG_DIR).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config directory not found: {config_path}")

    with initialize_config_dir(
        config_dir=str(config_path), version_base=None, job_name="note_index"
    ):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Convert OmegaConf to dict and validate with Pydantic
    config_dict = OmegaConf.to_container(cfg, resolve=True)
    return EmbeddingsConfig.model_validate(config_dict)
