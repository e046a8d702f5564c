"""Runtime configuration for the answer engine services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_SEARCH_PROVIDERS = ("serper", "brave", "static")


def _split_csv(value: tuple[str, ...] | str, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, tuple):
        return value
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
        return tuple(parts) if parts else default
    return default


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="answerengine_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Search providers, tried in order
    search_providers: tuple[str, ...] | str = ("serper",)
    serper_api_key: str | None = None
    brave_api_key: str | None = None
    search_result_count: int = 10
    media_result_count: int = 4
    search_timeout_seconds: float = 10.0

    # Generation backend (OpenAI-compatible chat completions)
    generator_backend: Literal["openai", "template"] = "openai"
    generator_model: str = "llama-3.1-70b-versatile"
    generator_base_url: str = "https://api.groq.com/openai/v1"
    generator_api_key: str | None = None
    generator_temperature: float = 0.7
    generator_max_tokens: int = 2000
    generator_timeout_seconds: float = 60.0

    # Context budget
    context_max_items: int = 4
    context_max_chars: int = 8000
    document_excerpt_chars: int = 2000

    # Upper bound for each fan-out call
    source_timeout_seconds: float = 15.0

    # Document store
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "answerengine-documents"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Uploads
    allowed_extensions: tuple[str, ...] | str = (".pdf", ".docx", ".txt", ".md")
    max_files: int = 10
    max_upload_size_mb: int = 10  # per file

    usage_queue_size: int = 1000

    # CORS
    cors_allow_origins: tuple[str, ...] = ()
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    # Security
    api_key: str | None = None  # if set, required in X-API-Key header
    default_organization: str = "default"
    use_rate_limiting: bool = True
    rate_limit_requests: int = 60  # per window per client
    rate_limit_window_seconds: int = 60

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def search_providers_tuple(self) -> tuple[str, ...]:
        names = _split_csv(self.search_providers, ("serper",))
        return tuple(name.lower() for name in names)

    @property
    def allowed_extensions_tuple(self) -> tuple[str, ...]:
        return _split_csv(self.allowed_extensions, (".pdf", ".docx", ".txt"))


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
