"""Session configuration: environment defaults, per-backend settings and persisted preferences."""

import os
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ai_tagger.errors import ConfigurationError
from ai_tagger.models import DEFAULT_KEYWORD_SEPARATOR, ProviderConfig, ProviderId


PromptSource = Literal["default", "preset", "custom"]

# Configuration defaults
DEFAULT_GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL",
    "https://generativelanguage.googleapis.com/v1beta",
)
DEFAULT_GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
DEFAULT_OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
DEFAULT_OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llava:latest")
DEFAULT_OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
DEFAULT_OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
DEFAULT_MAX_RETRIES = int(os.getenv("MAX_RETRIES", "2"))
DEFAULT_MAX_CONCURRENCY = int(os.getenv("MAX_CONCURRENCY", "4"))
DEFAULT_LANGUAGE = "English"
DEFAULT_PREFERENCES_PATH = Path(
    os.getenv(
        "AI_TAGGER_PREFERENCES",
        str(Path.home() / ".config" / "ai-tagger" / "preferences.json"),
    ),
)
DEFAULT_SECRETS_PATH = DEFAULT_PREFERENCES_PATH.with_name("secrets.json")

API_KEY_NAMES: dict[ProviderId, str] = {
    "gemini": "GEMINI_API_KEY",
    "ollama": "OLLAMA_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def default_provider_configs() -> dict[ProviderId, ProviderConfig]:
    """Return the built-in settings for every backend."""
    return {
        "gemini": ProviderConfig(
            base_url=DEFAULT_GEMINI_BASE_URL,
            model=DEFAULT_GEMINI_MODEL,
            api_key_name=API_KEY_NAMES["gemini"],
            timeout=60.0,
            max_output_tokens=1024,
            temperature=0.4,
            max_retries=DEFAULT_MAX_RETRIES,
            backoff_cap=30.0,
            pacing_delay=1.0,
        ),
        "ollama": ProviderConfig(
            base_url=DEFAULT_OLLAMA_BASE_URL,
            model=DEFAULT_OLLAMA_MODEL,
            api_key_name=API_KEY_NAMES["ollama"],
            timeout=300.0,
            max_output_tokens=1000,
            temperature=0.7,
            max_retries=DEFAULT_MAX_RETRIES,
            backoff_cap=10.0,
            pacing_delay=1.0,
        ),
        "openai": ProviderConfig(
            base_url=DEFAULT_OPENAI_BASE_URL,
            model=DEFAULT_OPENAI_MODEL,
            api_key_name=API_KEY_NAMES["openai"],
            timeout=30.0,
            max_output_tokens=1000,
            temperature=0.7,
            max_retries=DEFAULT_MAX_RETRIES,
            backoff_cap=60.0,
            pacing_delay=2.0,
        ),
    }


class Preferences(BaseModel):
    """
    User preferences passed explicitly to the prompt builder, providers and scheduler.

    Only the selected provider's ``ProviderConfig`` is active at a time.
    """

    model_config = {"extra": "ignore"}

    provider: ProviderId = "gemini"
    language: str = DEFAULT_LANGUAGE
    hierarchical_keywords: bool = True
    keyword_separator: str = DEFAULT_KEYWORD_SEPARATOR
    prompt_source: PromptSource = "default"
    preset_name: str | None = None
    custom_prompt: str = ""
    include_metadata: bool = False
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    pacing_delay: float | None = Field(default=None, ge=0)
    providers: dict[ProviderId, ProviderConfig] = Field(default_factory=default_provider_configs)

    @field_validator("providers", mode="after")
    @classmethod
    def _fill_missing_providers(
        cls,
        value: dict[ProviderId, ProviderConfig],
    ) -> dict[ProviderId, ProviderConfig]:
        return {**default_provider_configs(), **value}

    @field_validator("keyword_separator")
    @classmethod
    def _non_empty_separator(cls, value: str) -> str:
        if not value:
            msg = "keyword separator cannot be empty"
            raise ValueError(msg)
        return value

    def provider_config(self, provider_id: ProviderId | None = None) -> ProviderConfig:
        """Settings for ``provider_id`` (the selected provider when omitted)."""
        return self.providers[provider_id or self.provider]

    def effective_pacing(self, provider_id: ProviderId | None = None) -> float:
        """Pacing override when set, otherwise the backend's own default."""
        if self.pacing_delay is not None:
            return self.pacing_delay
        return self.provider_config(provider_id).pacing_delay


def resolve_concurrency_budget(user_max: int = DEFAULT_MAX_CONCURRENCY) -> int:
    """
    Bound the number of in-flight analyses by available parallelism and the user's cap.

    Examples:
        >>> resolve_concurrency_budget(1)
        1

    """
    available = os.cpu_count() or 1
    return max(1, min(available, user_max))


def load_preferences(path: Path = DEFAULT_PREFERENCES_PATH) -> Preferences:
    """
    Load persisted preferences, falling back to defaults when no file exists.

    Raises:
        ConfigurationError: the file exists but is unreadable or invalid.

    """
    if not path.exists():
        logger.debug("preferences_file_missing_using_defaults", path=str(path))
        return Preferences()
    try:
        preferences = Preferences.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        logger.error("preferences_load_failed", path=str(path), error=str(exc))
        msg = f"Could not load preferences from {path}: {exc}"
        raise ConfigurationError(msg) from exc
    logger.debug("preferences_loaded", path=str(path), provider=preferences.provider)
    return preferences


def save_preferences(preferences: Preferences, path: Path = DEFAULT_PREFERENCES_PATH) -> None:
    """Persist preferences as JSON, creating the parent folder when needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(preferences.model_dump_json(indent=2), encoding="utf-8")
    logger.debug("preferences_saved", path=str(path))
