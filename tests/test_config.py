"""Tests for preferences defaults, validation and persistence."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ai_tagger.config import (
    Preferences,
    load_preferences,
    resolve_concurrency_budget,
    save_preferences,
)
from ai_tagger.errors import ConfigurationError


def test_defaults_cover_every_provider() -> None:
    preferences = Preferences()

    assert preferences.provider == "gemini"
    assert preferences.hierarchical_keywords is True
    assert preferences.keyword_separator == " > "
    assert preferences.include_metadata is False
    assert set(preferences.providers) == {"gemini", "ollama", "openai"}
    assert preferences.provider_config().api_key_name == "GEMINI_API_KEY"
    assert preferences.provider_config("ollama").timeout == pytest.approx(300.0)


def test_partial_provider_settings_keep_the_other_defaults() -> None:
    preferences = Preferences.model_validate(
        {"providers": {"ollama": {"base_url": "http://nas:11434", "model": "llava:13b"}}},
    )

    assert preferences.provider_config("ollama").model == "llava:13b"
    assert preferences.provider_config("gemini").model
    assert preferences.provider_config("openai").pacing_delay == pytest.approx(2.0)


def test_empty_separator_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Preferences(keyword_separator="")


def test_pacing_override_beats_provider_default() -> None:
    assert Preferences(provider="openai").effective_pacing() == pytest.approx(2.0)
    assert Preferences(provider="openai", pacing_delay=0.5).effective_pacing() == pytest.approx(0.5)


def test_concurrency_budget_is_bounded() -> None:
    assert resolve_concurrency_budget(1) == 1
    assert resolve_concurrency_budget(0) == 1
    assert 1 <= resolve_concurrency_budget(4) <= 4


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_preferences(tmp_path / "preferences.json") == Preferences()


def test_preferences_survive_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "preferences.json"
    preferences = Preferences(provider="ollama", language="Japanese", max_concurrency=2)

    save_preferences(preferences, path)

    assert json.loads(path.read_text(encoding="utf-8"))["language"] == "Japanese"
    assert load_preferences(path) == preferences


@pytest.mark.parametrize("content", ["{not json", '{"provider": "lmstudio"}'])
def test_unusable_file_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "preferences.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Could not load preferences"):
        load_preferences(path)
