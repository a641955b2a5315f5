"""Tests for prompt assembly, presets and prompt files."""

from pathlib import Path

import pytest

from ai_tagger.config import Preferences
from ai_tagger.errors import PromptError
from ai_tagger.models import MetadataContext
from ai_tagger.presets import get_preset, get_preset_names
from ai_tagger.prompts import (
    build_prompt,
    default_prompt,
    load_prompt_from_file,
    resolve_base_prompt,
)


BASE = "Describe the photograph."


def test_spanish_language_instruction_is_prepended() -> None:
    prompt = build_prompt(BASE, Preferences(language="Spanish"))
    assert prompt.startswith("IMPORTANT: Please respond in Spanish language.")
    assert "must be written in Spanish" in prompt


def test_default_language_adds_no_instruction() -> None:
    prompt = build_prompt(BASE, Preferences(language="English"))
    assert "respond in" not in prompt
    assert prompt.startswith(BASE)


def test_hierarchical_block_uses_configured_separator() -> None:
    prompt = build_prompt(BASE, Preferences(hierarchical_keywords=True, keyword_separator=" / "))
    assert "HIERARCHICAL KEYWORDS" in prompt
    assert '"Nature / Wildlife / Birds / Eagles"' in prompt
    assert "8-12 hierarchical keywords" in prompt


def test_flat_mode_omits_hierarchical_block() -> None:
    prompt = build_prompt(BASE, Preferences(hierarchical_keywords=False))
    assert "HIERARCHICAL" not in prompt


def test_metadata_section_lists_only_present_fields() -> None:
    """Absent metadata fields produce no line; the block is delimited and advisory."""
    metadata = MetadataContext(
        gps="35 deg N, 135 deg E",
        camera_make="Canon",
        camera_model="EOS R5",
        lens="RF 24-70mm",
        aperture="f/4.0",
        iso="400",
        copyright="Jane Doe",
    )
    prompt = build_prompt(BASE, Preferences(hierarchical_keywords=False), metadata)

    assert "--- Additional context from photo metadata ---" in prompt
    assert "GPS Location: 35 deg N, 135 deg E" in prompt
    assert "Camera: Canon EOS R5 with RF 24-70mm" in prompt
    assert "Camera settings: f/4.0, ISO 400" in prompt
    assert "Copyright: Jane Doe" in prompt
    assert "Captured:" not in prompt
    assert "Image size:" not in prompt


def test_missing_or_empty_metadata_adds_nothing() -> None:
    preferences = Preferences(hierarchical_keywords=False)
    assert build_prompt(BASE, preferences) == BASE
    assert build_prompt(BASE, preferences, MetadataContext()) == BASE


def test_build_prompt_is_deterministic() -> None:
    preferences = Preferences(language="German")
    metadata = MetadataContext(city="Berlin", country="Germany")
    assert build_prompt(BASE, preferences, metadata) == build_prompt(BASE, preferences, metadata)


def test_default_prompt_follows_keyword_mode() -> None:
    hierarchical = default_prompt(hierarchical=True, separator=" > ")
    flat = default_prompt(hierarchical=False, separator=" > ")

    assert "Sports > Team Sports > Football" in hierarchical
    assert "comma-separated" in flat
    assert "Sports > Team Sports" not in flat


def test_resolve_base_prompt_picks_source() -> None:
    """Custom text, then presets, then the default prompt."""
    custom = Preferences(prompt_source="custom", custom_prompt="  Only keywords please.  ")
    assert resolve_base_prompt(custom) == "Only keywords please."

    preset = Preferences(prompt_source="preset", preset_name="food photography")
    found = get_preset("Food Photography")
    assert found is not None
    assert resolve_base_prompt(preset) == found.prompt

    unknown = Preferences(prompt_source="preset", preset_name="Underwater")
    assert resolve_base_prompt(unknown) == default_prompt(hierarchical=True, separator=" > ")

    blank_custom = Preferences(prompt_source="custom", custom_prompt="   ")
    assert resolve_base_prompt(blank_custom) == default_prompt(hierarchical=True, separator=" > ")


def test_presets_have_unique_names() -> None:
    names = get_preset_names()
    assert "Sports Photography" in names
    assert len(names) == len(set(names))


def test_load_prompt_from_file(tmp_path: Path) -> None:
    prompt_file = tmp_path / "prompt.txt"
    prompt_file.write_text("\n  Tag this photo for a stock agency.  \n", encoding="utf-8")
    assert load_prompt_from_file(prompt_file) == "Tag this photo for a stock agency."


def test_load_prompt_from_file_rejects_missing_and_empty(tmp_path: Path) -> None:
    with pytest.raises(PromptError):
        load_prompt_from_file(tmp_path / "missing.txt")

    empty = tmp_path / "empty.txt"
    empty.write_text("   \n", encoding="utf-8")
    with pytest.raises(PromptError, match="empty"):
        load_prompt_from_file(empty)
