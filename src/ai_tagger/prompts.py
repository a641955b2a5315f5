"""Assemble the natural-language instruction sent to a vision backend."""

from pathlib import Path

from loguru import logger

from ai_tagger.config import DEFAULT_LANGUAGE, Preferences
from ai_tagger.errors import PromptError
from ai_tagger.models import MetadataContext
from ai_tagger.presets import get_preset


HIERARCHY_EXAMPLES = (
    ("Nature", "Wildlife", "Birds", "Eagles"),
    ("Sports", "Team Sports", "Football"),
    ("Photography", "Portrait Photography", "Studio"),
)
MIN_HIERARCHICAL_KEYWORDS = 8
MAX_HIERARCHICAL_KEYWORDS = 12


def _chains(separator: str, limit: int | None = None) -> list[str]:
    return [separator.join(chain[:limit]) for chain in HIERARCHY_EXAMPLES]


def default_prompt(*, hierarchical: bool, separator: str) -> str:
    """
    Return the built-in analysis prompt.

    The keyword line and JSON example follow the keyword mode so the backend sees a
    consistent request; the detailed hierarchy rules are appended by ``build_prompt``.
    """
    if hierarchical:
        keyword_instruction = (
            "4. A list of relevant hierarchical keywords organized from broad to specific "
            f"categories using '{separator}' separator (e.g., {', '.join(_chains(separator, 3))})"
        )
        keyword_example = ", ".join(_chains(separator, 3))
    else:
        keyword_instruction = "4. A list of relevant keywords (comma-separated)"
        keyword_example = "keyword1, keyword2, keyword3"

    return (
        "Please analyze this photograph and provide:\n"
        "1. A short title (2-5 words)\n"
        "2. A brief caption (1-2 sentences)\n"
        "3. A detailed headline/description (2-3 sentences)\n"
        f"{keyword_instruction}\n"
        "5. Special instructions for photo editing or usage (if applicable)\n"
        "6. Copyright or attribution information (if visible)\n"
        "7. Location information (if identifiable landmarks are present)\n"
        "\n"
        "Please format your response as JSON with the following structure:\n"
        "{\n"
        '  "title": "short descriptive title",\n'
        '  "caption": "brief caption here",\n'
        '  "headline": "detailed headline/description here",\n'
        f'  "keywords": "{keyword_example}",\n'
        '  "instructions": "editing suggestions or usage notes",\n'
        '  "copyright": "copyright or attribution info if visible",\n'
        '  "location": "location name if identifiable landmarks present"\n'
        "}\n"
        "\n"
        "IMPORTANT: The keywords field must be a comma-separated string, not an array."
    )


def load_prompt_from_file(path: Path) -> str:
    """
    Read a custom prompt from a text file.

    Raises:
        PromptError: the file is missing, unreadable or blank.

    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("prompt_file_read_failed", file=str(path), error=str(exc))
        msg = f"Could not read prompt file {path}: {exc}"
        raise PromptError(msg) from exc

    if not (stripped := content.strip()):
        msg = f"Prompt file {path} is empty"
        raise PromptError(msg)
    logger.debug("prompt_file_loaded", file=str(path), chars=len(stripped))
    return stripped


def resolve_base_prompt(preferences: Preferences) -> str:
    """Pick the default, preset or custom base prompt according to ``preferences``."""
    if preferences.prompt_source == "custom" and preferences.custom_prompt.strip():
        return preferences.custom_prompt.strip()

    if preferences.prompt_source == "preset" and preferences.preset_name:
        if preset := get_preset(preferences.preset_name):
            return preset.prompt
        logger.warning("unknown_preset_using_default", preset=preferences.preset_name)

    return default_prompt(
        hierarchical=preferences.hierarchical_keywords,
        separator=preferences.keyword_separator,
    )


def language_instruction(language: str) -> str:
    """
    Return the instruction forcing non-default output languages, or an empty string.

    Examples:
        >>> language_instruction("English")
        ''

    """
    language = language.strip()
    if not language or language.casefold() == DEFAULT_LANGUAGE.casefold():
        return ""
    return (
        f"IMPORTANT: Please respond in {language} language. All text fields (title, caption, "
        f"headline, keywords, instructions, location) must be written in {language}.\n\n"
    )


def hierarchical_instruction(separator: str) -> str:
    """Return the block asking for broad-to-specific keyword chains."""
    examples = ", ".join(f'"{chain}"' for chain in _chains(separator))
    return (
        "\n\nHIERARCHICAL KEYWORDS: For keywords, use hierarchical format with "
        f'"{separator}" separator to organize from broad to specific categories:\n'
        "- Start with broad categories (e.g., Nature, Sports, Architecture, Photography)\n"
        "- Progress to specific subcategories (e.g., Wildlife, Team Sports, Modern Architecture)\n"
        "- End with detailed descriptors (e.g., Birds, Football, Glass Building)\n"
        f"- Examples: {examples}\n"
        f"- Include {MIN_HIERARCHICAL_KEYWORDS}-{MAX_HIERARCHICAL_KEYWORDS} "
        "hierarchical keywords total\n"
        f'- Use the separator "{separator}" between hierarchy levels\n'
        "- Separate different keyword hierarchies with commas"
    )


def _join_present(*values: str | None, sep: str = ", ") -> str:
    return sep.join(value for value in values if value)


def metadata_lines(metadata: MetadataContext) -> list[str]:
    """
    Render the advisory context lines, skipping absent fields.

    Examples:
        >>> metadata_lines(MetadataContext(gps="35 deg N, 135 deg E", iso="200"))
        ['GPS Location: 35 deg N, 135 deg E', 'Camera settings: ISO 200']

    """
    lines: list[str] = []
    if metadata.gps:
        lines.append(f"GPS Location: {metadata.gps}")
    if camera := _join_present(metadata.camera_make, metadata.camera_model, sep=" "):
        if metadata.lens:
            camera += f" with {metadata.lens}"
        lines.append(f"Camera: {camera}")
    elif metadata.lens:
        lines.append(f"Lens: {metadata.lens}")
    if settings := _join_present(
        metadata.focal_length,
        metadata.aperture,
        metadata.shutter_speed,
        f"ISO {metadata.iso}" if metadata.iso else None,
        f"Flash: {metadata.flash}" if metadata.flash else None,
    ):
        lines.append(f"Camera settings: {settings}")
    if metadata.captured_at:
        lines.append(f"Captured: {metadata.captured_at}")
    if metadata.dimensions:
        lines.append(f"Image size: {metadata.dimensions}")
    if metadata.cropped_dimensions:
        lines.append(f"Cropped size: {metadata.cropped_dimensions}")
    if metadata.copyright:
        lines.append(f"Copyright: {metadata.copyright}")
    if location := _join_present(
        metadata.sublocation,
        metadata.city,
        metadata.state_province,
        metadata.country,
    ):
        lines.append(f"Location metadata: {location}")
    return lines


def build_prompt(
    base_prompt: str,
    preferences: Preferences,
    metadata: MetadataContext | None = None,
) -> str:
    """
    Assemble the final prompt text.

    Args:
        base_prompt: Default, preset or custom prompt text, already resolved by the caller
        preferences: Supplies the response language, keyword mode and separator
        metadata: Optional photo metadata; only passed when the privacy setting allows it

    Returns:
        Prompt text. Identical inputs always produce identical output.

    """
    prompt = language_instruction(preferences.language) + base_prompt.strip()

    if preferences.hierarchical_keywords:
        prompt += hierarchical_instruction(preferences.keyword_separator)

    if metadata is not None and (lines := metadata_lines(metadata)):
        prompt += (
            "\n\n--- Additional context from photo metadata ---\n"
            + "\n".join(lines)
            + "\n--- End of additional context ---\n"
            "This context is advisory: use it only where it helps describe the photo."
        )

    return prompt
