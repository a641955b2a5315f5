"""Canned prompt presets for common photography genres."""

from pydantic import BaseModel, ConfigDict


class PromptPreset(BaseModel):
    """A named base prompt selectable instead of the default one."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    prompt: str


_RESPONSE_FORMAT = (
    "Please format your response as JSON with the following structure:\n"
    "{{\n"
    '  "title": "short descriptive title",\n'
    '  "caption": "brief caption here",\n'
    '  "headline": "detailed headline/description here",\n'
    '  "keywords": "{keywords}",\n'
    '  "instructions": "editing suggestions or usage notes",\n'
    '  "location": "{location}"\n'
    "}}"
)


def _preset_prompt(subject: str, focus: list[str], keywords: str, location: str) -> str:
    focus_lines = "\n".join(f"- {item}" for item in focus)
    return (
        f"Please analyze this {subject} and provide:\n"
        "1. A short title (2-5 words)\n"
        "2. A brief caption (1-2 sentences)\n"
        "3. A detailed headline/description (2-3 sentences)\n"
        "4. A list of relevant keywords organized from broad to specific categories\n"
        "5. Special instructions for photo editing or usage\n"
        "6. Location information (if identifiable)\n"
        "\n"
        f"Focus on:\n{focus_lines}\n"
        "\n" + _RESPONSE_FORMAT.format(keywords=keywords, location=location)
    )


PRESETS: tuple[PromptPreset, ...] = (
    PromptPreset(
        name="Sports Photography",
        description=(
            "Comprehensive sports analysis including action, players, equipment, and venues"
        ),
        prompt=_preset_prompt(
            "sports photograph",
            [
                "Sport identification (football, basketball, soccer, tennis, etc.)",
                "Action and movement (running, jumping, throwing, scoring)",
                "Player details (jersey numbers if visible, team colors, positions)",
                "Equipment, venue characteristics and crowd atmosphere",
            ],
            "Sports > Team Sports > Football, Sports > Actions > Running",
            "venue name if identifiable",
        ),
    ),
    PromptPreset(
        name="Nature & Wildlife",
        description="Focused on species identification, behavior, and environmental context",
        prompt=_preset_prompt(
            "nature/wildlife photograph",
            [
                "Accurate species identification when possible",
                "Behavioral descriptions (feeding, mating, hunting, etc.)",
                "Environmental context (season, weather, habitat type)",
                "Technical photography aspects (lighting, composition)",
            ],
            "Nature > Wildlife > Birds > Eagles, Nature > Habitats > Forest",
            "location name if identifiable",
        ),
    ),
    PromptPreset(
        name="Architecture",
        description="Emphasizes architectural styles, materials, and design elements",
        prompt=_preset_prompt(
            "architectural photograph",
            [
                "Architectural style and period",
                "Building materials and structural elements",
                "Design details, geometry and perspective",
                "Building function and surroundings",
            ],
            "Architecture > Modern Architecture > Glass Building, Architecture > Materials > Steel",
            "building or landmark name if identifiable",
        ),
    ),
    PromptPreset(
        name="Portrait & People",
        description="Captures mood, lighting, and composition without identifying individuals",
        prompt=_preset_prompt(
            "portrait/people photograph",
            [
                "Mood, expression and body language (never identify individuals)",
                "Lighting setup and quality",
                "Composition, framing and background",
                "Clothing, styling and setting",
            ],
            "People > Portrait > Outdoor, Photography > Portrait Photography > Natural Light",
            "setting if identifiable",
        ),
    ),
    PromptPreset(
        name="Travel & Landscape",
        description="Focuses on geographical features, cultural elements, and travel aspects",
        prompt=_preset_prompt(
            "travel/landscape photograph",
            [
                "Geographical features (mountains, coastline, rivers, deserts)",
                "Cultural and historical elements",
                "Weather, season and time of day",
                "Travel appeal and sense of place",
            ],
            "Travel > Europe > Italy, Landscape > Mountains > Alps",
            "location name if identifiable",
        ),
    ),
    PromptPreset(
        name="Food Photography",
        description="Cuisine identification, presentation style, and culinary contexts",
        prompt=_preset_prompt(
            "food photograph",
            [
                "Dish and cuisine identification",
                "Ingredients, plating and presentation style",
                "Props, table setting and styling",
                "Lighting and color palette",
            ],
            "Food > Cuisine > Italian, Food > Dishes > Pasta",
            "restaurant or region if identifiable",
        ),
    ),
    PromptPreset(
        name="Street Photography",
        description="Urban scenes, human activity, and documentary-style capture",
        prompt=_preset_prompt(
            "street photograph",
            [
                "Urban environment and architecture",
                "Human activity and interactions (never identify individuals)",
                "Light, shadow and decisive moments",
                "Mood and storytelling",
            ],
            "Street > Urban Life > Commuters, Photography > Street Photography > Candid",
            "city or neighborhood if identifiable",
        ),
    ),
    PromptPreset(
        name="Stock Photography",
        description="Commercial viability, broad market appeal, and versatile business imagery",
        prompt=_preset_prompt(
            "stock photograph",
            [
                "Concepts and themes a buyer would search for",
                "Commercial use cases",
                "Copy space and composition",
                "Mood, demographics and lifestyle cues",
            ],
            "Stock Photography > Commercial > Business, Concepts > Lifestyle > Success",
            "generic location type if identifiable",
        ),
    ),
)


def get_presets() -> list[PromptPreset]:
    """Return all presets in display order."""
    return list(PRESETS)


def get_preset_names() -> list[str]:
    """Return preset names for selection lists."""
    return [preset.name for preset in PRESETS]


def get_preset(name: str) -> PromptPreset | None:
    """Return the preset called ``name`` (case-insensitive), or None."""
    wanted = name.casefold()
    return next((preset for preset in PRESETS if preset.name.casefold() == wanted), None)
