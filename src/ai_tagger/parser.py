"""
Turn a backend's raw text reply into a canonical AnalysisResult.

Backends are asked for JSON but regularly wrap it in markdown fences, return arrays where
strings were requested, or answer in plain prose. Parsing never fails: the worst case is an
all-empty result the user can still edit.
"""

import json
import re
from typing import Any

from loguru import logger

from ai_tagger.models import AnalysisResult, Keyword


MAX_DERIVED_KEYWORDS = 5
MIN_DERIVED_KEYWORD_LENGTH = 4
LOG_PREVIEW_CHARS = 200

_JSON_FENCE = re.compile(r"```json\s*(.*?)\s*```", re.IGNORECASE | re.DOTALL)
_GENERIC_FENCE = re.compile(r"```[\w-]*\s*(.*?)\s*```", re.DOTALL)
_LABELED_LINE = re.compile(
    r"^[\s*_#>\-\"]*"
    r"(title|caption|headline|description|instructions|location|copyright|keywords|tags)"
    r"[\s*_\"]*:[\s*_\"\[]*(.*?)[\s*_\",\]]*$",
    re.IGNORECASE,
)
_PUNCTUATION_LINE = re.compile(r"^[\[\]{}(),\s]*$")
_WORD = re.compile(r"\w+")
_LABEL_FIELDS = {
    "title": "title",
    "caption": "caption",
    "headline": "headline",
    "description": "headline",
    "instructions": "instructions",
    "location": "location",
    "copyright": "copyright",
}

STOP_WORDS = frozenset(
    {
        "about", "after", "also", "been", "before", "being", "come", "each", "from", "have",
        "here", "into", "just", "life", "like", "made", "make", "many", "more", "much", "only",
        "other", "over", "said", "should", "some", "still", "than", "that", "their", "them",
        "then", "there", "these", "they", "think", "this", "through", "time", "very", "were",
        "what", "when", "where", "which", "will", "with", "word", "work", "would", "your",
        "image", "photo", "photograph", "picture", "shows", "showing",
    },
)


def extract_json_text(raw: str) -> str:
    """
    Return the JSON candidate inside a markdown fence, or the trimmed raw text.

    Examples:
        >>> extract_json_text('```json\\n{"title": "X"}\\n```')
        '{"title": "X"}'
        >>> extract_json_text("```\\nnot json\\n```")
        '```\\nnot json\\n```'

    """
    if match := _JSON_FENCE.search(raw):
        return match.group(1).strip()
    if match := _GENERIC_FENCE.search(raw):
        candidate = match.group(1).strip()
        if candidate.startswith("{") and candidate.endswith("}"):
            return candidate
    return raw.strip()


def _decode_object(text: str) -> dict[str, Any] | None:
    """Strictly decode a JSON object, retrying on the outermost brace span."""
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if -1 < start < end and (start, end) != (0, len(text) - 1):
        candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(decoded, dict):
            return decoded
    return None


def field_to_string(value: Any) -> str:  # noqa: ANN401
    """
    Coerce a decoded JSON value into a single string.

    Examples:
        >>> field_to_string(["Golden", "hour", 3])
        'Golden hour'
        >>> field_to_string(None)
        ''

    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return " ".join(item.strip() for item in value if isinstance(item, str) and item.strip())
    if isinstance(value, bool | int | float):
        return str(value)
    return ""


def split_keywords(value: Any) -> list[Keyword]:  # noqa: ANN401
    """
    Decode a keywords field into Keyword objects, preserving order.

    Comma-separated strings are split; list items are taken one keyword each. Hierarchical
    entries stay whole.

    Examples:
        >>> [kw.description for kw in split_keywords("a, b,, c")]
        ['a', 'b', 'c']
        >>> [kw.description for kw in split_keywords(["Nature > Birds", " sky "])]
        ['Nature > Birds', 'sky']

    """
    if isinstance(value, str):
        tokens = value.split(",")
    elif isinstance(value, list):
        tokens = [item for item in value if isinstance(item, str)]
    else:
        return []
    return [Keyword(description=token.strip()) for token in tokens if token.strip()]


def _from_mapping(data: dict[str, Any]) -> AnalysisResult:
    headline = field_to_string(data.get("headline")) or field_to_string(data.get("description"))
    return AnalysisResult(
        title=field_to_string(data.get("title")),
        caption=field_to_string(data.get("caption")),
        headline=headline,
        instructions=field_to_string(data.get("instructions")),
        location=field_to_string(data.get("location")),
        copyright=field_to_string(data.get("copyright")),
        keywords=split_keywords(data.get("keywords")),
    )


def derive_keywords(text: str, limit: int = MAX_DERIVED_KEYWORDS) -> list[Keyword]:
    """
    Guess a few keywords from prose: drop stop words and short tokens, keep the longest.

    Ties keep first-appearance order so the result is deterministic.

    Examples:
        >>> [kw.description for kw in derive_keywords("A heron waits by the misty river.")]
        ['heron', 'waits', 'misty', 'river']

    """
    seen: dict[str, int] = {}
    for word in _WORD.findall(text.lower()):
        if len(word) < MIN_DERIVED_KEYWORD_LENGTH or word in STOP_WORDS or word.isdigit():
            continue
        seen.setdefault(word, len(seen))
    ranked = sorted(seen, key=lambda word: (-len(word), seen[word]))[:limit]
    ranked.sort(key=seen.__getitem__)
    return [Keyword(description=word) for word in ranked]


def _from_text(raw: str) -> AnalysisResult:
    fields = dict.fromkeys(_LABEL_FIELDS.values(), "")
    keywords: list[Keyword] = []
    unmatched: list[str] = []

    for line in (stripped for line in raw.splitlines() if (stripped := line.strip())):
        if line.startswith("```") or _PUNCTUATION_LINE.match(line):
            continue
        match = _LABELED_LINE.match(line)
        if match is None:
            unmatched.append(line)
            continue
        label, value = match.group(1).lower(), match.group(2).strip()
        if label in {"keywords", "tags"}:
            keywords.extend(split_keywords(value.replace('"', "")))
        elif value and not fields[_LABEL_FIELDS[label]]:
            fields[_LABEL_FIELDS[label]] = value

    if not fields["caption"] and unmatched:
        fields["caption"] = unmatched[0]
    if not fields["headline"] and fields["caption"]:
        fields["headline"] = fields["caption"]
    if not keywords:
        keywords = derive_keywords("\n".join([*fields.values(), *unmatched]))

    return AnalysisResult(keywords=keywords, **fields)


def parse_response(raw: Any) -> AnalysisResult:  # noqa: ANN401
    """
    Parse a backend reply into a successful AnalysisResult.

    Args:
        raw: Text payload extracted from the backend envelope. Non-strings are stringified.

    Returns:
        Result with status success. Fields come from the JSON object when one decodes,
        otherwise from line-oriented heuristics over the prose.

    """
    text = raw if isinstance(raw, str) else ("" if raw is None else str(raw))
    if not text.strip():
        return AnalysisResult()

    try:
        if (data := _decode_object(extract_json_text(text))) is not None:
            return _from_mapping(data)
        logger.warning(
            "response_parse_fallback",
            preview=text[:LOG_PREVIEW_CHARS],
            chars=len(text),
        )
        return _from_text(text)
    except Exception as exc:  # noqa: BLE001
        logger.exception("response_parse_failed", error=str(exc))
        return AnalysisResult()
