"""Read camera, GPS and IPTC details from a photo (or its XMP sidecar) with ExifTool."""

from pathlib import Path
from typing import Any

from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger

from ai_tagger.models import MetadataContext


# MetadataContext field -> ExifTool tag names, most specific first
CONTEXT_TAGS: dict[str, tuple[str, ...]] = {
    "gps": ("GPSPosition",),
    "camera_make": ("Make",),
    "camera_model": ("Model",),
    "lens": ("LensModel", "LensID", "Lens"),
    "focal_length": ("FocalLength",),
    "aperture": ("FNumber", "Aperture"),
    "shutter_speed": ("ExposureTime", "ShutterSpeed"),
    "iso": ("ISO",),
    "flash": ("Flash",),
    "captured_at": ("DateTimeOriginal", "CreateDate"),
    "dimensions": ("ImageSize",),
    "cropped_dimensions": ("CroppedImageWidth",),
    "copyright": ("Copyright", "Rights", "CopyrightNotice"),
    "city": ("City",),
    "state_province": ("State", "Province-State"),
    "country": ("Country", "Country-PrimaryLocationName"),
    "sublocation": ("Location", "Sub-location"),
}


def _format_metadata_value(value: Any) -> str:  # noqa: ANN401
    """
    Coerce metadata values (lists, numbers) into a readable string.

    Examples:
        >>> _format_metadata_value(["sky", "", None])
        'sky'
        >>> _format_metadata_value(200)
        '200'

    """
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(v) for v in value if v is not None and str(v).strip())
    return str(value)


def _metadata_targets(image_path: Path) -> list[str]:
    """Return the image and, when present, its XMP sidecar."""
    targets: list[str] = []
    xmp_path = image_path.with_suffix(".xmp")
    if image_path.exists():
        targets.append(str(image_path))
    if xmp_path.exists() and xmp_path != image_path:
        targets.append(str(xmp_path))
    return targets


def _short_tag_values(blocks: list[dict[str, Any]]) -> dict[str, str]:
    """Index tag values by name without their group prefix; earlier files win."""
    values: dict[str, str] = {}
    for block in blocks:
        for key, value in block.items():
            short = key.rsplit(":", 1)[-1]
            if short in values or value in (None, ""):
                continue
            if formatted := _format_metadata_value(value):
                values[short] = formatted
    return values


def context_from_tags(blocks: list[dict[str, Any]]) -> MetadataContext:
    """
    Build a MetadataContext from ``ExifToolHelper.get_tags`` output.

    Examples:
        >>> context_from_tags([{"EXIF:Make": "Canon", "EXIF:ISO": 400}]).iso
        '400'

    """
    values = _short_tag_values(blocks)
    fields: dict[str, str] = {}
    for field, tags in CONTEXT_TAGS.items():
        if found := next((values[tag] for tag in tags if tag in values), None):
            fields[field] = found

    if "cropped_dimensions" in fields and "CroppedImageHeight" in values:
        fields["cropped_dimensions"] += f"x{values['CroppedImageHeight']}"
    return MetadataContext(**fields)


def read_metadata_context(image_path: Path) -> MetadataContext | None:
    """
    Read the advisory metadata context for ``image_path``.

    Returns:
        The context, or None when nothing useful was found or ExifTool failed.

    """
    targets = _metadata_targets(image_path)
    if not targets:
        return None

    tags = sorted({tag for names in CONTEXT_TAGS.values() for tag in names})
    tags.append("CroppedImageHeight")
    try:
        with ExifToolHelper() as et:  # type: ignore[no-untyped-call]
            blocks = et.get_tags(files=targets, tags=tags)
    except (ValueError, TypeError, OSError, ExifToolExecuteError) as e:
        logger.exception("failed_to_read_metadata_context", error=str(e))
        return None

    context = context_from_tags(blocks)
    if context.is_empty():
        logger.debug("metadata_context_empty")
        return None

    logger.debug(
        "metadata_context_read",
        fields=sorted(k for k, v in context.model_dump().items() if v),
    )
    return context
