#!/usr/bin/env python3
"""
AI Tagger: CLI app to describe photos and suggest keywords with AI vision backends.

Photos are sent as stored (no decoding or resizing) to Google Gemini, a local Ollama server
or OpenAI. Results (title, caption, headline, keywords, ...) are printed as JSON or written
to a file for a catalog writer to apply.

Requirements:
 - An API key for Gemini or OpenAI (``ai-tagger key set``), or a running Ollama server.
 - Exiftool installed and available in PATH when --include-metadata is used.

"""
# ruff: noqa: PLR0913

import asyncio
import contextlib
import getpass
import json
import mimetypes
import sys
from itertools import chain
from pathlib import Path
from typing import Annotated, Any

from cyclopts import App, Parameter, validators
from loguru import logger

from ai_tagger import __version__
from ai_tagger.batch import BatchJob
from ai_tagger.config import (
    DEFAULT_PREFERENCES_PATH,
    DEFAULT_SECRETS_PATH,
    Preferences,
    load_preferences,
    save_preferences,
)
from ai_tagger.errors import AiTaggerError
from ai_tagger.factory import ProviderFactory
from ai_tagger.logging_setup import LogLevel, setup_logging
from ai_tagger.metadata import read_metadata_context
from ai_tagger.models import AnalysisRequest, AnalysisResult, ProviderId
from ai_tagger.presets import get_preset
from ai_tagger.prompts import load_prompt_from_file
from ai_tagger.secret_store import EnvironmentSecretStore, FileSecretStore, SecretStore


DEFAULT_EXTENSIONS = "jpg,jpeg,png,webp,heic"
MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

# Cyclopts app
app = App(
    name="ai-tagger",
    version=__version__,
)
key_app = App(name="key", help="Manage stored API keys")
app.command(key_app)


def _mime_type(path: Path) -> str:
    """
    Guess the image MIME type from the file extension.

    Examples:
        >>> _mime_type(Path("IMG_0001.PNG"))
        'image/png'
        >>> _mime_type(Path("logo.svg"))
        'image/svg+xml'

    """
    suffix = path.suffix.lower()
    if suffix in MIME_TYPES:
        return MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed and guessed.startswith("image/"):
        return guessed
    logger.warning("unknown_image_type", file=str(path), fallback="image/jpeg")
    return "image/jpeg"


def _parse_extensions(image_extensions: str) -> set[str]:
    """
    Normalize comma-separated extensions into a lowercase set like {".jpg", ".png"}.

    Examples:
        >>> sorted(_parse_extensions("jpg, .png ,JPEG"))
        ['.jpeg', '.jpg', '.png']

    """
    return {
        f".{ext.strip().lstrip('.').lower()}"
        for ext in image_extensions.split(",")
        if ext.strip().lstrip(".")
    }


def _resolve_image_files(
    inputs: list[Path],
    ext_set: set[str],
    *,
    recursive: bool,
) -> list[Path]:
    """
    Resolve provided inputs into a list of files.

    - Directories are expanded by extension, case-insensitively (honoring --recursive)
    - Explicit files are accepted as-is (extension filter not applied)
    - Order is preserved and duplicates removed
    """
    pattern = "**/*" if recursive else "*"

    files_from_dirs: list[Path] = []
    files_explicit: list[Path] = []

    for path in inputs:
        path_resolved = path
        with contextlib.suppress(OSError, RuntimeError):
            path_resolved = path.resolve()
        if path_resolved.is_dir():
            files_from_dirs.extend(
                sorted(
                    candidate
                    for candidate in path_resolved.glob(pattern)
                    if candidate.is_file() and candidate.suffix.lower() in ext_set
                ),
            )
        elif path_resolved.is_file():
            files_explicit.append(path_resolved)
        else:
            logger.warning("input_not_file_or_dir", path=str(path))

    combined: list[Path] = []
    seen = set()
    for f in chain(files_explicit, files_from_dirs):
        key = str(f.resolve()) if f.exists() else str(f)
        if key not in seen:
            combined.append(f)
            seen.add(key)

    return combined


def _resolve_image_batch(
    inputs: list[Path] | None,
    image_extensions: str,
    *,
    recursive: bool,
) -> list[Path]:
    ext_set = _parse_extensions(image_extensions)
    if not ext_set:
        logger.error("no_valid_extensions_provided", raw_input=image_extensions)
        raise SystemExit(1)
    logger.debug("parsed_extensions", extensions=sorted(ext_set))

    if not inputs:
        logger.error(
            "no_inputs_provided",
            hint=("Pass one or more --input/-i paths (files or directories)"),
        )
        raise SystemExit(1)

    image_files = _resolve_image_files(inputs, ext_set, recursive=recursive)
    if not image_files:
        logger.error(
            "no_image_files_found",
            inputs=[str(p) for p in inputs],
            recursive=recursive,
            extensions=sorted(ext_set),
        )
        raise SystemExit(1)

    logger.info("image_files_discovered", count=len(image_files))
    return image_files


def _apply_overrides(
    preferences: Preferences,
    *,
    provider: ProviderId | None = None,
    model: str | None = None,
    url: str | None = None,
    retries: int | None = None,
    **updates: Any,  # noqa: ANN401
) -> Preferences:
    """
    Return preferences with command-line choices layered on top.

    ``model``, ``url`` and ``retries`` apply to the selected provider's config; any other
    non-None keyword replaces the matching Preferences field.
    """
    changes = {name: value for name, value in updates.items() if value is not None}
    if provider is not None:
        changes["provider"] = provider
    updated = preferences.model_copy(update=changes)

    config_changes: dict[str, Any] = {}
    if model:
        config_changes["model"] = model
    if url:
        config_changes["base_url"] = url
    if retries is not None:
        config_changes["max_retries"] = max(0, retries)
    if config_changes:
        selected = updated.provider
        providers = dict(updated.providers)
        providers[selected] = providers[selected].model_copy(update=config_changes)
        updated = updated.model_copy(update={"providers": providers})
    return updated


def _secrets() -> SecretStore:
    return EnvironmentSecretStore(FileSecretStore(DEFAULT_SECRETS_PATH))


def _create_factory(preferences: Preferences) -> ProviderFactory:
    factory = ProviderFactory(preferences, _secrets())
    active = factory.get_active()
    logger.info(
        "provider_config_resolved",
        provider=active.provider_id,
        url=active.config.base_url,
        model=active.config.model,
        api_key_present=active.has_key(),
    )
    return factory


def _load_preferences_or_exit() -> Preferences:
    try:
        return load_preferences(DEFAULT_PREFERENCES_PATH)
    except AiTaggerError as exc:
        logger.error("preferences_unusable", error=str(exc))
        raise SystemExit(1) from exc


def _prompt_overrides(preset: str | None, prompt_file: Path | None) -> dict[str, Any]:
    """Translate --preset/--prompt-file into Preferences fields."""
    if prompt_file is not None:
        try:
            custom = load_prompt_from_file(prompt_file)
        except AiTaggerError as exc:
            logger.error("prompt_file_unusable", error=str(exc))
            raise SystemExit(1) from exc
        return {"prompt_source": "custom", "custom_prompt": custom}

    if preset is not None:
        found = get_preset(preset)
        if found is None:
            logger.error("unknown_preset", preset=preset)
            raise SystemExit(1)
        return {"prompt_source": "preset", "preset_name": found.name}

    return {}


def _build_request(factory: ProviderFactory, image_file: Path) -> AnalysisRequest:
    """Read one photo (and optionally its metadata) into an analysis request."""
    try:
        image_bytes = image_file.read_bytes()
    except OSError as exc:
        # An empty payload is reported back as invalid image data for this photo
        logger.error("image_read_failed", file=str(image_file), error=str(exc))
        image_bytes = b""

    metadata = None
    if factory.preferences.include_metadata:
        metadata = read_metadata_context(image_file)

    return factory.make_request(image_file.name, image_bytes, metadata, _mime_type(image_file))


def _log_progress(job: BatchJob, index: int, result: AnalysisResult) -> None:  # noqa: ARG001
    logger.info(
        "batch_progress",
        completed=job.completed,
        remaining=job.remaining,
        failed=job.failed,
        elapsed=round(job.elapsed_wall, 1),
    )


async def _analyze_files(
    factory: ProviderFactory,
    image_files: list[Path],
) -> dict[Path, AnalysisResult]:
    requests = [_build_request(factory, image_file) for image_file in image_files]
    results: dict[Path, AnalysisResult] = {}
    async for index, result in factory.analyze_batch(requests, on_progress=_log_progress):
        results[image_files[index]] = result
    return results


def _result_record(image_file: Path, result: AnalysisResult) -> dict[str, Any]:
    record = {"file": str(image_file), **result.model_dump(mode="json")}
    if result.error_kind is not None:
        record["error_kind"] = str(result.error_kind)
    return record


def _write_results(records: list[dict[str, Any]], output: Path | None) -> None:
    payload = json.dumps(records, indent=2, ensure_ascii=False)
    if output is None:
        sys.stdout.write(payload + "\n")
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(payload + "\n", encoding="utf-8")
    logger.info("results_written", file=str(output), count=len(records))


@app.command
def analyze(
    inputs: Annotated[
        list[Path] | None,
        Parameter(
            name=("--input", "-i"),
            validator=validators.Path(exists=True),
            help="One or more paths: files and/or directories (repeat this option)",
        ),
    ] = None,
    *,
    image_extensions: Annotated[
        str,
        Parameter(
            name=("--ext", "--extensions"),
            help="Comma-separated image file extensions to process (case insensitive)",
        ),
    ] = DEFAULT_EXTENSIONS,
    recursive: Annotated[
        bool,
        Parameter(
            name=("--recursive", "-r"),
            help="Process files in subdirectories recursively",
        ),
    ] = False,
    provider: Annotated[
        ProviderId | None,
        Parameter(
            name=("--provider", "-p"),
            help="Backend provider: 'gemini', 'ollama' or 'openai' (default from preferences)",
        ),
    ] = None,
    model: Annotated[
        str | None,
        Parameter(name=("--model", "-m"), help="Vision model name for the selected provider"),
    ] = None,
    url: Annotated[
        str | None,
        Parameter(name=("--url", "-u"), help="Provider API base URL"),
    ] = None,
    language: Annotated[
        str | None,
        Parameter(name=("--language",), help="Language for every generated text field"),
    ] = None,
    hierarchical: Annotated[
        bool | None,
        Parameter(
            name=("--hierarchical",),
            negative="--flat",
            help="Ask for broad-to-specific keyword chains instead of flat keywords",
        ),
    ] = None,
    preset: Annotated[
        str | None,
        Parameter(name=("--preset",), help="Use a named prompt preset (see 'ai-tagger presets')"),
    ] = None,
    prompt_file: Annotated[
        Path | None,
        Parameter(
            name=("--prompt-file",),
            validator=validators.Path(exists=True, file_okay=True, dir_okay=False),
            help="Read a custom base prompt from a text file",
        ),
    ] = None,
    include_metadata: Annotated[
        bool | None,
        Parameter(
            name=("--include-metadata",),
            negative="--no-include-metadata",
            help="Send camera, GPS and IPTC details as advisory context",
        ),
    ] = None,
    concurrency: Annotated[
        int | None,
        Parameter(
            name=("--concurrency", "-c"),
            help="Maximum number of photos analyzed at once",
        ),
    ] = None,
    pacing: Annotated[
        float | None,
        Parameter(
            name=("--pacing",),
            help="Minimum seconds between two requests (default depends on provider)",
        ),
    ] = None,
    retries: Annotated[
        int | None,
        Parameter(name=("--retries",), help="Retries per photo for transient failures"),
    ] = None,
    output: Annotated[
        Path | None,
        Parameter(name=("--output", "-o"), help="Write JSON results here instead of stdout"),
    ] = None,
    retry_failed: Annotated[
        bool,
        Parameter(
            name=("--retry-failed",),
            negative="--no-retry-failed",
            help="Run failed photos once more after the batch",
        ),
    ] = True,
    save: Annotated[
        bool,
        Parameter(
            name=("--save-preferences",),
            help="Persist the effective settings as the new defaults",
        ),
    ] = False,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Describe and keyword photos with the selected AI backend.

    Inputs:
    - One or more --input/-i paths (files and/or directories; repeatable).
    - Files are processed as is. Directories use --ext (add --recursive for subfolders).
    - You can mix files and directories; order is preserved, duplicates skipped.

    Behavior:
    - Photos are analyzed concurrently (--concurrency) with a minimum spacing between
        requests (--pacing); transient failures are retried per photo (--retries).
    - Photos that still fail are analyzed once more unless --no-retry-failed is given.
    - Results are printed as JSON, or written to --output.

    Exit status: returns 1 if no inputs, no images found, or any photo fails.

    Examples:
        ai-tagger analyze -i ./photos/IMG_0001.jpg
        ai-tagger analyze -i ./photos --ext jpg,png -r --provider ollama
        ai-tagger analyze -i ./photos --preset "Food Photography" --language Spanish

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    logger.info(
        "starting_ai_tagger",
        inputs=[str(p) for p in (inputs or [])],
        extensions=image_extensions,
        recursive=recursive,
        provider=provider,
        model=model,
        url=url,
        language=language,
        hierarchical=hierarchical,
        preset=preset,
        prompt_file=str(prompt_file) if prompt_file else None,
        include_metadata=include_metadata,
        concurrency=concurrency,
        pacing=pacing,
        retries=retries,
    )

    image_files = _resolve_image_batch(inputs, image_extensions, recursive=recursive)
    preferences = _apply_overrides(
        _load_preferences_or_exit(),
        provider=provider,
        model=model,
        url=url,
        retries=retries,
        language=language,
        hierarchical_keywords=hierarchical,
        include_metadata=include_metadata,
        max_concurrency=concurrency,
        pacing_delay=pacing,
        **_prompt_overrides(preset, prompt_file),
    )
    if save:
        save_preferences(preferences, DEFAULT_PREFERENCES_PATH)

    factory = _create_factory(preferences)
    file_count = len(image_files)
    results = asyncio.run(_analyze_files(factory, image_files))

    # Retry failed files
    pending_failures = [path for path in image_files if not results[path].ok]
    initial_failures = len(pending_failures)
    retry_successes = 0
    if pending_failures and retry_failed:
        logger.info("retrying_failed_files", count=initial_failures)
        with logger.contextualize(retry=True):
            retried = asyncio.run(_analyze_files(factory, pending_failures))
        results.update(retried)
        retry_successes = sum(1 for result in retried.values() if result.ok)
        pending_failures = [path for path in pending_failures if not results[path].ok]

    _write_results([_result_record(path, results[path]) for path in image_files], output)

    # Summary
    failed_count = len(pending_failures)
    logger.info(
        "processing_summary",
        total_files=file_count,
        successful=file_count - failed_count,
        failed=failed_count,
        initial_failures=initial_failures,
        retry_successes=retry_successes,
    )
    if pending_failures:
        logger.error(
            "files_failed",
            files={str(path): results[path].error_message for path in pending_failures},
        )
        raise SystemExit(1)


@app.command(name="test-connection")
def test_connection(
    provider: Annotated[
        ProviderId | None,
        Parameter(name=("--provider", "-p"), help="Backend provider to check"),
    ] = None,
    *,
    model: Annotated[
        str | None,
        Parameter(name=("--model", "-m"), help="Vision model name"),
    ] = None,
    url: Annotated[
        str | None,
        Parameter(name=("--url", "-u"), help="Provider API base URL"),
    ] = None,
    console_log_level: Annotated[
        LogLevel,
        Parameter(name="--console-log-level", help="Log level for console"),
    ] = "INFO",
) -> None:
    """Check credentials and model availability without analyzing a photo."""
    setup_logging(file_log_level="OFF", console_log_level=console_log_level)
    preferences = _apply_overrides(
        _load_preferences_or_exit(),
        provider=provider,
        model=model,
        url=url,
    )
    factory = _create_factory(preferences)
    ok, message = asyncio.run(factory.test_connection())
    sys.stdout.write(f"{factory.get_current_provider()}: {message}\n")
    if not ok:
        raise SystemExit(1)


@app.command
def presets() -> None:
    """List the available prompt presets."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    factory = ProviderFactory(_load_preferences_or_exit(), _secrets())
    for preset in factory.get_presets():
        sys.stdout.write(f"{preset.name}: {preset.description}\n")


@app.command
def prompt(
    *,
    language: Annotated[
        str | None,
        Parameter(name=("--language",), help="Language for every generated text field"),
    ] = None,
    hierarchical: Annotated[
        bool | None,
        Parameter(name=("--hierarchical",), negative="--flat", help="Hierarchical keywords"),
    ] = None,
    preset: Annotated[
        str | None,
        Parameter(name=("--preset",), help="Use a named prompt preset"),
    ] = None,
    prompt_file: Annotated[
        Path | None,
        Parameter(
            name=("--prompt-file",),
            validator=validators.Path(exists=True, file_okay=True, dir_okay=False),
            help="Read a custom base prompt from a text file",
        ),
    ] = None,
) -> None:
    """Print the prompt that would be sent, without metadata context."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    preferences = _apply_overrides(
        _load_preferences_or_exit(),
        language=language,
        hierarchical_keywords=hierarchical,
        **_prompt_overrides(preset, prompt_file),
    )
    factory = ProviderFactory(preferences, _secrets())
    sys.stdout.write(factory.build_prompt() + "\n")


@key_app.command(name="set")
def key_set(
    provider: ProviderId,
    api_key: Annotated[
        str | None,
        Parameter(help="API key; prompted for without echo when omitted"),
    ] = None,
) -> None:
    """Store the API key for a provider."""
    setup_logging(file_log_level="OFF", console_log_level="INFO")
    value = (api_key or getpass.getpass(f"{provider} API key: ")).strip()
    if not value:
        logger.error("empty_api_key", provider=provider)
        raise SystemExit(1)
    factory = ProviderFactory(_load_preferences_or_exit(), FileSecretStore(DEFAULT_SECRETS_PATH))
    factory.store_key(value, provider)


@key_app.command(name="clear")
def key_clear(provider: ProviderId) -> None:
    """Remove the stored API key for a provider."""
    setup_logging(file_log_level="OFF", console_log_level="INFO")
    factory = ProviderFactory(_load_preferences_or_exit(), FileSecretStore(DEFAULT_SECRETS_PATH))
    factory.clear_key(provider)


@key_app.command(name="status")
def key_status() -> None:
    """Show which providers are ready to use."""
    setup_logging(file_log_level="OFF", console_log_level="WARNING")
    factory = ProviderFactory(_load_preferences_or_exit(), _secrets())
    for entry in factory.get_available_providers():
        marker = "*" if entry["current"] else " "
        if entry["requires_key"]:
            state = "key present" if entry["api_key_present"] else "no key"
        else:
            state = "no key needed"
        sys.stdout.write(f"{marker} {entry['id']:<7} {entry['model']:<24} {state}\n")


if __name__ == "__main__":
    app()
