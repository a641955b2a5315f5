"""Tests for provider selection and the factory's analysis entry points."""

from collections.abc import Callable
from http import HTTPStatus

import httpx
import pytest

from ai_tagger.batch import BatchJob
from ai_tagger.config import Preferences
from ai_tagger.errors import BatchInProgressError, UnknownProviderError
from ai_tagger.factory import ProviderFactory
from ai_tagger.models import AnalysisResult, MetadataContext
from ai_tagger.providers import GeminiProvider, OllamaProvider
from ai_tagger.secret_store import MemorySecretStore
from conftest import RecordingSleep, ScriptedTransport


OLLAMA_OK = httpx.Response(
    HTTPStatus.OK,
    json={"response": '{"title": "Dunes", "keywords": "sand"}'},
)


def _factory(
    transport: ScriptedTransport,
    sleep: RecordingSleep,
    **preferences: object,
) -> ProviderFactory:
    values: dict[str, object] = {"provider": "ollama", "pacing_delay": 0.0}
    values.update(preferences)
    return ProviderFactory(
        Preferences.model_validate(values),
        MemorySecretStore(),
        transport=transport.transport,
        sleep=sleep,
    )


def test_selection_and_cached_instances(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    factory = _factory(scripted(OLLAMA_OK), recording_sleep)

    assert factory.get_current_provider() == "ollama"
    active = factory.get_active()
    assert isinstance(active, OllamaProvider)
    assert factory.get_active() is active

    factory.set_current_provider("gemini")
    assert factory.get_current_provider() == "gemini"
    assert isinstance(factory.get_active(), GeminiProvider)


def test_unknown_provider_is_rejected(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    factory = _factory(scripted(OLLAMA_OK), recording_sleep)

    with pytest.raises(UnknownProviderError, match="claude-vision"):
        factory.set_current_provider("claude-vision")
    with pytest.raises(ValueError, match="Unknown provider"):
        factory.get_provider("lmstudio")
    assert factory.get_current_provider() == "ollama"


@pytest.mark.asyncio
async def test_analyze_builds_prompt_from_preferences(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    """Language and metadata context reach the backend only as configured."""
    transport = scripted(OLLAMA_OK)
    metadata = MetadataContext(city="Merzouga", country="Morocco")

    factory = _factory(transport, recording_sleep, language="French", include_metadata=True)
    result = await factory.analyze("dunes.jpg", b"\xff\xd8jpeg", metadata)

    assert result.ok
    assert result.title == "Dunes"
    prompt = transport.body()["prompt"]
    assert "respond in French language" in prompt
    assert "Location metadata: Merzouga, Morocco" in prompt

    private = _factory(transport, recording_sleep, include_metadata=False)
    await private.analyze("dunes.jpg", b"\xff\xd8jpeg", metadata)
    assert "Merzouga" not in transport.body()["prompt"]


@pytest.mark.asyncio
async def test_switching_mid_batch_is_rejected(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    factory = _factory(scripted(OLLAMA_OK), recording_sleep, max_concurrency=1)
    items = [(f"IMG_{i}.jpg", b"\xff\xd8jpeg", None) for i in range(3)]

    batch = factory.analyze_batch(items)
    first_index, first_result = await batch.__anext__()
    assert factory.batch_in_progress
    with pytest.raises(BatchInProgressError):
        factory.set_current_provider("openai")

    rest = [pair async for pair in batch]
    assert first_result.ok
    assert sorted([first_index] + [index for index, _ in rest]) == [0, 1, 2]

    assert not factory.batch_in_progress
    factory.set_current_provider("openai")
    assert factory.get_current_provider() == "openai"


@pytest.mark.asyncio
async def test_batch_reports_progress_and_failures(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    """A failing photo is reported while the others still succeed."""
    transport = scripted(OLLAMA_OK)
    factory = _factory(transport, recording_sleep)
    progress: list[int] = []

    def on_progress(job: BatchJob, index: int, result: AnalysisResult) -> None:  # noqa: ARG001
        progress.append(job.completed)

    items = [
        ("good.jpg", b"\xff\xd8jpeg", None),
        ("empty.jpg", b"", None),
        ("also-good.jpg", b"\xff\xd8jpeg", None),
    ]
    results = {
        index: result
        async for index, result in factory.analyze_batch(items, on_progress=on_progress)
    }

    assert results[0].ok
    assert results[2].ok
    assert results[1].error_message == "Invalid image data for empty.jpg"
    assert sorted(progress) == [1, 2, 3]
    assert factory.scheduler is not None
    assert factory.scheduler.job is not None
    assert factory.scheduler.job.failed == 1
    assert transport.calls == 2


@pytest.mark.asyncio
async def test_connection_and_keys_pass_through(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    transport = scripted(httpx.Response(HTTPStatus.OK, json={"models": [{"name": "llava"}]}))
    factory = _factory(transport, recording_sleep)

    assert await factory.test_connection() == (True, "Connection successful")
    assert await factory.test_connection("gemini") == (False, "API key not configured")

    factory.store_key("g-key", "gemini")
    assert factory.has_key("gemini")
    assert factory.get_key("gemini") == "g-key"
    factory.clear_key("gemini")
    assert not factory.has_key("gemini")


def test_available_providers_report_configuration(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    factory = _factory(scripted(OLLAMA_OK), recording_sleep)
    factory.store_key("sk-test", "openai")

    status = {entry["id"]: entry for entry in factory.get_available_providers()}

    assert list(status) == ["gemini", "ollama", "openai"]
    assert status["gemini"]["configured"] is False
    assert status["ollama"]["configured"] is True
    assert status["ollama"]["current"] is True
    assert status["openai"]["api_key_present"] is True


def test_prompt_helpers(
    scripted: Callable[..., ScriptedTransport],
    recording_sleep: RecordingSleep,
) -> None:
    factory = _factory(scripted(OLLAMA_OK), recording_sleep, keyword_separator=" | ")

    assert "Sports | Team Sports | Football" in factory.get_default_prompt()
    assert factory.get_preset_names() == [preset.name for preset in factory.get_presets()]
    assert factory.get_preset("architecture") is not None
