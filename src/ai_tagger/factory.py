"""
Single entry point tying preferences, providers, prompts, retries and batches together.

One provider is selected at a time. The factory hands out that provider, builds prompts
for it and runs single or batch analyses through RetryingClient.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from functools import partial
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from ai_tagger import prompts
from ai_tagger.batch import BatchScheduler, ProgressCallback
from ai_tagger.config import Preferences, resolve_concurrency_budget
from ai_tagger.errors import BatchInProgressError, UnknownProviderError
from ai_tagger.models import (
    PROVIDER_IDS,
    AnalysisRequest,
    AnalysisResult,
    MetadataContext,
    ProviderId,
)
from ai_tagger.presets import PromptPreset, get_preset, get_preset_names, get_presets
from ai_tagger.providers import PROVIDER_CLASSES, Provider
from ai_tagger.retry import RetryingClient, Sleep
from ai_tagger.secret_store import SecretStore


BatchItem = tuple[str, bytes, MetadataContext | None]


def _as_provider_id(provider_id: str) -> ProviderId:
    for known in PROVIDER_IDS:
        if known == provider_id:
            return known
    raise UnknownProviderError(provider_id)


class ProviderFactory:
    """
    Owns the current provider selection for a session.

    Example:
        factory = ProviderFactory(load_preferences(), FileSecretStore(DEFAULT_SECRETS_PATH))
        factory.set_current_provider("ollama")
        result = await factory.analyze("IMG_0001.jpg", image_bytes)

    """

    def __init__(
        self,
        preferences: Preferences,
        secrets: SecretStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Create the factory.

        Args:
            preferences: Session preferences; the selected provider comes from here
            secrets: Credential store shared by every provider
            transport: Optional httpx transport handed to each provider
            sleep: Awaitable sleep used for backoff and pacing

        """
        self.preferences = preferences
        self._secrets = secrets
        self._transport = transport
        self._sleep = sleep
        self._instances: dict[ProviderId, Provider] = {}
        self._active_batches = 0
        self.scheduler: BatchScheduler | None = None

    # Selection

    def get_current_provider(self) -> ProviderId:
        return self.preferences.provider

    def set_current_provider(self, provider_id: str) -> None:
        """
        Select the provider used by later calls.

        Raises:
            UnknownProviderError: ``provider_id`` is not a supported backend.
            BatchInProgressError: a batch is still running.

        """
        wanted = _as_provider_id(provider_id)
        if wanted == self.preferences.provider:
            return
        if self._active_batches:
            msg = f"Cannot switch to {wanted} while a batch is running"
            raise BatchInProgressError(msg)

        logger.info("provider_selected", previous=self.preferences.provider, provider=wanted)
        self.preferences = self.preferences.model_copy(update={"provider": wanted})

    def get_provider(self, provider_id: str) -> Provider:
        """Return the (cached) provider instance for ``provider_id``."""
        key = _as_provider_id(provider_id)
        config = self.preferences.provider_config(key)
        cached = self._instances.get(key)
        if cached is None or cached.config != config:
            cached = PROVIDER_CLASSES[key](config, self._secrets, transport=self._transport)
            self._instances[key] = cached
        return cached

    def get_active(self) -> Provider:
        return self.get_provider(self.preferences.provider)

    @property
    def batch_in_progress(self) -> bool:
        return self._active_batches > 0

    # Prompts

    def get_default_prompt(self) -> str:
        return prompts.default_prompt(
            hierarchical=self.preferences.hierarchical_keywords,
            separator=self.preferences.keyword_separator,
        )

    def get_presets(self) -> list[PromptPreset]:
        return get_presets()

    def get_preset_names(self) -> list[str]:
        return get_preset_names()

    def get_preset(self, name: str) -> PromptPreset | None:
        return get_preset(name)

    def load_prompt_from_file(self, path: Path) -> str:
        return prompts.load_prompt_from_file(path)

    def build_prompt(self, metadata: MetadataContext | None = None) -> str:
        """Final prompt for the current preferences; metadata only when the user allows it."""
        return prompts.build_prompt(
            prompts.resolve_base_prompt(self.preferences),
            self.preferences,
            metadata if self.preferences.include_metadata else None,
        )

    def make_request(
        self,
        file_name: str,
        image_bytes: bytes,
        metadata: MetadataContext | None = None,
        mime_type: str = "image/jpeg",
    ) -> AnalysisRequest:
        context = metadata if self.preferences.include_metadata else None
        return AnalysisRequest(
            image_bytes=image_bytes,
            file_name=file_name,
            prompt_text=self.build_prompt(context),
            mime_type=mime_type,
            metadata_context=context,
        )

    # Analysis

    def _client(self, provider: Provider) -> RetryingClient:
        return RetryingClient.from_config(provider.config, sleep=self._sleep)

    async def analyze(
        self,
        file_name: str,
        image_bytes: bytes,
        metadata: MetadataContext | None = None,
        mime_type: str = "image/jpeg",
    ) -> AnalysisResult:
        """Analyze one photo with the current provider, retrying transient failures."""
        provider = self.get_active()
        request = self.make_request(file_name, image_bytes, metadata, mime_type)
        with logger.contextualize(file=file_name):
            return await self._client(provider).execute(provider, request)

    async def analyze_batch(
        self,
        items: Sequence[BatchItem | AnalysisRequest],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> AsyncIterator[tuple[int, AnalysisResult]]:
        """
        Analyze many photos with the current provider.

        The provider and its settings are fixed for the whole batch and the selection cannot
        change until the batch has drained. ``self.scheduler.job`` exposes live counters.

        Yields:
            ``(index, result)`` pairs in completion order.

        """
        provider = self.get_active()
        requests = [
            item if isinstance(item, AnalysisRequest) else self.make_request(*item)
            for item in items
        ]
        scheduler = BatchScheduler(
            partial(self._client(provider).execute, provider),
            concurrency_budget=resolve_concurrency_budget(self.preferences.max_concurrency),
            pacing_delay=self.preferences.effective_pacing(),
            on_progress=on_progress,
            sleep=self._sleep,
        )
        self.scheduler = scheduler
        self._active_batches += 1
        try:
            async for pair in scheduler.run(requests):
                yield pair
        finally:
            self._active_batches -= 1

    def cancel_batch(self) -> None:
        """Stop admitting new photos into the running batch."""
        if self.scheduler is not None:
            self.scheduler.cancel()

    # Connection and keys

    async def test_connection(self, provider_id: str | None = None) -> tuple[bool, str]:
        provider = self.get_provider(provider_id or self.preferences.provider)
        return await provider.test_connection()

    def store_key(self, api_key: str, provider_id: str | None = None) -> None:
        self.get_provider(provider_id or self.preferences.provider).store_key(api_key)

    def get_key(self, provider_id: str | None = None) -> str | None:
        return self.get_provider(provider_id or self.preferences.provider).get_key()

    def clear_key(self, provider_id: str | None = None) -> None:
        self.get_provider(provider_id or self.preferences.provider).clear_key()

    def has_key(self, provider_id: str | None = None) -> bool:
        return self.get_provider(provider_id or self.preferences.provider).has_key()

    def get_available_providers(self) -> list[dict[str, Any]]:
        """Describe every backend and whether it is ready to use."""
        available = []
        for provider_id in PROVIDER_IDS:
            provider = self.get_provider(provider_id)
            has_key = provider.has_key()
            available.append(
                {
                    "id": provider_id,
                    "name": provider.display_name,
                    "description": provider.description,
                    "model": provider.config.model,
                    "current": provider_id == self.preferences.provider,
                    "requires_key": provider.requires_key,
                    "api_key_present": has_key,
                    "configured": has_key or not provider.requires_key,
                },
            )
        return available
