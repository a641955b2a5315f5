"""Interchangeable AI vision backends."""

from ai_tagger.models import ProviderId
from ai_tagger.providers.base import Provider
from ai_tagger.providers.gemini import GeminiProvider
from ai_tagger.providers.ollama import OllamaProvider
from ai_tagger.providers.openai import OpenAIProvider


PROVIDER_CLASSES: dict[ProviderId, type[Provider]] = {
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
}

__all__ = [
    "PROVIDER_CLASSES",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "Provider",
]
