"""Exceptions raised for configuration and programming faults.

Per-photo analysis failures are never raised; they travel as failed
``AnalysisResult`` values instead.
"""


class AiTaggerError(Exception):
    """Base class for all ai_tagger exceptions."""


class ConfigurationError(AiTaggerError):
    """Persisted preferences or provider settings are unusable."""


class UnknownProviderError(AiTaggerError, ValueError):
    """A provider id does not name a supported backend."""

    def __init__(self, provider_id: str) -> None:
        """Remember the offending id for the message."""
        super().__init__(f"Unknown provider: {provider_id}")
        self.provider_id = provider_id


class BatchInProgressError(AiTaggerError):
    """The active provider cannot be switched while a batch is running."""


class PromptError(AiTaggerError):
    """A prompt file could not be read or was empty."""
