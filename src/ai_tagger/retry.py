"""Bounded retry with exponential backoff around a single provider exchange."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Self

from loguru import logger

from ai_tagger.models import AnalysisRequest, AnalysisResult, ErrorKind, ProviderConfig
from ai_tagger.providers import Provider


Sleep = Callable[[float], Awaitable[None]]

RETRYABLE_KINDS = frozenset({ErrorKind.TRANSPORT, ErrorKind.RATE_LIMIT, ErrorKind.SERVER})
MAX_RETRIES_MESSAGE = "maximum retries exceeded"


class RetryingClient:
    """
    Execute ``provider.analyze`` up to ``max_retries + 1`` times.

    Only transport failures, rate limiting and transient 5xx responses are retried. Auth
    and client errors come back on the first attempt. When every attempt fails the result
    reads "maximum retries exceeded" and keeps the last ``error_kind``, so callers can
    still tell rate limiting apart from outages.
    """

    def __init__(
        self,
        *,
        max_retries: int = 2,
        backoff_cap: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Configure the retry budget.

        Args:
            max_retries: Extra attempts after the first one
            backoff_cap: Upper bound in seconds for a single backoff wait
            sleep: Awaitable sleep, swapped out in tests

        """
        self.max_retries = max(0, max_retries)
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: ProviderConfig, *, sleep: Sleep = asyncio.sleep) -> Self:
        return cls(max_retries=config.max_retries, backoff_cap=config.backoff_cap, sleep=sleep)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_delay(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Seconds to wait after failed attempt number ``attempt`` (1-based).

        A server-provided Retry-After may lengthen the wait but never beyond the cap.

        Examples:
            >>> RetryingClient(backoff_cap=10).backoff_delay(1)
            2.0
            >>> RetryingClient(backoff_cap=10).backoff_delay(5)
            10.0

        """
        delay = max(float(2**attempt), retry_after or 0.0)
        return min(delay, self.backoff_cap)

    async def execute(self, provider: Provider, request: AnalysisRequest) -> AnalysisResult:
        """Analyze ``request`` with ``provider``, retrying transient failures."""
        started = time.perf_counter()
        result = AnalysisResult.failure(MAX_RETRIES_MESSAGE, ErrorKind.INTERNAL)

        for attempt in range(1, self.max_attempts + 1):
            logger.debug(
                "analysis_attempt",
                attempt=attempt,
                max_attempts=self.max_attempts,
                provider=provider.provider_id,
            )
            result = await provider.analyze(request)
            if result.ok or result.error_kind not in RETRYABLE_KINDS:
                result.elapsed = time.perf_counter() - started
                return result

            logger.warning(
                "analysis_attempt_failed",
                attempt=attempt,
                max_attempts=self.max_attempts,
                kind=str(result.error_kind),
                error=result.error_message,
            )
            if attempt < self.max_attempts:
                delay = self.backoff_delay(attempt, result.retry_after)
                logger.info("retrying_after_backoff", seconds=delay)
                await self._sleep(delay)

        logger.error(
            "analysis_retries_exhausted",
            attempts=self.max_attempts,
            kind=str(result.error_kind),
            last_error=result.error_message,
        )
        return AnalysisResult.failure(
            MAX_RETRIES_MESSAGE,
            result.error_kind or ErrorKind.INTERNAL,
            elapsed=time.perf_counter() - started,
        )
