"""
Shared HTTP plumbing for vision backends.

A provider performs exactly one HTTP exchange per ``analyze`` call and maps the outcome onto
an AnalysisResult. It never retries; RetryingClient decides that from ``error_kind``.
"""

import base64
import time
from abc import ABC, abstractmethod
from http import HTTPStatus
from typing import Any, ClassVar, NamedTuple

import httpx
from loguru import logger

from ai_tagger.models import AnalysisRequest, AnalysisResult, ErrorKind, ProviderConfig, ProviderId
from ai_tagger.parser import parse_response
from ai_tagger.secret_store import SecretStore


JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}
TRANSIENT_STATUSES = frozenset(
    {
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    },
)
ERROR_DETAIL_CHARS = 300


class HttpCall(NamedTuple):
    """Backend-specific description of one HTTP request."""

    method: str
    url: str
    headers: dict[str, str]
    json: dict[str, Any] | None = None
    params: dict[str, str] | None = None


def dig(payload: Any, *path: str | int) -> Any:  # noqa: ANN401
    """
    Walk nested dicts/lists, returning None as soon as a step is missing.

    Examples:
        >>> dig({"choices": [{"message": {"content": "hi"}}]}, "choices", 0, "message", "content")
        'hi'
        >>> dig({"choices": []}, "choices", 0, "message") is None
        True

    """
    current = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or not -len(current) <= step < len(current):
                return None
        elif not isinstance(current, dict) or step not in current:
            return None
        current = current[step]
    return current


def encode_image(image_bytes: bytes) -> str:
    """Base64-encode image bytes for JSON request bodies."""
    return base64.b64encode(image_bytes).decode("ascii")


def _json_or_none(response: httpx.Response) -> Any:  # noqa: ANN401
    try:
        return response.json()
    except ValueError:
        return None


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class Provider(ABC):
    """
    One AI vision backend behind the common analysis contract.

    Subclasses describe their requests (``analysis_call``, ``connection_call``) and their
    response envelope (``extract_text``, ``extract_error``); the HTTP exchange and the
    status-to-result mapping live here.
    """

    provider_id: ClassVar[ProviderId]
    display_name: ClassVar[str]
    description: ClassVar[str]
    requires_key: ClassVar[bool] = True

    def __init__(
        self,
        config: ProviderConfig,
        secrets: SecretStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Bind the provider to its settings and credential store.

        Args:
            config: Endpoint, model and generation settings for this backend
            secrets: Store holding the API key under ``config.api_key_name``
            transport: Optional httpx transport (tests pass an ``httpx.MockTransport``)

        """
        self.config = config
        self._secrets = secrets
        self._transport = transport

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.config.model!r}, url={self.config.base_url!r})"

    # Key management

    def store_key(self, api_key: str) -> None:
        if self.config.api_key_name:
            self._secrets.store(self.config.api_key_name, api_key.strip())
            logger.info("api_key_stored", provider=self.provider_id)

    def get_key(self) -> str | None:
        if not self.config.api_key_name:
            return None
        return self._secrets.retrieve(self.config.api_key_name)

    def clear_key(self) -> None:
        if self.config.api_key_name:
            self._secrets.clear(self.config.api_key_name)
            logger.info("api_key_cleared", provider=self.provider_id)

    def has_key(self) -> bool:
        return bool(self.get_key())

    # Backend specifics

    @abstractmethod
    def analysis_call(self, request: AnalysisRequest, api_key: str | None) -> HttpCall:
        """Describe the HTTP request analyzing ``request``."""

    @abstractmethod
    def connection_call(self, api_key: str | None) -> HttpCall:
        """Describe the cheapest request proving credentials and model availability."""

    @abstractmethod
    def extract_text(self, payload: Any) -> str | None:  # noqa: ANN401
        """Pull the model's text payload out of a successful response envelope."""

    def extract_error(self, payload: Any) -> str | None:  # noqa: ANN401
        """Pull a human-readable error out of a failed response envelope."""
        message = dig(payload, "error", "message")
        if message is None:
            message = dig(payload, "error")
        return message if isinstance(message, str) and message.strip() else None

    def connection_verdict(self, payload: Any) -> tuple[bool, str]:  # noqa: ARG002, ANN401
        """Judge a 200 response to ``connection_call``."""
        return True, "Connection successful"

    # HTTP exchange

    async def send(self, call: HttpCall) -> httpx.Response:
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self.config.timeout,
        ) as client:
            return await client.request(
                call.method,
                call.url,
                params=call.params,
                headers=call.headers,
                json=call.json,
            )

    def status_failure(self, response: httpx.Response) -> AnalysisResult:
        """Map a non-200 response onto a failed result."""
        status = response.status_code
        if status == HTTPStatus.UNAUTHORIZED:
            return AnalysisResult.failure("invalid credential", ErrorKind.AUTH)
        if status == HTTPStatus.TOO_MANY_REQUESTS:
            return AnalysisResult.failure(
                "rate limited",
                ErrorKind.RATE_LIMIT,
                retry_after=_retry_after(response),
            )

        detail = self.extract_error(_json_or_none(response)) or response.text.strip()
        message = f"HTTP {status}"
        if detail:
            message += f": {detail[:ERROR_DETAIL_CHARS]}"
        if status == HTTPStatus.BAD_REQUEST:
            kind = ErrorKind.BAD_REQUEST
        elif status in TRANSIENT_STATUSES:
            kind = ErrorKind.SERVER
        else:
            kind = ErrorKind.HTTP
        return AnalysisResult.failure(message, kind)

    def interpret(self, response: httpx.Response) -> AnalysisResult:
        """Turn an HTTP response into a result; 200 is always a success."""
        if response.status_code != HTTPStatus.OK:
            return self.status_failure(response)

        payload = _json_or_none(response)
        text = response.text if payload is None else self.extract_text(payload)
        if text is None:
            logger.warning("response_envelope_without_text", provider=self.provider_id)
            text = ""
        return parse_response(text)

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """
        Analyze one image with a single HTTP exchange.

        Returns:
            A successful result with parsed fields, or a failure whose ``error_kind`` tells
            the caller whether retrying makes sense.

        """
        started = time.perf_counter()
        if not request.image_bytes:
            message = f"Invalid image data for {request.file_name or 'unknown file'}"
            logger.error("invalid_image_data", provider=self.provider_id)
            return AnalysisResult.failure(message, ErrorKind.INVALID_REQUEST)

        api_key = self.get_key()
        if self.requires_key and not api_key:
            logger.warning("api_key_missing", provider=self.provider_id)
            return AnalysisResult.failure("API key missing", ErrorKind.MISSING_CREDENTIAL)

        logger.debug(
            "provider_request",
            provider=self.provider_id,
            model=self.config.model,
            image_kb=len(request.image_bytes) // 1024,
        )
        try:
            response = await self.send(self.analysis_call(request, api_key))
        except httpx.InvalidURL as exc:
            logger.error("provider_invalid_url", provider=self.provider_id, error=str(exc))
            result = AnalysisResult.failure(f"Invalid URL: {exc}", ErrorKind.INVALID_REQUEST)
        except httpx.HTTPError as exc:
            message = str(exc) or type(exc).__name__
            logger.error("provider_transport_error", provider=self.provider_id, error=message)
            result = AnalysisResult.failure(f"Network error: {message}", ErrorKind.TRANSPORT)
        else:
            result = self.interpret(response)
            logger.debug(
                "provider_response",
                provider=self.provider_id,
                status=response.status_code,
                ok=result.ok,
            )

        result.elapsed = time.perf_counter() - started
        return result

    async def test_connection(self) -> tuple[bool, str]:
        """Validate credentials and model availability without analyzing an image."""
        api_key = self.get_key()
        if self.requires_key and not api_key:
            return False, "API key not configured"

        logger.info("testing_connection", provider=self.provider_id, model=self.config.model)
        try:
            response = await self.send(self.connection_call(api_key))
        except httpx.InvalidURL as exc:
            message = f"Invalid URL: {exc}"
            logger.error("connection_test_failed", provider=self.provider_id, error=message)
            return False, message
        except httpx.HTTPError as exc:
            message = f"Network error: {str(exc) or type(exc).__name__}"
            logger.error("connection_test_failed", provider=self.provider_id, error=message)
            return False, message

        if response.status_code == HTTPStatus.OK:
            ok, message = self.connection_verdict(_json_or_none(response))
        elif response.status_code == HTTPStatus.FORBIDDEN:
            ok, message = False, "Access denied - check API key permissions"
        elif response.status_code == HTTPStatus.NOT_FOUND:
            ok, message = False, f"Model not found: {self.config.model}"
        else:
            ok, message = False, self.status_failure(response).error_message or "unknown error"

        log = logger.info if ok else logger.error
        log("connection_test_result", provider=self.provider_id, ok=ok, message=message)
        return ok, message
