"""Local (or hosted) Ollama server backend using the native ``/api/generate`` endpoint."""

from typing import Any

from ai_tagger.models import AnalysisRequest
from ai_tagger.providers.base import JSON_HEADERS, HttpCall, Provider, dig, encode_image


def normalize_ollama_base_url(url: str) -> str:
    """
    Return the server root, dropping an OpenAI-compatible ``/v1`` suffix.

    Examples:
        >>> normalize_ollama_base_url("http://localhost:11434/v1/")
        'http://localhost:11434'

    """
    stripped = url.rstrip("/")
    return stripped.removesuffix("/v1")


class OllamaProvider(Provider):
    """
    Ollama vision models such as LLaVA.

    No key is needed for a local server; when one is stored it is sent as a bearer token.
    Images go base64-encoded in the ``images`` list and the reply arrives in ``response``.
    """

    provider_id = "ollama"
    display_name = "Ollama (Local)"
    description = "Local Ollama server with vision models like LLaVA"
    requires_key = False

    def _url(self, path: str) -> str:
        return f"{normalize_ollama_base_url(self.config.base_url)}{path}"

    def _headers(self, api_key: str | None) -> dict[str, str]:
        headers = dict(JSON_HEADERS)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def analysis_call(self, request: AnalysisRequest, api_key: str | None) -> HttpCall:
        body = {
            "model": self.config.model,
            "prompt": request.prompt_text,
            "images": [encode_image(request.image_bytes)],
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_output_tokens,
            },
        }
        return HttpCall("POST", self._url("/api/generate"), self._headers(api_key), body)

    def connection_call(self, api_key: str | None) -> HttpCall:
        return HttpCall("GET", self._url("/api/tags"), self._headers(api_key))

    def extract_text(self, payload: Any) -> str | None:  # noqa: ANN401
        text = dig(payload, "response")
        return text if isinstance(text, str) else None

    def connection_verdict(self, payload: Any) -> tuple[bool, str]:  # noqa: ANN401
        models = dig(payload, "models")
        if not isinstance(models, list):
            return False, "Invalid response from Ollama server"

        available = [
            str(entry["name"]) for entry in models if isinstance(entry, dict) and "name" in entry
        ]
        wanted = self.config.model.removesuffix(":latest")
        if any(name.removesuffix(":latest") == wanted for name in available):
            return True, "Connection successful"
        return (
            False,
            f"Model '{self.config.model}' not found. Available models: {', '.join(available)}",
        )
