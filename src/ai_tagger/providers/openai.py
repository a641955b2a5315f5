"""OpenAI Chat Completions backend (also fits OpenAI-compatible servers)."""

from typing import Any

from ai_tagger.models import AnalysisRequest
from ai_tagger.providers.base import JSON_HEADERS, HttpCall, Provider, dig, encode_image


CONNECTION_TEST_MAX_TOKENS = 10


class OpenAIProvider(Provider):
    """GPT vision models; bearer-token auth and the image as a base64 data URL."""

    provider_id = "openai"
    display_name = "OpenAI GPT-4V"
    description = "OpenAI's GPT-4 with vision capabilities for image analysis"

    def _url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _headers(self, api_key: str | None) -> dict[str, str]:
        return {**JSON_HEADERS, "Authorization": f"Bearer {api_key or ''}"}

    def analysis_call(self, request: AnalysisRequest, api_key: str | None) -> HttpCall:
        data_url = f"data:{request.mime_type};base64,{encode_image(request.image_bytes)}"
        body = {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.prompt_text},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            "max_tokens": self.config.max_output_tokens,
            "temperature": self.config.temperature,
        }
        return HttpCall("POST", self._url(), self._headers(api_key), body)

    def connection_call(self, api_key: str | None) -> HttpCall:
        body = {
            "model": self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": (
                        "Hello! Please respond with 'Connection successful' to test the API."
                    ),
                },
            ],
            "max_tokens": CONNECTION_TEST_MAX_TOKENS,
        }
        return HttpCall("POST", self._url(), self._headers(api_key), body)

    def extract_text(self, payload: Any) -> str | None:  # noqa: ANN401
        text = dig(payload, "choices", 0, "message", "content")
        return text if isinstance(text, str) else None
