"""Google Gemini generateContent backend."""

from typing import Any

from ai_tagger.models import AnalysisRequest
from ai_tagger.providers.base import JSON_HEADERS, HttpCall, Provider, dig, encode_image


GEMINI_TOP_P = 0.8


class GeminiProvider(Provider):
    """
    Gemini via the REST ``generateContent`` endpoint.

    The API key travels as the ``key`` query parameter and the image as an ``inline_data``
    part next to the prompt text.
    """

    provider_id = "gemini"
    display_name = "Google Gemini"
    description = "Google's Gemini AI service with vision capabilities"

    def _model_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{self.config.model}"

    def analysis_call(self, request: AnalysisRequest, api_key: str | None) -> HttpCall:
        body = {
            "contents": [
                {
                    "parts": [
                        {"text": request.prompt_text},
                        {
                            "inline_data": {
                                "mime_type": request.mime_type,
                                "data": encode_image(request.image_bytes),
                            },
                        },
                    ],
                },
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": self.config.temperature,
                "topP": GEMINI_TOP_P,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }
        return HttpCall(
            method="POST",
            url=f"{self._model_url()}:generateContent",
            headers=JSON_HEADERS,
            json=body,
            params={"key": api_key or ""},
        )

    def connection_call(self, api_key: str | None) -> HttpCall:
        return HttpCall(
            method="GET",
            url=self._model_url(),
            headers=JSON_HEADERS,
            params={"key": api_key or ""},
        )

    def extract_text(self, payload: Any) -> str | None:  # noqa: ANN401
        text = dig(payload, "candidates", 0, "content", "parts", 0, "text")
        return text if isinstance(text, str) else None
