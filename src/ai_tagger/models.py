"""Value types shared by prompts, providers, the response parser and the batch scheduler."""

from enum import StrEnum
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


ProviderId = Literal["gemini", "ollama", "openai"]
PROVIDER_IDS: tuple[ProviderId, ...] = ("gemini", "ollama", "openai")
DEFAULT_KEYWORD_SEPARATOR = " > "
TEXT_FIELDS = ("title", "caption", "headline", "instructions", "location", "copyright")


class ErrorKind(StrEnum):
    """Classification of a failed exchange, used to decide whether to retry."""

    TRANSPORT = "transport"
    AUTH = "auth"
    MISSING_CREDENTIAL = "missing_credential"
    RATE_LIMIT = "rate_limit"
    BAD_REQUEST = "bad_request"
    SERVER = "server"
    HTTP = "http"
    INVALID_REQUEST = "invalid_request"
    INTERNAL = "internal"


class Keyword(BaseModel):
    """
    One suggested keyword, possibly a hierarchical path such as 'Nature > Wildlife > Birds'.

    ``selected`` starts out true and is toggled by the review UI.
    """

    description: str
    selected: bool = True

    def levels(self, separator: str = DEFAULT_KEYWORD_SEPARATOR) -> list[str]:
        """
        Split the keyword into its broad-to-specific parts.

        Examples:
            >>> Keyword(description="Nature > Wildlife > Birds").levels()
            ['Nature', 'Wildlife', 'Birds']
            >>> Keyword(description="Landscape").levels()
            ['Landscape']

        """
        token = separator.strip() or separator
        return [part.strip() for part in self.description.split(token) if part.strip()]


class MetadataContext(BaseModel):
    """Camera, GPS and IPTC details offered to the backend as advisory context."""

    model_config = ConfigDict(frozen=True)

    gps: str | None = None
    camera_make: str | None = None
    camera_model: str | None = None
    lens: str | None = None
    focal_length: str | None = None
    aperture: str | None = None
    shutter_speed: str | None = None
    iso: str | None = None
    flash: str | None = None
    captured_at: str | None = None
    dimensions: str | None = None
    cropped_dimensions: str | None = None
    copyright: str | None = None
    city: str | None = None
    state_province: str | None = None
    country: str | None = None
    sublocation: str | None = None

    def is_empty(self) -> bool:
        """Return True when no field carries a value."""
        return not any(value for value in self.model_dump().values())


class AnalysisRequest(BaseModel):
    """Everything one backend exchange needs; built per photo and never mutated."""

    model_config = ConfigDict(frozen=True)

    image_bytes: bytes = Field(repr=False)
    file_name: str
    prompt_text: str
    mime_type: str = "image/jpeg"
    metadata_context: MetadataContext | None = None


class AnalysisResult(BaseModel):
    """
    Canonical outcome of analyzing one photo.

    A successful result carries text fields and keywords; a failed one carries only
    ``error_message`` (and the ``error_kind`` that decides whether it is retryable).
    """

    status: Literal["success", "failure"] = "success"
    title: str = ""
    caption: str = ""
    headline: str = ""
    instructions: str = ""
    location: str = ""
    copyright: str = ""
    keywords: list[Keyword] = Field(default_factory=list)
    error_message: str | None = None
    elapsed: float = 0.0
    error_kind: ErrorKind | None = Field(default=None, exclude=True)
    retry_after: float | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _check_status_fields(self) -> Self:
        if self.status == "success":
            if self.error_message is not None:
                msg = "successful results cannot carry an error message"
                raise ValueError(msg)
            return self
        if not self.error_message:
            msg = "failed results need an error message"
            raise ValueError(msg)
        if self.keywords or any(getattr(self, name) for name in TEXT_FIELDS):
            msg = "failed results cannot carry text fields or keywords"
            raise ValueError(msg)
        return self

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def failure(
        cls,
        message: str,
        kind: ErrorKind,
        *,
        retry_after: float | None = None,
        elapsed: float = 0.0,
    ) -> Self:
        """Build a failed result."""
        return cls(
            status="failure",
            error_message=message,
            error_kind=kind,
            retry_after=retry_after,
            elapsed=elapsed,
        )

    def selected_keywords(self) -> list[str]:
        """Descriptions of the keywords still selected, in extraction order."""
        return [kw.description for kw in self.keywords if kw.selected]


class ProviderConfig(BaseModel):
    """Per-backend settings; read-only while a batch runs."""

    model_config = ConfigDict(frozen=True)

    base_url: str
    model: str
    api_key_name: str | None = None
    timeout: float = 60.0
    max_output_tokens: int = 1024
    temperature: float = 0.4
    max_retries: int = Field(default=2, ge=0)
    backoff_cap: float = Field(default=10.0, gt=0)
    pacing_delay: float = Field(default=0.0, ge=0)
