from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CapabilityClass(str, Enum):
    """Response pipeline a model identifier maps to."""

    IMAGE_GENERATION = "image_generation"
    IMAGE_CAPABLE_CHAT = "image_capable_chat"
    TEXT_CHAT = "text_chat"


class CamelModel(BaseModel):
    """Base for payloads exchanged with the browser client in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Persisted records ---


class UserRecord(BaseModel):
    """Internal user row keyed by the authentication user id."""

    id: str
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    """Chat session owned by one user."""

    id: str
    user_id: str
    title: str
    model: str
    is_pinned: bool = Field(default=False)
    is_archived: bool = Field(default=False)
    message_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_message_at: datetime | None = Field(default=None)


class MessageRecord(BaseModel):
    """Append-only chat message row."""

    id: str | None = Field(default=None)
    session_id: str
    role: Literal["user", "model"]
    content: str | None = Field(default=None)
    message_type: Literal["text", "image", "file"] = Field(default="text")
    file_path: str | None = Field(default=None)
    file_name: str | None = Field(default=None)
    file_type: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_file_fields(self) -> MessageRecord:
        """Binary messages carry a path and type, text messages never carry a path."""
        if self.message_type == "text":
            if self.file_path is not None:
                raise ValueError("text messages cannot reference a file_path")
        elif self.file_path is None or self.file_type is None:
            raise ValueError(f"{self.message_type} messages require file_path and file_type")
        return self


# --- Model-facing turns ---


class InlineData(BaseModel):
    """Raw bytes tagged with their mime type."""

    mime_type: str
    data: bytes


class TextPart(BaseModel):
    text: str


class InlinePart(BaseModel):
    inline_data: InlineData


ContentPart = TextPart | InlinePart


class Turn(BaseModel):
    """One role-tagged ordered sequence of content parts."""

    role: Literal["user", "model"]
    parts: list[ContentPart] = Field(default_factory=list)


class Attachment(BaseModel):
    """User-submitted file accompanying one chat request."""

    original_name: str
    mime_type: str
    data: bytes
    size_bytes: int


class TokenUsage(CamelModel):
    """Token accounting reported by the model."""

    prompt_token_count: int | None = Field(default=None)
    candidates_token_count: int | None = Field(default=None)
    total_token_count: int | None = Field(default=None)


class ModelOutput(BaseModel):
    """Text and binary segments produced by one generate_content call."""

    text_parts: list[str] = Field(default_factory=list)
    binary_parts: list[InlineData] = Field(default_factory=list)
    usage: TokenUsage | None = Field(default=None)

    @property
    def text(self) -> str | None:
        return "\n".join(self.text_parts) if self.text_parts else None


class ChatSubmission(BaseModel):
    """Current user submission, after multipart parsing."""

    session_id: str | None = Field(default=None)
    message: str | None = Field(default=None)
    model: str | None = Field(default=None)
    attachments: list[Attachment] = Field(default_factory=list)


# --- API payloads ---


class NormalizedResponse(CamelModel):
    """Chat response; `text`/`images` are authoritative, `response` is the legacy field."""

    text: str | None = Field(default=None)
    images: list[str] | None = Field(default=None)
    image: str | None = Field(default=None)
    is_stored_image: bool | None = Field(default=None)
    usage: TokenUsage | None = Field(default=None)
    response: str | None = Field(default=None)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ModelInfo(CamelModel):
    name: str
    display_name: str
    supported_actions: list[str] = Field(default_factory=list)


class ModelListResponse(BaseModel):
    """Model list model"""

    models: list[ModelInfo]


class CreateSessionRequest(BaseModel):
    title: str | None = Field(default=None)
    model: str | None = Field(default=None)


class UpdateTitleRequest(BaseModel):
    title: str = Field(..., min_length=1)


class ArchiveSessionRequest(BaseModel):
    archive: bool = Field(default=True)


class HealthCheckResponse(BaseModel):
    """Health check response model"""

    ok: bool
    storage: dict[str, Any] | None = Field(default=None)
    error: str | None = Field(default=None)
