from .models import (
    ArchiveSessionRequest,
    Attachment,
    CapabilityClass,
    ChatSession,
    ChatSubmission,
    ContentPart,
    CreateSessionRequest,
    HealthCheckResponse,
    InlineData,
    InlinePart,
    MessageRecord,
    ModelInfo,
    ModelListResponse,
    ModelOutput,
    NormalizedResponse,
    TextPart,
    TokenUsage,
    Turn,
    UpdateTitleRequest,
    UserRecord,
)

__all__ = [
    "ArchiveSessionRequest",
    "Attachment",
    "CapabilityClass",
    "ChatSession",
    "ChatSubmission",
    "ContentPart",
    "CreateSessionRequest",
    "HealthCheckResponse",
    "InlineData",
    "InlinePart",
    "MessageRecord",
    "ModelInfo",
    "ModelListResponse",
    "ModelOutput",
    "NormalizedResponse",
    "TextPart",
    "TokenUsage",
    "Turn",
    "UpdateTitleRequest",
    "UserRecord",
]
