from app.models import Attachment, InlineData, InlinePart, TextPart, Turn
from app.utils.errors import ValidationError

SUPPORTED_DOCUMENT_TYPES = frozenset(
    {
        "application/pdf",
        "text/plain",
        "text/csv",
        "text/html",
        "text/markdown",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "audio/wav",
        "audio/mp3",
        "audio/aiff",
        "audio/aac",
        "audio/ogg",
        "audio/flac",
    }
)


def base_mime_type(mime_type: str) -> str:
    """Media type without parameters, e.g. `text/plain; charset=utf-8` -> `text/plain`."""
    return mime_type.split(";")[0].strip().lower()


def is_model_consumable(mime_type: str | None) -> bool:
    """Whether Gemini accepts this mime type as an inline part."""
    if not mime_type:
        return False
    mime_type = base_mime_type(mime_type)
    return mime_type.startswith("image/") or mime_type in SUPPORTED_DOCUMENT_TYPES


def message_type_for(mime_type: str) -> str:
    return "image" if base_mime_type(mime_type).startswith("image/") else "file"


def validate_attachments(attachments: list[Attachment], max_files: int, max_file_size: int) -> None:
    """Reject submissions that exceed the attachment count or size limits."""
    if len(attachments) > max_files:
        raise ValidationError(f"At most {max_files} files can be attached to one message.")
    for attachment in attachments:
        if attachment.size_bytes > max_file_size:
            raise ValidationError(
                f"File '{attachment.original_name}' exceeds the {max_file_size // (1024 * 1024)} MB limit."
            )


def build_turn(message: str | None, attachments: list[Attachment]) -> Turn:
    """Convert the current submission into the user turn sent to the model.

    Text comes first, followed by one inline part per attachment the model can read.
    Attachments with other mime types are left out of the turn; they are still
    stored and recorded by the dispatcher.
    """
    parts: list[TextPart | InlinePart] = []
    if message:
        parts.append(TextPart(text=message))

    for attachment in attachments:
        if is_model_consumable(attachment.mime_type):
            parts.append(
                InlinePart(
                    inline_data=InlineData(
                        mime_type=base_mime_type(attachment.mime_type), data=attachment.data
                    )
                )
            )

    return Turn(role="user", parts=parts)
