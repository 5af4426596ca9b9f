from app.models import CapabilityClass

IMAGE_GENERATION_PREFIX = "imagen"
IMAGE_CAPABLE_CHAT_MODEL = "gemini-2.5-flash-image-preview"


def classify(model_id: str | None) -> CapabilityClass:
    """Map a model identifier to the response pipeline that serves it.

    Matching is case-insensitive. Unknown or empty identifiers are plain text chat.
    """
    normalized = (model_id or "").strip().lower()
    if normalized.startswith(IMAGE_GENERATION_PREFIX):
        return CapabilityClass.IMAGE_GENERATION
    if normalized == IMAGE_CAPABLE_CHAT_MODEL:
        return CapabilityClass.IMAGE_CAPABLE_CHAT
    return CapabilityClass.TEXT_CHAT
