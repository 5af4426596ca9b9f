import asyncio

from loguru import logger

from app.models import InlineData, InlinePart, MessageRecord, TextPart, Turn

from .blob import BlobStore
from .turns import base_mime_type, is_model_consumable

BINARY_MESSAGE_TYPES = {"image", "file"}
DEFAULT_FILE_TYPE = "image/png"


class HistoryNormalizer:
    """Rebuild model-ready turns from persisted session history."""

    def __init__(self, blob_store: BlobStore):
        self._blob_store = blob_store

    async def normalize(self, records: list[MessageRecord]) -> list[Turn]:
        """Convert records into turns, in record order.

        Attachments referenced by user records are fetched concurrently and inlined.
        A failed fetch drops only that binary part. Records that end up with no
        parts produce no turn.
        """
        turns = await asyncio.gather(*(self._record_to_turn(record) for record in records))
        normalized = [turn for turn in turns if turn is not None]
        logger.debug(f"Normalized {len(records)} history records into {len(normalized)} turns.")
        return normalized

    async def _record_to_turn(self, record: MessageRecord) -> Turn | None:
        parts: list[TextPart | InlinePart] = []
        if record.content:
            parts.append(TextPart(text=record.content))

        # Model-authored binaries are not sent back to the model, nor are files it cannot read.
        if (
            record.role == "user"
            and record.file_path
            and record.message_type in BINARY_MESSAGE_TYPES
            and is_model_consumable(record.file_type or DEFAULT_FILE_TYPE)
        ):
            inline = await self._fetch_inline(record)
            if inline is not None:
                parts.append(inline)

        if not parts:
            return None
        return Turn(role=record.role, parts=parts)

    async def _fetch_inline(self, record: MessageRecord) -> InlinePart | None:
        try:
            data = await self._blob_store.get(record.file_path)
        except Exception as e:
            logger.warning(f"Failed to load {record.file_path} from storage, skipping it: {e}")
            return None
        return InlinePart(
            inline_data=InlineData(
                mime_type=base_mime_type(record.file_type or DEFAULT_FILE_TYPE), data=data
            )
        )
