import asyncio
import base64
from dataclasses import dataclass
from typing import Any

from loguru import logger

from app.models import InlineData, MessageRecord, ModelOutput, NormalizedResponse, TokenUsage
from app.utils.helper import extension_for, session_blob_path

from .blob import BlobStore
from .lmdb import RecordStore

SIGNED_URL_TTL_SECONDS = 3600


@dataclass
class StoredArtifact:
    """A model-produced binary and the URL it is delivered under."""

    url: str
    mime_type: str
    path: str | None = None
    filename: str | None = None

    @property
    def is_stored(self) -> bool:
        return self.path is not None


def data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def usage_metadata(usage: TokenUsage | None) -> dict[str, Any]:
    if usage is None:
        return {}
    return {"usage": usage.model_dump(mode="json", by_alias=True, exclude_none=True)}


class ResponseMaterializer:
    """Persist model output and build the response returned to the client.

    Generated binaries are always written to the blob store before a URL for
    them is handed out. If the write fails the image is delivered inline as a
    data URL and left out of the history.
    """

    def __init__(
        self,
        record_store: RecordStore,
        blob_store: BlobStore,
        url_ttl: int = SIGNED_URL_TTL_SECONDS,
    ):
        self._records = record_store
        self._blobs = blob_store
        self._url_ttl = url_ttl

    async def materialize(self, output: ModelOutput, session_id: str) -> NormalizedResponse:
        """Store every text and binary segment and return the multimodal response."""
        response = NormalizedResponse(usage=output.usage)
        metadata = usage_metadata(output.usage)

        artifacts = await asyncio.gather(
            *(
                self._store_artifact(session_id, binary, "response")
                for binary in output.binary_parts
            )
        )

        if output.text_parts:
            response.text = "\n".join(output.text_parts)
            await self._records.append_message(
                MessageRecord(
                    session_id=session_id,
                    role="model",
                    content=response.text,
                    message_type="text",
                    metadata=metadata,
                )
            )

        for artifact in artifacts:
            if artifact.is_stored:
                await self._record_artifact(session_id, artifact, metadata)

        if artifacts:
            response.images = [artifact.url for artifact in artifacts]

        return response

    async def materialize_text(self, output: ModelOutput, session_id: str) -> NormalizedResponse:
        """Store the joined text as one record and return the legacy `response` shape."""
        text = output.text or ""
        await self._records.append_message(
            MessageRecord(
                session_id=session_id,
                role="model",
                content=text,
                message_type="text",
                metadata=usage_metadata(output.usage),
            )
        )
        return NormalizedResponse(response=text, usage=output.usage)

    async def materialize_generated_image(self, data: bytes, session_id: str) -> NormalizedResponse:
        artifact = await self._store_artifact(
            session_id, InlineData(mime_type="image/png", data=data), "generated"
        )
        if artifact.is_stored:
            await self._record_artifact(session_id, artifact, {})
        return NormalizedResponse(image=artifact.url, is_stored_image=artifact.is_stored)

    async def _store_artifact(
        self, session_id: str, binary: InlineData, prefix: str
    ) -> StoredArtifact:
        extension = extension_for(binary.mime_type, default=".png")
        path = session_blob_path(session_id, prefix, extension)
        try:
            await self._blobs.put(path, binary.data, binary.mime_type)
        except Exception as e:
            logger.error(f"Failed to store generated image for session {session_id}: {e}")
            return StoredArtifact(url=data_url(binary.mime_type, binary.data), mime_type=binary.mime_type)

        return StoredArtifact(
            url=await self._retrieval_url(path),
            mime_type=binary.mime_type,
            path=path,
            filename=path.rsplit("/", 1)[-1],
        )

    async def _retrieval_url(self, path: str) -> str:
        try:
            return await self._blobs.signed_url(path, self._url_ttl)
        except Exception as e:
            logger.warning(f"Signed URL unavailable for {path}, using public URL: {e}")
            return self._blobs.public_url(path)

    async def _record_artifact(
        self, session_id: str, artifact: StoredArtifact, metadata: dict[str, Any]
    ) -> None:
        await self._records.append_message(
            MessageRecord(
                session_id=session_id,
                role="model",
                content=None,
                message_type="image",
                file_path=artifact.path,
                file_name=artifact.filename,
                file_type=artifact.mime_type,
                metadata=metadata,
            )
        )
