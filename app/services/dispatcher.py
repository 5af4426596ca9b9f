import asyncio
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from app.models import (
    Attachment,
    CapabilityClass,
    ChatSession,
    ChatSubmission,
    MessageRecord,
    NormalizedResponse,
)
from app.utils.errors import (
    AuthorizationError,
    ChatError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.utils.helper import extension_for, session_blob_path

from .blob import BlobStore
from .classifier import classify
from .client import ModelClient
from .history import HistoryNormalizer
from .lmdb import RecordStore
from .materializer import SIGNED_URL_TTL_SECONDS, ResponseMaterializer
from .turns import build_turn, message_type_for, validate_attachments

UPSTREAM_ERROR_MESSAGE = "Error processing the chat with the Gemini API."


class DispatchState(str, Enum):
    VALIDATING = "validating"
    PERSISTING_USER_TURN = "persisting_user_turn"
    INVOKING = "invoking"
    MATERIALIZING = "materializing"
    RESPONDED = "responded"
    FAILED = "failed"


@dataclass
class TurnContext:
    """Per-request pipeline state."""

    submission: ChatSubmission
    state: DispatchState = DispatchState.VALIDATING
    session: ChatSession | None = None
    model: str | None = None
    capability: CapabilityClass | None = None
    current_record_ids: set[str] = field(default_factory=set)

    def enter(self, state: DispatchState) -> None:
        logger.debug(
            f"Chat turn for session {self.submission.session_id}: {self.state.value} -> {state.value}"
        )
        self.state = state


class TurnDispatcher:
    """Run one chat submission through validation, persistence, model call and materialization.

    Every external failure ends the turn with a generic `UpstreamError`; nothing is retried.
    """

    def __init__(
        self,
        model_client: ModelClient,
        record_store: RecordStore,
        blob_store: BlobStore,
        default_model: str,
        max_files: int = 5,
        max_file_size: int = 5 * 1024 * 1024,
        url_ttl: int = SIGNED_URL_TTL_SECONDS,
    ):
        self._model_client = model_client
        self._records = record_store
        self._blobs = blob_store
        self._default_model = default_model
        self._max_files = max_files
        self._max_file_size = max_file_size
        self._history = HistoryNormalizer(blob_store)
        self._materializer = ResponseMaterializer(record_store, blob_store, url_ttl)

    async def dispatch(self, submission: ChatSubmission, auth_user_id: str) -> NormalizedResponse:
        ctx = TurnContext(submission=submission)
        try:
            await self._validate(ctx, auth_user_id)

            ctx.enter(DispatchState.PERSISTING_USER_TURN)
            await self._persist_user_turn(ctx)

            ctx.enter(DispatchState.INVOKING)
            if ctx.capability is CapabilityClass.IMAGE_GENERATION:
                response = await self._generate_image(ctx)
            else:
                response = await self._converse(ctx)

            ctx.enter(DispatchState.RESPONDED)
            return response
        except ChatError as e:
            failed_in = ctx.state
            ctx.enter(DispatchState.FAILED)
            logger.info(f"Chat turn rejected while {failed_in.value}: {e.message}")
            raise
        except Exception as e:
            failed_in = ctx.state
            ctx.enter(DispatchState.FAILED)
            logger.exception(
                f"Chat turn failed while {failed_in.value} (model={ctx.model}, session={submission.session_id}): {e}"
            )
            raise UpstreamError(UPSTREAM_ERROR_MESSAGE) from e

    async def _validate(self, ctx: TurnContext, auth_user_id: str) -> None:
        submission = ctx.submission
        if not submission.message and not submission.attachments:
            raise ValidationError("A message or at least one file is required.")
        if not submission.session_id:
            raise ValidationError("A sessionId is required.")
        validate_attachments(submission.attachments, self._max_files, self._max_file_size)

        user = await self._records.fetch_user(auth_user_id)
        if user is None:
            raise NotFoundError("User not found.")

        session = await self._records.fetch_session(submission.session_id, user.id)
        if session is None:
            raise AuthorizationError("Access to this session is denied.")
        ctx.session = session

        ctx.model = self._resolve_model(submission.model, session)
        ctx.capability = classify(ctx.model)
        logger.debug(f"Model {ctx.model} classified as {ctx.capability.value}")

        if ctx.capability is CapabilityClass.IMAGE_GENERATION:
            if not submission.message:
                raise ValidationError("A text prompt is required to generate images.")

    def _resolve_model(self, requested: str | None, session: ChatSession) -> str:
        """The session's model applies unless the request names a different one."""
        selected = requested or self._default_model
        if selected == self._default_model:
            return session.model or self._default_model
        return selected

    async def _upload_attachment(self, session_id: str, attachment: Attachment) -> str | None:
        extension = extension_for(attachment.mime_type, attachment.original_name)
        path = session_blob_path(session_id, "user", extension)
        try:
            await self._blobs.put(path, attachment.data, attachment.mime_type)
        except Exception as e:
            logger.error(f"Error uploading user file {attachment.original_name}: {e}")
            return None
        return path

    async def _persist_user_turn(self, ctx: TurnContext) -> None:
        submission = ctx.submission
        session_id = ctx.session.id
        paths = await asyncio.gather(
            *(self._upload_attachment(session_id, a) for a in submission.attachments)
        )
        stored = [(a, path) for a, path in zip(submission.attachments, paths) if path]

        for index, (attachment, path) in enumerate(stored):
            record_id = await self._records.append_message(
                MessageRecord(
                    session_id=session_id,
                    role="user",
                    content=submission.message or None,
                    message_type=message_type_for(attachment.mime_type),
                    file_path=path,
                    file_name=attachment.original_name,
                    file_type=attachment.mime_type,
                    metadata={"fileIndex": index},
                )
            )
            ctx.current_record_ids.add(record_id)

        if not stored and submission.message:
            record_id = await self._records.append_message(
                MessageRecord(
                    session_id=session_id,
                    role="user",
                    content=submission.message,
                    message_type="text",
                )
            )
            ctx.current_record_ids.add(record_id)

        logger.debug(
            f"Persisted {len(ctx.current_record_ids)} user record(s) for session {session_id}"
        )

    async def _generate_image(self, ctx: TurnContext) -> NormalizedResponse:
        # Image generation is stateless: only the prompt is sent.
        image_bytes = await self._model_client.generate_image(ctx.model, ctx.submission.message)
        if not image_bytes:
            raise UpstreamError("The API did not return an image.")

        ctx.enter(DispatchState.MATERIALIZING)
        return await self._materializer.materialize_generated_image(image_bytes, ctx.session.id)

    async def _converse(self, ctx: TurnContext) -> NormalizedResponse:
        submission = ctx.submission
        current = build_turn(submission.message, submission.attachments)
        if not current.parts:
            # Only unreadable files were sent: they are recorded, the model has nothing to answer.
            logger.info(
                f"No model-readable content in turn for session {ctx.session.id}, skipping the model call"
            )
            return NormalizedResponse(response="")

        records = await self._records.fetch_history(ctx.session.id)
        prior = [r for r in records if r.id not in ctx.current_record_ids]
        history = await self._history.normalize(prior)

        output = await self._model_client.generate_content(ctx.model, [*history, current])

        ctx.enter(DispatchState.MATERIALIZING)
        if ctx.capability is CapabilityClass.IMAGE_CAPABLE_CHAT and (
            output.text_parts or output.binary_parts
        ):
            return await self._materializer.materialize(output, ctx.session.id)
        return await self._materializer.materialize_text(output, ctx.session.id)
