from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse
from loguru import logger

from app.models import (
    ArchiveSessionRequest,
    Attachment,
    ChatSubmission,
    CreateSessionRequest,
    HealthCheckResponse,
    ModelListResponse,
    UpdateTitleRequest,
)
from app.server.middleware import get_current_user, get_services
from app.services.registry import Services
from app.utils import g_config
from app.utils.errors import ValidationError

router = APIRouter()


# --- Helper Functions ---


async def _read_attachments(files: list[UploadFile]) -> list[Attachment]:
    """Read uploaded files, refusing oversize files and batches before anything is stored."""
    limits = g_config.uploads
    if len(files) > limits.max_files:
        raise ValidationError(f"At most {limits.max_files} files can be attached to one message.")

    attachments: list[Attachment] = []
    for upload in files:
        # One byte past the limit is enough to reject without buffering the rest.
        data = await upload.read(limits.max_file_size + 1)
        if len(data) > limits.max_file_size:
            raise ValidationError(
                f"File '{upload.filename}' exceeds the {limits.max_file_size // (1024 * 1024)} MB limit."
            )
        attachments.append(
            Attachment(
                original_name=upload.filename or "upload",
                mime_type=upload.content_type or "application/octet-stream",
                data=data,
                size_bytes=len(data),
            )
        )
    return attachments


# --- Main Router Endpoints ---


@router.post("/api/chat")
async def chat(
    message: str | None = Form(default=None),
    model: str | None = Form(default=None),
    session_id: str | None = Form(default=None, alias="sessionId"),
    # Accepted for client compatibility; history is always read from the store.
    history: str | None = Form(default=None),
    files: list[UploadFile] = File(default=[]),
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    attachments = await _read_attachments(files)
    submission = ChatSubmission(
        session_id=session_id,
        message=message or None,
        model=model or None,
        attachments=attachments,
    )
    logger.debug(
        f"Chat request: session={session_id}, model={model}, attachments={len(attachments)}"
    )
    response = await services.dispatcher.dispatch(submission, user_id)
    return JSONResponse(content=response.to_payload())


@router.get("/api/models", response_model=ModelListResponse, response_model_by_alias=True)
async def list_models(services: Services = Depends(get_services)):
    try:
        models = await services.model_client.list_models()
    except Exception as e:
        logger.exception("Error listing models")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not fetch the model list",
        ) from e
    return ModelListResponse(models=models)


@router.get("/api/sessions")
async def list_sessions(
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    sessions = await services.sessions.list_sessions(user_id)
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.post("/api/sessions")
async def create_session(
    request: CreateSessionRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    session = await services.sessions.create_session(user_id, request.title, request.model)
    return {"sessionId": session.id}


@router.get("/api/sessions/{session_id}/history")
async def get_history(
    session_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    messages = await services.sessions.get_history(user_id, session_id)
    return {"messages": [m.model_dump(mode="json") for m in messages]}


@router.put("/api/sessions/{session_id}/title")
async def update_title(
    session_id: str,
    request: UpdateTitleRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.sessions.update_title(user_id, session_id, request.title)
    return {"success": True}


@router.put("/api/sessions/{session_id}/pin")
async def toggle_pin(
    session_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    is_pinned = await services.sessions.toggle_pin(user_id, session_id)
    return {"isPinned": is_pinned}


@router.put("/api/sessions/{session_id}/archive")
async def archive_session(
    session_id: str,
    request: ArchiveSessionRequest,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.sessions.archive(user_id, session_id, request.archive)
    return {"success": True}


@router.delete("/api/sessions/{session_id}")
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.sessions.delete_session(user_id, session_id)
    return {"success": True}


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(services: Services = Depends(get_services)):
    try:
        storage = {
            "records": await services.record_store.stats(),
            "blobs": services.blob_store.status(),
        }
    except Exception as e:
        logger.warning(f"Health check failed: {e}")
        return HealthCheckResponse(ok=False, error=str(e))
    return HealthCheckResponse(ok=True, storage=storage)
