import pytest

from app.models import MessageRecord
from app.services import SessionService
from app.utils.errors import AuthorizationError, NotFoundError

from .conftest import AUTH_USER, PNG_BYTES


class FailingRemoveBlobStore:
    async def remove(self, paths):
        raise OSError("storage offline")


async def test_create_session_defaults(services, user):
    session = await services.sessions.create_session(AUTH_USER)

    assert session.title == "New conversation"
    assert session.model == "gemini-1.5-flash"
    assert session.user_id == user.id


async def test_unknown_user_and_foreign_session(services, record_store, session):
    with pytest.raises(NotFoundError):
        await services.sessions.list_sessions("nobody")

    await record_store.register_user("intruder")
    with pytest.raises(AuthorizationError):
        await services.sessions.get_history("intruder", session.id)
    with pytest.raises(AuthorizationError):
        await services.sessions.delete_session("intruder", session.id)


async def test_delete_removes_blobs_and_records(services, record_store, blob_store, session):
    path = f"chat/{session.id}/user_1.png"
    await blob_store.put(path, PNG_BYTES, "image/png")
    await record_store.append_message(
        MessageRecord(
            session_id=session.id,
            role="user",
            message_type="image",
            file_path=path,
            file_name="cat.png",
            file_type="image/png",
        )
    )

    await services.sessions.delete_session(AUTH_USER, session.id)

    assert not blob_store.resolve(path).exists()
    assert await record_store.fetch_history(session.id) == []
    assert await services.sessions.list_sessions(AUTH_USER) == []


async def test_delete_continues_when_storage_fails(record_store, session):
    sessions = SessionService(record_store, FailingRemoveBlobStore(), "gemini-1.5-flash")
    await record_store.append_message(
        MessageRecord(
            session_id=session.id,
            role="model",
            message_type="image",
            file_path=f"chat/{session.id}/generated_1.png",
            file_name="generated_1.png",
            file_type="image/png",
        )
    )

    await sessions.delete_session(AUTH_USER, session.id)

    assert await record_store.fetch_history(session.id) == []
