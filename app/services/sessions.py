from loguru import logger

from app.models import ChatSession, MessageRecord, UserRecord
from app.utils.errors import AuthorizationError, NotFoundError

from .blob import BlobStore
from .lmdb import RecordStore

DEFAULT_SESSION_TITLE = "New conversation"


class SessionService:
    """Owner-checked session operations around the record store."""

    def __init__(self, record_store: RecordStore, blob_store: BlobStore, default_model: str):
        self._records = record_store
        self._blobs = blob_store
        self._default_model = default_model

    async def get_user(self, auth_user_id: str) -> UserRecord:
        user = await self._records.fetch_user(auth_user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    async def get_owned_session(self, auth_user_id: str, session_id: str) -> ChatSession:
        user = await self.get_user(auth_user_id)
        session = await self._records.fetch_session(session_id, user.id)
        if session is None:
            raise AuthorizationError("Access to this session is denied.")
        return session

    async def list_sessions(self, auth_user_id: str) -> list[ChatSession]:
        user = await self.get_user(auth_user_id)
        return await self._records.list_sessions(user.id)

    async def create_session(
        self, auth_user_id: str, title: str | None = None, model: str | None = None
    ) -> ChatSession:
        user = await self.get_user(auth_user_id)
        session = await self._records.create_session(
            user.id, title or DEFAULT_SESSION_TITLE, model or self._default_model
        )
        logger.info(f"Created session {session.id} for user {user.id} with model {session.model}")
        return session

    async def get_history(self, auth_user_id: str, session_id: str) -> list[MessageRecord]:
        session = await self.get_owned_session(auth_user_id, session_id)
        return await self._records.fetch_history(session.id)

    async def update_title(self, auth_user_id: str, session_id: str, title: str) -> None:
        session = await self.get_owned_session(auth_user_id, session_id)
        await self._records.update_session_title(session.id, title)

    async def toggle_pin(self, auth_user_id: str, session_id: str) -> bool:
        session = await self.get_owned_session(auth_user_id, session_id)
        return await self._records.toggle_session_pin(session.id)

    async def archive(self, auth_user_id: str, session_id: str, archive: bool) -> None:
        session = await self.get_owned_session(auth_user_id, session_id)
        await self._records.archive_session(session.id, archive)

    async def delete_session(self, auth_user_id: str, session_id: str) -> None:
        """Remove every stored file of the session, then the session and its messages.

        A storage failure is logged and does not stop the record deletion.
        """
        session = await self.get_owned_session(auth_user_id, session_id)
        file_paths = await self._records.list_file_paths(session.id)
        if file_paths:
            logger.info(f"Deleting {len(file_paths)} file(s) of session {session.id} from storage")
            try:
                await self._blobs.remove(file_paths)
            except Exception as e:
                logger.error(f"Error deleting files of session {session.id} from storage: {e}")

        await self._records.delete_session(session.id)
        logger.info(f"Deleted session {session.id}")
