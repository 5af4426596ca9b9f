import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, TypeVar

import lmdb
import orjson
from loguru import logger
from pydantic import BaseModel

from app.models import ChatSession, MessageRecord, UserRecord
from app.utils.errors import StorageError
from app.utils.helper import run_blocking

M = TypeVar("M", bound=BaseModel)


class RecordStore(Protocol):
    """Users, sessions and the append-only message log."""

    async def append_message(self, record: MessageRecord) -> str: ...

    async def fetch_history(self, session_id: str) -> list[MessageRecord]: ...

    async def fetch_session(self, session_id: str, owner_id: str) -> ChatSession | None: ...

    async def fetch_user(self, auth_user_id: str) -> UserRecord | None: ...

    async def register_user(self, auth_user_id: str) -> UserRecord: ...

    async def create_session(self, owner_id: str, title: str, model: str) -> ChatSession: ...

    async def list_sessions(self, owner_id: str) -> list[ChatSession]: ...

    async def update_session_title(self, session_id: str, title: str) -> None: ...

    async def toggle_session_pin(self, session_id: str) -> bool: ...

    async def archive_session(self, session_id: str, archive: bool) -> None: ...

    async def list_file_paths(self, session_id: str) -> list[str]: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def stats(self) -> dict[str, Any]: ...


def _dumps(model: BaseModel) -> bytes:
    return orjson.dumps(model.model_dump(mode="json"))


def _loads(model_cls: type[M], raw: bytes) -> M:
    return model_cls.model_validate(orjson.loads(raw))


def _message_prefix(session_id: str) -> bytes:
    return f"{session_id}:".encode()


def _message_key(session_id: str, seq: int) -> bytes:
    return f"{session_id}:{seq:012d}".encode()


class LMDBRecordStore:
    """Record store on LMDB.

    Three named databases are used:
      users     auth user id -> UserRecord
      sessions  session id   -> ChatSession
      messages  "<session id>:<seq>" -> MessageRecord

    Message sequence numbers are assigned inside the write transaction that
    stores the message, so appends to one session are totally ordered.
    """

    def __init__(self, path: str | Path, max_size: int, timeout: float = 30) -> None:
        self._path = Path(path)
        self._path.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._env = lmdb.open(str(self._path), map_size=max_size, max_dbs=3)
        self._users = self._env.open_db(b"users")
        self._sessions = self._env.open_db(b"sessions")
        self._messages = self._env.open_db(b"messages")
        logger.info(f"LMDB record store opened at {self._path}")

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await run_blocking(func, *args, timeout=self._timeout)
        except lmdb.Error as e:
            raise StorageError(f"LMDB error: {e}") from e

    def close(self) -> None:
        self._env.close()

    def _stats(self) -> dict[str, Any]:
        with self._env.begin() as txn:
            return {
                "path": str(self._path),
                "users": txn.stat(self._users)["entries"],
                "sessions": txn.stat(self._sessions)["entries"],
                "messages": txn.stat(self._messages)["entries"],
            }

    async def stats(self) -> dict[str, Any]:
        return await self._run(self._stats)

    # --- Users ---

    def _fetch_user(self, auth_user_id: str) -> UserRecord | None:
        with self._env.begin(db=self._users) as txn:
            raw = txn.get(auth_user_id.encode())
        return _loads(UserRecord, raw) if raw is not None else None

    def _register_user(self, auth_user_id: str) -> UserRecord:
        key = auth_user_id.encode()
        with self._env.begin(write=True, db=self._users) as txn:
            raw = txn.get(key)
            if raw is not None:
                return _loads(UserRecord, raw)
            user = UserRecord(id=uuid.uuid4().hex, user_id=auth_user_id)
            txn.put(key, _dumps(user))
        logger.info(f"Registered user record {user.id} for auth user {auth_user_id}")
        return user

    async def fetch_user(self, auth_user_id: str) -> UserRecord | None:
        return await self._run(self._fetch_user, auth_user_id)

    async def register_user(self, auth_user_id: str) -> UserRecord:
        return await self._run(self._register_user, auth_user_id)

    # --- Sessions ---

    def _get_session(self, txn: lmdb.Transaction, session_id: str) -> ChatSession | None:
        raw = txn.get(session_id.encode(), db=self._sessions)
        return _loads(ChatSession, raw) if raw is not None else None

    def _fetch_session(self, session_id: str, owner_id: str) -> ChatSession | None:
        with self._env.begin() as txn:
            session = self._get_session(txn, session_id)
        if session is None or session.user_id != owner_id:
            return None
        return session

    def _create_session(self, owner_id: str, title: str, model: str) -> ChatSession:
        session = ChatSession(id=uuid.uuid4().hex, user_id=owner_id, title=title, model=model)
        with self._env.begin(write=True, db=self._sessions) as txn:
            txn.put(session.id.encode(), _dumps(session))
        return session

    def _list_sessions(self, owner_id: str) -> list[ChatSession]:
        sessions: list[ChatSession] = []
        with self._env.begin(db=self._sessions) as txn:
            for _, raw in txn.cursor():
                session = _loads(ChatSession, raw)
                if session.user_id == owner_id:
                    sessions.append(session)

        def _activity(s: ChatSession) -> float:
            return (s.last_message_at or s.created_at).timestamp()

        sessions.sort(key=lambda s: (s.is_pinned, _activity(s)), reverse=True)
        return sessions

    def _update_session(self, session_id: str, **changes: Any) -> ChatSession:
        with self._env.begin(write=True) as txn:
            session = self._get_session(txn, session_id)
            if session is None:
                raise StorageError(f"Session {session_id} not found")
            session = session.model_copy(update={**changes, "updated_at": datetime.now(tz=UTC)})
            txn.put(session_id.encode(), _dumps(session), db=self._sessions)
        return session

    def _toggle_session_pin(self, session_id: str) -> bool:
        with self._env.begin(write=True) as txn:
            session = self._get_session(txn, session_id)
            if session is None:
                raise StorageError(f"Session {session_id} not found")
            session.is_pinned = not session.is_pinned
            session.updated_at = datetime.now(tz=UTC)
            txn.put(session_id.encode(), _dumps(session), db=self._sessions)
        return session.is_pinned

    def _delete_session(self, session_id: str) -> None:
        prefix = _message_prefix(session_id)
        deleted = 0
        with self._env.begin(write=True) as txn:
            cursor = txn.cursor(db=self._messages)
            if cursor.set_range(prefix):
                while cursor.key().startswith(prefix):
                    if not cursor.delete():
                        break
                    deleted += 1
            txn.delete(session_id.encode(), db=self._sessions)
        logger.debug(f"Deleted session {session_id} with {deleted} messages")

    async def fetch_session(self, session_id: str, owner_id: str) -> ChatSession | None:
        return await self._run(self._fetch_session, session_id, owner_id)

    async def create_session(self, owner_id: str, title: str, model: str) -> ChatSession:
        return await self._run(self._create_session, owner_id, title, model)

    async def list_sessions(self, owner_id: str) -> list[ChatSession]:
        return await self._run(self._list_sessions, owner_id)

    async def update_session_title(self, session_id: str, title: str) -> None:
        await self._run(lambda: self._update_session(session_id, title=title))

    async def toggle_session_pin(self, session_id: str) -> bool:
        return await self._run(self._toggle_session_pin, session_id)

    async def archive_session(self, session_id: str, archive: bool) -> None:
        await self._run(lambda: self._update_session(session_id, is_archived=archive))

    async def delete_session(self, session_id: str) -> None:
        await self._run(self._delete_session, session_id)

    # --- Messages ---

    def _append_message(self, record: MessageRecord) -> str:
        if record.id is None:
            record = record.model_copy(update={"id": uuid.uuid4().hex})
        with self._env.begin(write=True) as txn:
            session = self._get_session(txn, record.session_id)
            if session is None:
                raise StorageError(f"Session {record.session_id} not found")
            txn.put(_message_key(session.id, session.message_count), _dumps(record), db=self._messages)
            session.message_count += 1
            session.last_message_at = record.created_at
            session.updated_at = datetime.now(tz=UTC)
            txn.put(session.id.encode(), _dumps(session), db=self._sessions)
        return record.id

    def _fetch_history(self, session_id: str) -> list[MessageRecord]:
        prefix = _message_prefix(session_id)
        records: list[MessageRecord] = []
        with self._env.begin(db=self._messages) as txn:
            cursor = txn.cursor()
            if cursor.set_range(prefix):
                for key, raw in cursor:
                    if not key.startswith(prefix):
                        break
                    records.append(_loads(MessageRecord, raw))
        return records

    def _list_file_paths(self, session_id: str) -> list[str]:
        return [r.file_path for r in self._fetch_history(session_id) if r.file_path]

    async def append_message(self, record: MessageRecord) -> str:
        return await self._run(self._append_message, record)

    async def fetch_history(self, session_id: str) -> list[MessageRecord]:
        return await self._run(self._fetch_history, session_id)

    async def list_file_paths(self, session_id: str) -> list[str]:
        return await self._run(self._list_file_paths, session_id)
