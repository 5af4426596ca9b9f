from app.models import MessageRecord
from scripts.dump_store import dump_store


async def test_dump_store_filters_by_session(record_store, user, session):
    other = await record_store.create_session(user.id, "Other", "gemini-1.5-flash")
    await record_store.append_message(MessageRecord(session_id=session.id, role="user", content="a"))
    await record_store.append_message(MessageRecord(session_id=other.id, role="user", content="b"))
    record_store.close()

    records = dump_store(record_store._path, ["messages"], session=session.id)

    assert list(records) == ["messages"]
    assert [r["value"]["content"] for r in records["messages"]] == ["a"]
    assert records["messages"][0]["key"] == f"{session.id}:{0:012d}"


async def test_dump_store_all_databases(record_store, user, session):
    record_store.close()

    records = dump_store(record_store._path, ("users", "sessions", "messages"))

    assert [r["key"] for r in records["users"]] == [user.user_id]
    assert [r["value"]["title"] for r in records["sessions"]] == ["Test chat"]
    assert records["messages"] == []
