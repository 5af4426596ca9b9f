from app.models import InlinePart, MessageRecord, TextPart
from app.services.history import HistoryNormalizer

from .conftest import PNG_BYTES, FailingGetBlobStore


def _text(role, content, session_id="s1"):
    return MessageRecord(session_id=session_id, role=role, content=content)


def _file(role, path, content=None, mime="image/png", message_type="image"):
    return MessageRecord(
        session_id="s1",
        role=role,
        content=content,
        message_type=message_type,
        file_path=path,
        file_name=path.rsplit("/", 1)[-1],
        file_type=mime,
    )


async def test_preserves_order_and_inlines_user_files(blob_store):
    await blob_store.put("chat/s1/user_1.png", PNG_BYTES, "image/png")
    await blob_store.put("chat/s1/user_2.pdf", b"%PDF-1.4", "application/pdf")
    records = [
        _text("user", "first"),
        _text("model", "reply"),
        _file("user", "chat/s1/user_1.png", content="what is this?"),
        _file("user", "chat/s1/user_2.pdf", mime="application/pdf", message_type="file"),
    ]

    turns = await HistoryNormalizer(blob_store).normalize(records)

    assert [t.role for t in turns] == ["user", "model", "user", "user"]
    assert turns[0].parts == [TextPart(text="first")]
    assert turns[2].parts[0] == TextPart(text="what is this?")
    assert turns[2].parts[1].inline_data.data == PNG_BYTES
    assert turns[3].parts[0].inline_data.mime_type == "application/pdf"
    assert turns[3].parts[0].inline_data.data == b"%PDF-1.4"


async def test_model_binaries_are_not_reinlined(blob_store):
    await blob_store.put("chat/s1/response_1.png", PNG_BYTES, "image/png")
    records = [_file("model", "chat/s1/response_1.png"), _text("model", "here you go")]

    turns = await HistoryNormalizer(blob_store).normalize(records)

    assert len(turns) == 1
    assert turns[0].parts == [TextPart(text="here you go")]


async def test_fetch_failure_skips_only_the_binary(tmp_path):
    store = FailingGetBlobStore(tmp_path / "blobs")
    records = [
        _file("user", "chat/s1/user_1.png", content="caption"),
        _file("user", "chat/s1/user_2.png"),
        _text("user", "still here"),
    ]

    turns = await HistoryNormalizer(store).normalize(records)

    assert len(turns) == 2
    assert turns[0].parts == [TextPart(text="caption")]
    assert turns[1].parts == [TextPart(text="still here")]
    assert not any(isinstance(p, InlinePart) for t in turns for p in t.parts)


async def test_records_without_parts_are_dropped(blob_store):
    records = [_text("user", None), _text("model", ""), _text("user", "hi")]

    turns = await HistoryNormalizer(blob_store).normalize(records)

    assert len(turns) == 1
    assert turns[0].parts == [TextPart(text="hi")]


async def test_unreadable_files_stay_out_of_history(blob_store):
    await blob_store.put("chat/s1/user_1.zip", b"PK", "application/zip")
    records = [
        _file("user", "chat/s1/user_1.zip", mime="application/zip", message_type="file"),
        _file("user", "chat/s1/user_1.zip", content="see zip", mime="application/zip", message_type="file"),
    ]

    turns = await HistoryNormalizer(blob_store).normalize(records)

    assert len(turns) == 1
    assert turns[0].parts == [TextPart(text="see zip")]
