import re

import pytest

from app.models import ModelOutput, TokenUsage
from app.services import LocalBlobStore
from app.services.materializer import ResponseMaterializer
from app.utils.errors import StorageError

from .conftest import PNG_BYTES, FailingPutBlobStore, image_output


async def test_text_and_images_are_stored_and_recorded(record_store, blob_store, session):
    output = image_output("Here is a cat", "and a caption")
    output.usage = TokenUsage(prompt_token_count=3, total_token_count=9)

    response = await ResponseMaterializer(record_store, blob_store).materialize(output, session.id)

    assert response.text == "Here is a cat\nand a caption"
    assert len(response.images) == 1
    assert response.images[0].startswith(f"/files/chat/{session.id}/response_")
    assert "token=" in response.images[0]

    records = await record_store.fetch_history(session.id)
    assert [(r.role, r.message_type) for r in records] == [("model", "text"), ("model", "image")]
    assert records[0].metadata == {"usage": {"promptTokenCount": 3, "totalTokenCount": 9}}
    assert await blob_store.get(records[1].file_path) == PNG_BYTES
    assert re.fullmatch(rf"chat/{session.id}/response_\d+_[0-9a-f]+\.png", records[1].file_path)

    payload = response.to_payload()
    assert payload["usage"] == {"promptTokenCount": 3, "totalTokenCount": 9}
    assert "response" not in payload


async def test_store_failure_falls_back_to_inline_image(record_store, tmp_path, session):
    blobs = FailingPutBlobStore(tmp_path / "failing")

    response = await ResponseMaterializer(record_store, blobs).materialize(
        image_output(), session.id
    )

    assert response.images[0].startswith("data:image/png;base64,")
    assert response.text is None
    assert await record_store.fetch_history(session.id) == []


async def test_signing_failure_falls_back_to_public_url(record_store, tmp_path, session):
    blobs = LocalBlobStore(tmp_path / "unsigned", signing_key=None)

    response = await ResponseMaterializer(record_store, blobs).materialize(
        image_output(), session.id
    )

    url = response.images[0]
    assert url.startswith(f"/files/chat/{session.id}/response_")
    assert "token=" not in url


async def test_generated_image_is_persisted_before_response(record_store, blob_store, session):
    response = await ResponseMaterializer(record_store, blob_store).materialize_generated_image(
        PNG_BYTES, session.id
    )

    assert response.is_stored_image is True
    records = await record_store.fetch_history(session.id)
    assert len(records) == 1
    assert re.fullmatch(rf"chat/{session.id}/generated_\d+_[0-9a-f]+\.png", records[0].file_path)
    assert records[0].content is None
    assert response.to_payload() == {"image": response.image, "isStoredImage": True}


async def test_generated_image_store_failure(record_store, tmp_path, session):
    blobs = FailingPutBlobStore(tmp_path / "failing")

    response = await ResponseMaterializer(record_store, blobs).materialize_generated_image(
        PNG_BYTES, session.id
    )

    assert response.is_stored_image is False
    assert response.image.startswith("data:image/png;base64,")
    assert await record_store.fetch_history(session.id) == []


async def test_legacy_text_response(record_store, blob_store, session):
    output = ModelOutput(text_parts=["a", "b"], usage=TokenUsage(total_token_count=2))

    response = await ResponseMaterializer(record_store, blob_store).materialize_text(
        output, session.id
    )

    assert response.to_payload() == {"response": "a\nb", "usage": {"totalTokenCount": 2}}
    records = await record_store.fetch_history(session.id)
    assert len(records) == 1
    assert records[0].content == "a\nb"


async def test_nonempty_output_never_yields_empty_response(record_store, tmp_path, session):
    blobs = FailingPutBlobStore(tmp_path / "failing")
    materializer = ResponseMaterializer(record_store, blobs)

    for output in (ModelOutput(text_parts=["x"]), image_output()):
        assert (await materializer.materialize(output, session.id)).to_payload()


async def test_append_to_unknown_session_raises(record_store, blob_store):
    materializer = ResponseMaterializer(record_store, blob_store)
    with pytest.raises(StorageError):
        await materializer.materialize_text(ModelOutput(text_parts=["x"]), "missing")
