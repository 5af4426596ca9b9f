import pytest

from app.models import InlineData, ModelInfo, ModelOutput, TokenUsage, Turn
from app.services import LMDBRecordStore, LocalBlobStore
from app.services.registry import assemble_services
from app.utils import g_config
from app.utils.config import AuthUserSettings
from app.utils.errors import StorageError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
AUTH_USER = "auth-user-1"
AUTH_TOKEN = "token-1"


class FakeModelClient:
    """Records every call and returns canned output."""

    def __init__(self):
        self.content_calls: list[tuple[str, list[Turn]]] = []
        self.image_calls: list[tuple[str, str]] = []
        self.output = ModelOutput(
            text_parts=["Hello! How can I help?"],
            usage=TokenUsage(prompt_token_count=4, candidates_token_count=6, total_token_count=10),
        )
        self.image_bytes: bytes | None = PNG_BYTES
        self.error: Exception | None = None
        self.models = [
            ModelInfo(
                name="models/gemini-1.5-flash",
                display_name="Gemini 1.5 Flash",
                supported_actions=["generateContent"],
            )
        ]

    async def generate_content(self, model: str, contents: list[Turn]) -> ModelOutput:
        self.content_calls.append((model, contents))
        if self.error:
            raise self.error
        return self.output

    async def generate_image(self, model: str, prompt: str) -> bytes | None:
        self.image_calls.append((model, prompt))
        if self.error:
            raise self.error
        return self.image_bytes

    async def list_models(self) -> list[ModelInfo]:
        if self.error:
            raise self.error
        return self.models


class FailingPutBlobStore(LocalBlobStore):
    """Blob store whose writes always fail."""

    async def put(self, path: str, data: bytes, mime_type: str) -> None:
        raise StorageError("bucket unavailable")


class FailingGetBlobStore(LocalBlobStore):
    """Blob store whose reads always fail."""

    async def get(self, path: str) -> bytes:
        raise StorageError("download failed")


def image_output(*texts: str) -> ModelOutput:
    return ModelOutput(
        text_parts=list(texts),
        binary_parts=[InlineData(mime_type="image/png", data=PNG_BYTES)],
    )


@pytest.fixture
def record_store(tmp_path):
    store = LMDBRecordStore(tmp_path / "lmdb", max_size=10 * 1024 * 1024, timeout=5)
    yield store
    store.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", signing_key="secret", timeout=5)


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def services(record_store, blob_store, model_client):
    return assemble_services(g_config, model_client, record_store, blob_store)


@pytest.fixture
async def user(record_store):
    return await record_store.register_user(AUTH_USER)


@pytest.fixture
async def session(record_store, user):
    return await record_store.create_session(user.id, "Test chat", "gemini-1.5-flash")


@pytest.fixture
def auth_users(monkeypatch):
    monkeypatch.setattr(
        g_config.auth, "users", [AuthUserSettings(id=AUTH_USER, token=AUTH_TOKEN)]
    )
