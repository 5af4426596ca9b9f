from dataclasses import dataclass

from loguru import logger

from app.utils.config import Config

from .blob import LocalBlobStore
from .client import GeminiModelClient, ModelClient
from .dispatcher import TurnDispatcher
from .lmdb import LMDBRecordStore, RecordStore
from .sessions import SessionService


@dataclass
class Services:
    """Process-wide collaborators built once by the application lifespan."""

    model_client: ModelClient
    record_store: RecordStore
    blob_store: LocalBlobStore
    dispatcher: TurnDispatcher
    sessions: SessionService


def assemble_services(
    config: Config,
    model_client: ModelClient,
    record_store: RecordStore,
    blob_store: LocalBlobStore,
) -> Services:
    """Wire the chat pipeline around already constructed clients."""
    dispatcher = TurnDispatcher(
        model_client,
        record_store,
        blob_store,
        default_model=config.gemini.default_model,
        max_files=config.uploads.max_files,
        max_file_size=config.uploads.max_file_size,
        url_ttl=config.storage.signed_url_ttl,
    )
    sessions = SessionService(record_store, blob_store, config.gemini.default_model)
    return Services(
        model_client=model_client,
        record_store=record_store,
        blob_store=blob_store,
        dispatcher=dispatcher,
        sessions=sessions,
    )


def build_services(config: Config) -> Services:
    """Construct the Gemini client and the stores from configuration."""
    storage = config.storage
    record_store = LMDBRecordStore(storage.path, storage.max_size, timeout=storage.timeout)
    blob_store = LocalBlobStore(
        storage.blob_path,
        base_url=storage.base_url,
        signing_key=storage.signing_key,
        timeout=storage.timeout,
    )
    model_client = GeminiModelClient(
        config.gemini.api_key,
        timeout=config.gemini.timeout,
        number_of_images=config.gemini.number_of_images,
    )
    logger.info(
        f"Services ready: records={storage.path}, blobs={storage.blob_path}, "
        f"default model={config.gemini.default_model}"
    )
    return assemble_services(config, model_client, record_store, blob_store)
