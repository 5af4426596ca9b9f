from .blob import BlobStore, LocalBlobStore
from .classifier import classify
from .client import GeminiModelClient, ModelClient
from .dispatcher import DispatchState, TurnDispatcher
from .history import HistoryNormalizer
from .lmdb import LMDBRecordStore, RecordStore
from .materializer import ResponseMaterializer
from .sessions import SessionService
from .turns import build_turn, is_model_consumable, validate_attachments

__all__ = [
    "BlobStore",
    "DispatchState",
    "GeminiModelClient",
    "HistoryNormalizer",
    "LMDBRecordStore",
    "LocalBlobStore",
    "ModelClient",
    "RecordStore",
    "ResponseMaterializer",
    "SessionService",
    "TurnDispatcher",
    "build_turn",
    "classify",
    "is_model_consumable",
    "validate_attachments",
]
