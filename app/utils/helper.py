import asyncio
import mimetypes
import secrets
import time
from collections.abc import Callable
from pathlib import PurePosixPath
from typing import Any, TypeVar

from app.utils.errors import StorageError, StorageTimeoutError

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a blocking storage call in a worker thread with a deadline."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except TimeoutError as e:
        raise StorageTimeoutError(f"Storage call timed out after {timeout}s") from e
    except OSError as e:
        raise StorageError(str(e)) from e


def unique_suffix() -> str:
    """Millisecond timestamp plus a random token, e.g. `1718000000000_k3j9a1`."""
    return f"{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def extension_for(mime_type: str | None, filename: str | None = None, default: str = ".bin") -> str:
    """File extension (with dot) from a filename, else from the mime type."""
    if filename:
        suffix = PurePosixPath(filename).suffix
        if suffix:
            return suffix.lower()
    if mime_type:
        guessed = mimetypes.guess_extension(mime_type.split(";")[0].strip())
        if guessed:
            return ".jpg" if guessed == ".jpe" else guessed
    return default


def session_blob_path(session_id: str, prefix: str, extension: str) -> str:
    """Storage path for a session artifact: `chat/<session>/<prefix>_<ms>_<token><ext>`."""
    return f"chat/{session_id}/{prefix}_{unique_suffix()}{extension}"
