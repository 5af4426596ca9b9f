import hashlib
import hmac
import threading
import time
from collections.abc import Callable
from pathlib import Path, PurePosixPath
from typing import Any, Protocol
from urllib.parse import quote, urlencode

from loguru import logger

from app.utils.errors import StorageError, StorageTimeoutError
from app.utils.helper import run_blocking


class BlobStore(Protocol):
    """Durable storage for uploaded and generated files."""

    async def put(self, path: str, data: bytes, mime_type: str) -> None: ...

    async def get(self, path: str) -> bytes: ...

    async def remove(self, paths: list[str]) -> None: ...

    async def signed_url(self, path: str, ttl_seconds: int) -> str: ...

    def public_url(self, path: str) -> str: ...


def sign_blob_path(path: str, expires: int, secret: str) -> str:
    """Generate a HMAC-SHA256 token binding a blob path to an expiry timestamp."""
    msg = f"{path}:{expires}".encode()
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


class LocalBlobStore:
    """Blob store backed by a local directory, served through `/files`."""

    def __init__(
        self,
        root: str | Path,
        base_url: str = "/files",
        signing_key: str | None = None,
        timeout: float = 30,
    ) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url.rstrip("/")
        self._signing_key = signing_key
        self._timeout = timeout

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, path: str) -> Path:
        """Map a blob path onto the storage directory, refusing anything outside it."""
        relative = PurePosixPath(path)
        if not path or relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid blob path: {path!r}")
        return self._root.joinpath(*relative.parts)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        return await run_blocking(func, *args, timeout=self._timeout)

    async def put(self, path: str, data: bytes, mime_type: str) -> None:
        target = self.resolve(path)
        abandoned = threading.Event()

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Paths are never overwritten.
            with target.open("xb") as f:
                f.write(data)
            # The caller already reported this write as failed.
            if abandoned.is_set():
                target.unlink(missing_ok=True)

        try:
            await self._run(_write)
        except StorageTimeoutError:
            abandoned.set()
            await self._discard_late_write(target, path)
            raise
        logger.debug(f"Stored {len(data)} bytes ({mime_type}) at {path}")

    async def _discard_late_write(self, target: Path, path: str) -> None:
        """Remove a file whose write finished after its deadline.

        A write still in flight removes its own file once it sees the abandoned flag.
        """
        try:
            await self._run(target.unlink, True)
        except StorageError as e:
            logger.warning(f"Could not discard timed-out write of {path}: {e}")
        else:
            logger.warning(f"Write of {path} timed out, discarded any partial file")

    async def get(self, path: str) -> bytes:
        target = self.resolve(path)
        return await self._run(target.read_bytes)

    async def remove(self, paths: list[str]) -> None:
        targets = [self.resolve(path) for path in paths]

        def _unlink_all() -> list[str]:
            failed = []
            for target in targets:
                try:
                    target.unlink(missing_ok=True)
                except OSError as e:
                    failed.append(f"{target.name}: {e}")
            return failed

        failed = await self._run(_unlink_all)
        if failed:
            raise StorageError(f"Failed to remove {len(failed)} file(s): {'; '.join(failed)}")

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self._signing_key:
            raise StorageError("URL signing is not configured")
        self.resolve(path)
        expires = int(time.time()) + ttl_seconds
        token = sign_blob_path(path, expires, self._signing_key)
        query = urlencode({"expires": expires, "token": token})
        return f"{self._base_url}/{quote(path)}?{query}"

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/{quote(path)}"

    def verify_token(self, path: str, expires: int | None, token: str | None) -> bool:
        """Verify a signed URL token. Without a signing key every file is public."""
        if not self._signing_key:
            return True
        if not token or expires is None:
            return False
        if expires < int(time.time()):
            return False
        expected = sign_blob_path(path, expires, self._signing_key)
        return hmac.compare_digest(token, expected)

    def status(self) -> dict[str, Any]:
        return {"root": str(self._root), "signed_urls": bool(self._signing_key)}
