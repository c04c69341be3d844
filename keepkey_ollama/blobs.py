"""
Content-addressed blob uploads.

A blob is identified by the SHA-256 of its bytes ("sha256:<hex>"). Uploading
is a two-step exchange with the server:

    HEAD /api/blobs/<digest>   200 -> already there, nothing to do
                               404 -> POST /api/blobs/<digest> with the file bytes

Files are streamed in BLOB_CHUNK_SIZE pieces both when hashing and when
uploading; model weights can be many gigabytes.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from keepkey_ollama.config import BLOB_CHUNK_SIZE, DIGEST_ALGORITHM, is_browser_runtime
from keepkey_ollama.errors import ResponseError, StreamingUploadUnsupportedError
from keepkey_ollama.transport import RawBody, Transport

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def hash_file(path: PathLike, chunk_size: int = BLOB_CHUNK_SIZE) -> str:
    """Return the blob digest of a file, reading it chunk by chunk."""
    hasher = hashlib.new(DIGEST_ALGORITHM)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return f"{DIGEST_ALGORITHM}:{hasher.hexdigest()}"


async def iter_file(path: PathLike, chunk_size: int = BLOB_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a file's bytes without blocking the event loop."""
    f = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        f.close()


class BlobStore:
    """
    Ensures the server holds a blob for a given local file.

    Args:
        transport: Transport bound to the server
        streaming_uploads: Whether the runtime can send streaming request
            bodies. None detects it (unavailable in browser runtimes).
        chunk_size: Read size for hashing and uploading
    """

    def __init__(
        self,
        transport: Transport,
        streaming_uploads: Optional[bool] = None,
        chunk_size: int = BLOB_CHUNK_SIZE,
    ):
        self._transport = transport
        if streaming_uploads is None:
            streaming_uploads = not is_browser_runtime()
        self.streaming_uploads = streaming_uploads
        self._chunk_size = chunk_size

    async def digest(self, path: PathLike) -> str:
        """Hash a file in a worker thread."""
        return await asyncio.to_thread(hash_file, path, self._chunk_size)

    async def exists(self, digest: str) -> bool:
        """
        Probe the server for a blob.

        Returns False only for a 404. Any other failure propagates.
        """
        try:
            await self._transport.head(f"blobs/{digest}")
        except ResponseError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def upload(self, path: PathLike, digest: str) -> None:
        """Stream a file to the server under the given digest."""
        logger.debug("Uploading %s as %s", path, digest)
        await self._transport.post(
            f"blobs/{digest}",
            RawBody(iter_file(path, self._chunk_size), "application/octet-stream"),
        )

    async def create_blob(self, path: PathLike) -> str:
        """
        Make sure the server has the blob for `path`; return its digest.

        Raises:
            StreamingUploadUnsupportedError: If the runtime cannot stream uploads
            ResponseError: If the existence probe fails with anything but 404,
                or the upload itself fails
        """
        if not self.streaming_uploads:
            raise StreamingUploadUnsupportedError(
                "Streaming uploads are not supported in this environment."
            )

        digest = await self.digest(path)
        if not await self.exists(digest):
            await self.upload(path, digest)
        else:
            logger.debug("Blob %s already present", digest)
        return digest
