"""
LocalFiles - filesystem capability for the client.

Only available where the process can read local files and stream uploads
(not in browser runtimes). The client holds one of these, or None, and
routes Modelfile rewriting and image-path encoding through it.
"""

import asyncio
import base64
import logging
import os
from pathlib import Path
from typing import Optional, Union

from keepkey_ollama.blobs import BlobStore
from keepkey_ollama.modelfile import rewrite_modelfile
from keepkey_ollama.transport import Transport

logger = logging.getLogger(__name__)


class LocalFiles:
    """Blob uploads, Modelfile rewriting and image files for one transport."""

    def __init__(self, transport: Transport, blobs: Optional[BlobStore] = None):
        self.blobs = blobs or BlobStore(transport)

    async def create_blob(self, path: Union[str, Path]) -> str:
        return await self.blobs.create_blob(path)

    async def read_modelfile(self, path: Union[str, Path]) -> str:
        """Read a Modelfile and rewrite it relative to its own directory."""
        path = Path(path)
        text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return await self.rewrite(text, path.parent)

    async def rewrite(self, modelfile: str, base_dir: Optional[Union[str, Path]] = None) -> str:
        """Rewrite an inline Modelfile; relative paths resolve against cwd by default."""
        return await rewrite_modelfile(
            modelfile,
            base_dir if base_dir is not None else os.getcwd(),
            self.create_blob,
        )

    async def encode_image(self, image: Union[bytes, str]) -> str:
        """
        Encode an image for the API.

        A str naming an existing file is read and base64-encoded; any other
        str is assumed to be base64 already.
        """
        if not isinstance(image, str):
            return base64.b64encode(image).decode("ascii")
        try:
            if os.path.isfile(image):
                data = await asyncio.to_thread(Path(image).read_bytes)
                return base64.b64encode(data).decode("ascii")
        except (OSError, ValueError):
            # Unreadable as a path, send the string as given
            logger.debug("Image string is not a readable path")
        return image
