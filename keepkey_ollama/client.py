"""
Ollama - async client facade.

Maps each API operation onto a buffered call (returns the decoded JSON body)
or a streamed call (returns an AbortableAsyncIterator), selected with the
`stream` keyword:

    async with Ollama("localhost:11434") as client:
        reply = await client.chat(model="llama3", messages=[{"role": "user", "content": "Hi"}])

        stream = await client.pull("llama3", stream=True)
        async for progress in stream:
            print(progress.get("status"))

Filesystem features (Modelfile blob uploads, image paths) go through an
optional LocalFiles capability, enabled by default outside browser runtimes.
"""

import base64
import logging
from pathlib import Path
from typing import Any, List, Optional, Union

import httpx

from keepkey_ollama.config import ClientConfig, is_browser_runtime
from keepkey_ollama.local import LocalFiles
from keepkey_ollama.schema import (
    ChatRequest,
    CopyRequest,
    CreateRequest,
    DeleteRequest,
    EmbeddingsRequest,
    EmbedRequest,
    GenerateRequest,
    Message,
    OllamaRequest,
    PullRequest,
    PushRequest,
    ShowRequest,
)
from keepkey_ollama.streaming import AbortController, AbortableAsyncIterator, parse_json_lines
from keepkey_ollama.transport import JsonBody, Transport

logger = logging.getLogger(__name__)

Image = Union[bytes, str]


class Ollama:
    """
    Client for one server.

    Args:
        host: Server address, normalized with format_host() unless proxy=True.
            Defaults to http://127.0.0.1:11434.
        api_key: Bearer token sent with every request
        proxy: Use `host` verbatim
        headers: Extra headers for every request
        config: Full ClientConfig (overrides host/api_key/proxy/headers)
        client: httpx.AsyncClient to issue requests with (not closed by us)
        transport: httpx transport to build our own client around
        local_files: LocalFiles capability, False to disable, or None to
            enable it whenever the runtime has a filesystem

    Raises:
        TransportUnavailableError: If `client` is not an httpx.AsyncClient
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        proxy: bool = False,
        headers: Optional[dict[str, str]] = None,
        config: Optional[ClientConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        local_files: Union[LocalFiles, bool, None] = None,
    ):
        self.config = config or ClientConfig(
            host=host or "",
            api_key=api_key,
            proxy=proxy,
            headers=headers or {},
        )
        self._transport = Transport(
            self.config.base_url,
            api_key=self.config.api_key,
            headers=self.config.headers,
            client=client,
            transport=transport,
        )

        if local_files is None:
            local_files = not is_browser_runtime()
        if local_files is True:
            local_files = LocalFiles(self._transport)
        self.files: Optional[LocalFiles] = local_files or None

        self._ongoing: list[AbortableAsyncIterator] = []

    @classmethod
    def from_env(cls, **kwargs) -> "Ollama":
        """Build a client from OLLAMA_HOST / OLLAMA_API_KEY."""
        host = kwargs.pop("host", None)
        api_key = kwargs.pop("api_key", None)
        return cls(config=ClientConfig.from_env(host=host, api_key=api_key), **kwargs)

    @property
    def host(self) -> str:
        return self._transport.host

    @property
    def ongoing_streams(self) -> list[AbortableAsyncIterator]:
        """Streams started by this client that have not completed yet."""
        return list(self._ongoing)

    # ─────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────

    def abort(self) -> None:
        """
        Abort every ongoing streamed request and forget them.

        Responses nobody is reading are released on the running loop right
        away, so their connections go back to the pool.
        """
        streams = list(self._ongoing)
        self._ongoing.clear()
        for stream in streams:
            stream.abort()
        if streams:
            logger.debug("Aborted %d ongoing stream(s)", len(streams))

    async def aclose(self) -> None:
        self.abort()
        await self._transport.aclose()

    async def __aenter__(self) -> "Ollama":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ─────────────────────────────────────────────────────────────────
    # REQUEST PLUMBING
    # ─────────────────────────────────────────────────────────────────

    async def _request(self, endpoint: str, request: OllamaRequest) -> dict:
        """Buffered POST; returns the decoded JSON body."""
        response = await self._transport.post(endpoint, JsonBody(request.to_body()))
        return response.json()

    async def _stream(self, endpoint: str, request: OllamaRequest) -> AbortableAsyncIterator:
        """Streamed POST; returns an iterator registered with this client."""
        controller = AbortController()
        response = await self._transport.stream_post(endpoint, JsonBody(request.to_body()))

        def remove() -> None:
            if stream in self._ongoing:
                self._ongoing.remove(stream)

        stream = AbortableAsyncIterator(
            controller,
            parse_json_lines(response.aiter_bytes()),
            done_callback=remove,
            on_close=response.aclose,
        )
        self._ongoing.append(stream)
        return stream

    async def _process(
        self, endpoint: str, request: Any
    ) -> Union[dict, AbortableAsyncIterator]:
        if request.stream:
            return await self._stream(endpoint, request)
        return await self._request(endpoint, request)

    # ─────────────────────────────────────────────────────────────────
    # FILES
    # ─────────────────────────────────────────────────────────────────

    async def encode_image(self, image: Image) -> str:
        """Encode raw bytes (or, with local files, an image path) as base64."""
        if self.files is not None:
            return await self.files.encode_image(image)
        if isinstance(image, str):
            return image
        return base64.b64encode(image).decode("ascii")

    async def create_blob(self, path: Union[str, Path]) -> str:
        """Upload a local file as a blob if the server lacks it; return the digest."""
        return await self._require_files("Blob uploads").create_blob(path)

    def _require_files(self, feature: str) -> LocalFiles:
        if self.files is None:
            raise ValueError(f"{feature} require local file access, which this client does not have")
        return self.files

    # ─────────────────────────────────────────────────────────────────
    # STREAMABLE OPERATIONS
    # ─────────────────────────────────────────────────────────────────

    async def generate(
        self,
        model: str,
        prompt: str = "",
        *,
        images: Optional[list[Image]] = None,
        stream: bool = False,
        **kwargs,
    ) -> Union[dict, AbortableAsyncIterator]:
        """POST /generate. kwargs: system, template, context, format, options, ..."""
        if images:
            images = [await self.encode_image(image) for image in images]
        request = GenerateRequest(
            model=model, prompt=prompt, images=images, stream=stream, **kwargs
        )
        return await self._process("generate", request)

    async def chat(
        self,
        model: str,
        messages: Optional[list[Union[Message, dict]]] = None,
        *,
        stream: bool = False,
        **kwargs,
    ) -> Union[dict, AbortableAsyncIterator]:
        """POST /chat. Message images are encoded before sending."""
        prepared = []
        for message in messages or []:
            if isinstance(message, dict):
                message = Message(**message)
            if message.images:
                encoded = [await self.encode_image(image) for image in message.images]
                message = message.model_copy(update={"images": encoded})
            prepared.append(message)
        request = ChatRequest(model=model, messages=prepared, stream=stream, **kwargs)
        return await self._process("chat", request)

    async def create(
        self,
        model: str,
        *,
        path: Optional[Union[str, Path]] = None,
        modelfile: Optional[str] = None,
        quantize: Optional[str] = None,
        stream: bool = False,
    ) -> Union[dict, AbortableAsyncIterator]:
        """
        POST /create.

        With local files, FROM/ADAPTER lines naming existing files are uploaded
        as blobs first. `path` is read from disk and resolved relative to its
        own directory; an inline `modelfile` resolves relative to cwd.

        Raises:
            ValueError: If neither path nor modelfile is given, or path is
                given without local file access
        """
        if path:
            content = await self._require_files("Modelfile paths").read_modelfile(path)
        elif modelfile:
            if self.files is not None:
                content = await self.files.rewrite(modelfile)
            else:
                content = modelfile
        else:
            raise ValueError("Must provide either path or modelfile to create a model")

        request = CreateRequest(
            name=model, stream=stream, modelfile=content, quantize=quantize
        )
        return await self._process("create", request)

    async def pull(
        self, model: str, *, insecure: Optional[bool] = None, stream: bool = False
    ) -> Union[dict, AbortableAsyncIterator]:
        """POST /pull."""
        request = PullRequest(name=model, stream=stream, insecure=insecure)
        return await self._process("pull", request)

    async def push(
        self, model: str, *, insecure: Optional[bool] = None, stream: bool = False
    ) -> Union[dict, AbortableAsyncIterator]:
        """POST /push."""
        request = PushRequest(name=model, stream=stream, insecure=insecure)
        return await self._process("push", request)

    # ─────────────────────────────────────────────────────────────────
    # BUFFERED OPERATIONS
    # ─────────────────────────────────────────────────────────────────

    async def delete(self, model: str) -> dict:
        """DELETE /delete."""
        await self._transport.delete("delete", JsonBody(DeleteRequest(name=model).to_body()))
        return {"status": "success"}

    async def copy(self, source: str, destination: str) -> dict:
        """POST /copy."""
        request = CopyRequest(source=source, destination=destination)
        await self._transport.post("copy", JsonBody(request.to_body()))
        return {"status": "success"}

    async def list(self) -> dict:
        """GET /tags - models available locally on the server."""
        response = await self._transport.get("tags")
        return response.json()

    async def ps(self) -> dict:
        """GET /ps - models currently loaded in memory."""
        response = await self._transport.get("ps")
        return response.json()

    async def show(self, model: str, **kwargs) -> dict:
        """POST /show."""
        return await self._request("show", ShowRequest(model=model, **kwargs))

    async def embed(self, model: str, input: Union[str, List[str]], **kwargs) -> dict:
        """POST /embed."""
        return await self._request("embed", EmbedRequest(model=model, input=input, **kwargs))

    async def embeddings(self, model: str, prompt: str, **kwargs) -> dict:
        """POST /embeddings (single-prompt legacy endpoint)."""
        return await self._request(
            "embeddings", EmbeddingsRequest(model=model, prompt=prompt, **kwargs)
        )


_default_client: Optional[Ollama] = None


def default_client() -> Ollama:
    """Shared client configured from the environment, created on first use."""
    global _default_client
    if _default_client is None:
        _default_client = Ollama.from_env()
    return _default_client
