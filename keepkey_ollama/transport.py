"""
Transport adapter: one httpx.AsyncClient, standard headers, HTTP error mapping.

The client is resolved once, at construction:
    1. an explicit httpx.AsyncClient
    2. an explicit httpx transport (e.g. httpx.MockTransport) wrapped in a new client
    3. a default httpx.AsyncClient with no timeout

Request bodies are a tagged union so callers state what they send:
    JsonBody(data)            -> serialized with json.dumps
    RawBody(content, type)    -> bytes or an async byte iterator, sent as-is
"""

import json
import logging
import platform
import sys
from dataclasses import dataclass
from typing import Any, AsyncIterable, Optional, Union

import httpx

from keepkey_ollama.config import API_PREFIX, is_browser_runtime
from keepkey_ollama.errors import ResponseError, TransportUnavailableError
from keepkey_ollama.version import __version__

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# REQUEST BODIES
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JsonBody:
    """Structured data serialized to JSON."""
    data: Any


@dataclass(frozen=True)
class RawBody:
    """Raw bytes (or an async stream of bytes) sent without serialization."""
    content: Union[bytes, AsyncIterable[bytes]]
    content_type: str = "application/octet-stream"


Body = Union[JsonBody, RawBody]


# ─────────────────────────────────────────────────────────────────────
# HEADERS
# ─────────────────────────────────────────────────────────────────────

def get_platform() -> str:
    """Describe the host runtime for the User-Agent header."""
    runtime = "Browser/Pyodide" if is_browser_runtime() else f"Python/{platform.python_version()}"
    return f"{platform.machine().lower() or 'unknown'} {sys.platform} {runtime}"


def user_agent() -> str:
    return f"keepkey-ollama/{__version__} ({get_platform()})"


def default_headers() -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": user_agent(),
    }


# ─────────────────────────────────────────────────────────────────────
# ERROR MAPPING
# ─────────────────────────────────────────────────────────────────────

async def check_ok(response: httpx.Response) -> None:
    """
    Raise ResponseError for a non-2xx response.

    The message is taken from the JSON body's "error" field, else the raw
    body text, else the status line. Works for streamed responses too
    (the body is read before inspection).
    """
    if response.is_success:
        return

    message = f"Error {response.status_code}: {response.reason_phrase}"
    await response.aread()

    if "application/json" in response.headers.get("content-type", ""):
        try:
            data = response.json()
            if isinstance(data, dict) and data.get("error"):
                message = str(data["error"])
        except ValueError:
            logger.debug("Failed to parse error response as JSON")
    else:
        text = response.text
        if text:
            message = text

    raise ResponseError(message, response.status_code)


# ─────────────────────────────────────────────────────────────────────
# CLIENT RESOLUTION
# ─────────────────────────────────────────────────────────────────────

def resolve_client(
    client: Optional[httpx.AsyncClient] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[httpx.AsyncClient, bool]:
    """
    Resolve the HTTP client used for every request.

    Returns (client, owned). Owned clients are closed by Transport.aclose().

    Raises:
        TransportUnavailableError: If `client` is not an httpx.AsyncClient
    """
    if client is not None:
        if not isinstance(client, httpx.AsyncClient):
            raise TransportUnavailableError(
                f"An httpx.AsyncClient is required, got {type(client).__name__}. "
                "Provide an async client or an httpx transport."
            )
        return client, False
    if transport is not None:
        return httpx.AsyncClient(transport=transport, timeout=None), True
    return httpx.AsyncClient(timeout=None), True


# ─────────────────────────────────────────────────────────────────────
# TRANSPORT
# ─────────────────────────────────────────────────────────────────────

class Transport:
    """
    Issues requests against <host>/api/<endpoint>.

    Every call carries the default headers, the configured extra headers and,
    when an API key is set, a bearer token. Per-call headers win.
    """

    def __init__(
        self,
        host: str,
        api_key: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.host = host
        self._api_key = api_key
        self._extra_headers = dict(headers or {})
        self._client, self._owns_client = resolve_client(client, transport)

    def url(self, endpoint: str) -> str:
        return f"{self.host}{API_PREFIX}/{endpoint.lstrip('/')}"

    def _headers(self, headers: Optional[dict[str, str]] = None) -> dict[str, str]:
        merged = default_headers()
        merged.update(self._extra_headers)
        if self._api_key:
            merged["Authorization"] = f"Bearer {self._api_key}"
        if headers:
            merged.update(headers)
        return merged

    def _build(
        self,
        method: str,
        endpoint: str,
        body: Optional[Body],
        headers: Optional[dict[str, str]],
    ) -> httpx.Request:
        url = self.url(endpoint)
        content = None
        call_headers = dict(headers or {})
        if isinstance(body, JsonBody):
            content = json.dumps(body.data)
        elif isinstance(body, RawBody):
            content = body.content
            call_headers.setdefault("Content-Type", body.content_type)
        logger.debug("%s %s", method, url)
        return self._client.build_request(
            method, url, headers=self._headers(call_headers), content=content
        )

    async def request(
        self,
        method: str,
        endpoint: str,
        body: Optional[Body] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a buffered request. Raises ResponseError on non-2xx."""
        response = await self._client.send(self._build(method, endpoint, body, headers))
        await check_ok(response)
        return response

    async def get(self, endpoint: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        return await self.request("GET", endpoint, headers=headers)

    async def head(self, endpoint: str, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        return await self.request("HEAD", endpoint, headers=headers)

    async def post(
        self,
        endpoint: str,
        body: Optional[Body] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        return await self.request("POST", endpoint, body, headers)

    async def delete(
        self,
        endpoint: str,
        body: Optional[Body] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        return await self.request("DELETE", endpoint, body, headers)

    async def stream_post(
        self,
        endpoint: str,
        body: Optional[Body] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        """
        POST and return the response with its body still unread.

        The caller owns the response and must close it (response.aclose()).
        On a non-2xx status the response is closed here and ResponseError raised.
        """
        request = self._build("POST", endpoint, body, headers)
        response = await self._client.send(request, stream=True)
        try:
            await check_ok(response)
        except BaseException:
            await response.aclose()
            raise
        return response

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
