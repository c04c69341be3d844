"""
keepkey-ollama - async client for the Ollama model-serving API.

Buffered calls return decoded JSON; streamed calls return an abortable
async iterator of JSON objects. Modelfiles referencing local weights are
uploaded as content-addressed blobs before creation.
"""

from .client import Ollama, default_client
from .config import ClientConfig, format_host
from .errors import (
    IncompleteStreamError,
    OllamaError,
    ResponseError,
    StreamAbortedError,
    StreamError,
    StreamingUploadUnsupportedError,
    TransportUnavailableError,
)
from .schema import Message, Options
from .streaming import AbortableAsyncIterator, StreamState
from .version import __version__

__all__ = [
    "Ollama",
    "default_client",
    "ClientConfig",
    "format_host",
    "OllamaError",
    "ResponseError",
    "StreamError",
    "IncompleteStreamError",
    "StreamAbortedError",
    "TransportUnavailableError",
    "StreamingUploadUnsupportedError",
    "Message",
    "Options",
    "AbortableAsyncIterator",
    "StreamState",
    "__version__",
]
