"""
Exception types raised by keepkey-ollama.

Everything the library raises on purpose derives from OllamaError.
Network failures from httpx (httpx.RequestError) propagate unchanged.
"""


class OllamaError(Exception):
    """Base class for keepkey-ollama errors."""
    pass


class ResponseError(OllamaError):
    """Non-2xx HTTP response from the server."""

    def __init__(self, error: str, status_code: int):
        super().__init__(error)
        self.error = error
        self.status_code = status_code

    def __str__(self) -> str:
        return self.error


class StreamError(OllamaError):
    """Error-shaped item received in the middle of a streamed response."""
    pass


class IncompleteStreamError(StreamError):
    """Stream ended without a done/success item."""
    pass


class StreamAbortedError(StreamError):
    """Iteration of a stream that was aborted."""
    pass


class TransportUnavailableError(OllamaError):
    """No usable async HTTP client could be resolved."""
    pass


class StreamingUploadUnsupportedError(OllamaError):
    """The runtime cannot send streaming request bodies."""
    pass
