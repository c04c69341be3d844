"""
Configuration constants, environment loading and host normalization.
"""

import os
import sys
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

DEFAULT_HOST: str = "http://127.0.0.1:11434"
DEFAULT_PORT: str = "11434"
LOOPBACK_ADDRESS: str = "127.0.0.1"

# Returned by format_host() for an empty host string
FALLBACK_HOST: str = "http://127.0.0.1:1646"


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS
# ─────────────────────────────────────────────────────────────────────

API_PREFIX: str = "/api"
BLOB_CHUNK_SIZE: int = 1024 * 1024  # 1 MiB
DIGEST_ALGORITHM: str = "sha256"

_DEFAULT_PORTS = {"http": "80", "https": "443"}


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def get_host() -> Optional[str]:
    """
    Get the server host from environment.

    Set OLLAMA_HOST in .env (e.g. "localhost:11434" or "https://ollama.example.com").
    Returns None when unset or blank.
    """
    value = os.environ.get("OLLAMA_HOST", "").strip()
    return value or None


def get_api_key() -> Optional[str]:
    """Get the bearer token from OLLAMA_API_KEY, if any."""
    value = os.environ.get("OLLAMA_API_KEY", "").strip()
    return value or None


def is_browser_runtime() -> bool:
    """
    Check if running inside a browser (Pyodide / emscripten).

    Browser runtimes have no real local filesystem and cannot send
    streaming request bodies, so blob uploads are unavailable there.
    """
    return sys.platform == "emscripten"


# ─────────────────────────────────────────────────────────────────────
# HOST NORMALIZATION
# ─────────────────────────────────────────────────────────────────────

def format_host(host: str) -> str:
    """
    Normalize a host string to scheme://hostname:port[/path].

    Examples:
        ""                     -> "http://127.0.0.1:1646"
        ":9999"                -> "http://127.0.0.1:9999"
        "example.com"          -> "http://example.com:11434"
        "https://example.com"  -> "https://example.com:443"
        "http://x:8000/api/"   -> "http://x:8000/api"
    """
    if not host:
        return FALLBACK_HOST

    is_explicit_scheme = "://" in host

    if host.startswith(":"):
        host = f"http://{LOOPBACK_ADDRESS}{host}"
        is_explicit_scheme = True

    if not is_explicit_scheme:
        host = f"http://{host}"

    url = urlsplit(host)
    scheme = url.scheme.lower()

    hostname = url.hostname or ""
    if ":" in hostname:
        # IPv6 literal
        hostname = f"[{hostname}]"

    port = str(url.port) if url.port is not None else ""
    if port == _DEFAULT_PORTS.get(scheme):
        # A port equal to the scheme default is not part of a normalized URL
        port = ""

    if not port:
        if not is_explicit_scheme:
            port = DEFAULT_PORT
        else:
            port = "443" if scheme == "https" else "80"

    path = url.path or "/"
    formatted = f"{scheme}://{hostname}:{port}{path}"
    if formatted.endswith("/"):
        formatted = formatted[:-1]
    return formatted


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class ClientConfig(BaseModel):
    """Connection settings for one client instance."""
    host: str = ""
    api_key: Optional[str] = None
    # Use host verbatim (no normalization), e.g. behind a path-rewriting proxy
    proxy: bool = False
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def base_url(self) -> str:
        """Host after normalization, unless running in proxy mode."""
        if self.proxy:
            return self.host
        return format_host(self.host or DEFAULT_HOST)

    @classmethod
    def from_env(cls, **overrides) -> "ClientConfig":
        """Build a config from OLLAMA_HOST / OLLAMA_API_KEY, then apply overrides."""
        values = {
            "host": get_host() or "",
            "api_key": get_api_key(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
