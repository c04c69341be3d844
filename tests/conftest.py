"""Shared test fixtures for keepkey-ollama tests."""

import asyncio
import json

import httpx
import pytest


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_HOST = "http://127.0.0.1:11434"
MOCK_API = f"{MOCK_HOST}/api"

MOCK_MODEL = "llama3.2:3b"

MOCK_TAGS_RESPONSE = {
    "models": [
        {"name": "llama3.2:3b", "size": 2019393189, "digest": "a80c4f17acd5"},
        {"name": "qwen2.5:7b", "size": 4683087332, "digest": "845dbda0ea48"},
    ]
}

MOCK_GENERATE_RESPONSE = {
    "model": MOCK_MODEL,
    "response": "The sky is blue because of Rayleigh scattering.",
    "done": True,
    "done_reason": "stop",
}

MOCK_GENERATE_CHUNKS = [
    {"model": MOCK_MODEL, "response": "The", "done": False},
    {"model": MOCK_MODEL, "response": " sky", "done": False},
    {"model": MOCK_MODEL, "response": " is blue.", "done": False},
    {"model": MOCK_MODEL, "response": "", "done": True, "done_reason": "stop"},
]

MOCK_PULL_CHUNKS = [
    {"status": "pulling manifest"},
    {"status": "pulling a80c4f17acd5", "total": 2019393189, "completed": 1009696594},
    {"status": "pulling a80c4f17acd5", "total": 2019393189, "completed": 2019393189},
    {"status": "verifying sha256 digest"},
    {"status": "success"},
]


def ndjson(items: list) -> bytes:
    """Encode items as a newline-delimited JSON body."""
    return "".join(json.dumps(item, ensure_ascii=False) + "\n" for item in items).encode("utf-8")


async def aiter_chunks(chunks: list[bytes]):
    """Async byte iterator over fixed chunks."""
    for chunk in chunks:
        yield chunk


class BlockingStream(httpx.AsyncByteStream):
    """Response body that sends `first` and then never sends anything else."""

    def __init__(self, first: bytes = b""):
        self.first = first
        self.closed = False

    async def __aiter__(self):
        if self.first:
            yield self.first
        await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


# ─────────────────────────────────────────────────────────────────────
# FIXTURES - Client
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def client():
    """Ollama client pointed at MOCK_HOST (mock with respx)."""
    from keepkey_ollama.client import Ollama
    return Ollama(MOCK_HOST)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove OLLAMA_* variables so tests see defaults."""
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("OLLAMA_API_KEY", raising=False)
    return monkeypatch


# ─────────────────────────────────────────────────────────────────────
# FIXTURES - Temporary Files
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def model_file(tmp_path):
    """A small stand-in for model weights."""
    path = tmp_path / "model.bin"
    path.write_bytes(b"GGUF" + bytes(range(256)) * 64)
    return path


@pytest.fixture
def tmp_home(tmp_path, monkeypatch):
    """Point the home directory at an empty temp dir."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return home
