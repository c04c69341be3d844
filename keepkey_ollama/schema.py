"""
Request models for each endpoint.

Only the shape the client sends is modelled; server responses are passed
back as plain dicts. Fields left as None are dropped from the request body.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Options(BaseModel):
    """Runtime/model options. Unknown keys are forwarded to the server."""
    model_config = ConfigDict(extra="allow")

    temperature: Optional[float] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    num_ctx: Optional[int] = None
    num_predict: Optional[int] = None
    repeat_penalty: Optional[float] = None
    seed: Optional[int] = None
    stop: Optional[List[str]] = None


class OllamaRequest(BaseModel):
    """Base for request bodies."""

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class GenerateRequest(OllamaRequest):
    model: str
    prompt: str = ""
    suffix: Optional[str] = None
    system: Optional[str] = None
    template: Optional[str] = None
    context: Optional[List[int]] = None
    stream: bool = False
    raw: Optional[bool] = None
    format: Optional[Union[Literal["json"], Dict[str, Any]]] = None
    # base64 strings once encoded by the client
    images: Optional[List[Any]] = None
    keep_alive: Optional[Union[str, float]] = None
    options: Optional[Options] = None


class ToolCall(BaseModel):
    function: Dict[str, Any]


class Message(BaseModel):
    """A single chat message."""
    role: str  # "system", "user", "assistant" or "tool"
    content: str = ""
    images: Optional[List[Any]] = None
    tool_calls: Optional[List[ToolCall]] = None


class ChatRequest(OllamaRequest):
    model: str
    messages: List[Message] = Field(default_factory=list)
    stream: bool = False
    format: Optional[Union[Literal["json"], Dict[str, Any]]] = None
    tools: Optional[List[Dict[str, Any]]] = None
    keep_alive: Optional[Union[str, float]] = None
    options: Optional[Options] = None


class PullRequest(OllamaRequest):
    name: str
    stream: bool = False
    insecure: Optional[bool] = None


class PushRequest(OllamaRequest):
    name: str
    stream: bool = False
    insecure: Optional[bool] = None


class CreateRequest(OllamaRequest):
    name: str
    stream: bool = False
    modelfile: Optional[str] = None
    quantize: Optional[str] = None


class ShowRequest(OllamaRequest):
    model: str
    system: Optional[str] = None
    template: Optional[str] = None
    options: Optional[Options] = None


class EmbedRequest(OllamaRequest):
    model: str
    input: Union[str, List[str]]
    truncate: Optional[bool] = None
    keep_alive: Optional[Union[str, float]] = None
    options: Optional[Options] = None


class EmbeddingsRequest(OllamaRequest):
    model: str
    prompt: str
    keep_alive: Optional[Union[str, float]] = None
    options: Optional[Options] = None


class CopyRequest(OllamaRequest):
    source: str
    destination: str


class DeleteRequest(OllamaRequest):
    name: str
