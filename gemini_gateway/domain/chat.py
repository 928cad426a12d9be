"""
Chat Completions Domain Model

Pydantic models for the inbound OpenAI-compatible requests. Only the shape the
gateway relies on is validated; content parts are kept as plain dicts and
checked by the request transformer so unknown part types produce a
translation error instead of a schema error.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Chat message: text scalar, null, or ordered list of typed content parts"""

    model_config = ConfigDict(extra="allow")

    role: str = "user"
    content: Union[str, list[dict[str, Any]], None] = None


class StreamOptions(BaseModel):
    model_config = ConfigDict(extra="allow")

    include_usage: bool = False


class ResponseFormat(BaseModel):
    """response_format directive ("text", "json_object" or "json_schema")"""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    json_schema: Optional[dict[str, Any]] = None


class ChatCompletionRequest(BaseModel):
    """OpenAI Chat Completions request"""

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    # Any JSON value: non-string models fall back to the default model
    model: Any = None
    messages: list[ChatMessage] = Field(min_length=1)

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    n: Optional[int] = None
    stop: Union[str, list[str], None] = None
    max_tokens: Optional[int] = None
    max_completion_tokens: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    response_format: Optional[ResponseFormat] = None

    stream: bool = False
    stream_options: Optional[StreamOptions] = None

    @property
    def include_usage(self) -> bool:
        """Whether usage should be reported at the end of a stream"""
        return bool(self.stream_options and self.stream_options.include_usage)


class EmbeddingsRequest(BaseModel):
    """OpenAI Embeddings request"""

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    model: Any = None
    input: Union[str, list[str]] = ""
    dimensions: Optional[int] = None
