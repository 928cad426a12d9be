"""
OpenAI Chat Request -> Gemini generateContent Request

Builds the Gemini request body (system instruction, contents, safety settings
and generation config) from a validated ChatCompletionRequest. Remote image
URLs are downloaded and inlined before the request is returned.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote_to_bytes

import httpx

from gemini_gateway.common.errors import ClientRequestError, UpstreamTransportError
from gemini_gateway.config import get_settings
from gemini_gateway.domain.chat import ChatCompletionRequest, ChatMessage, ResponseFormat

logger = logging.getLogger(__name__)

KNOWN_MODEL_PREFIXES = ("gemini-", "gemma-", "learnlm-")
_MODELS_PREFIX = "models/"

HARM_CATEGORIES = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_CIVIC_INTEGRITY",
)
SAFETY_SETTINGS: List[Dict[str, str]] = [
    {"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES
]

# OpenAI option -> Gemini generationConfig option
GENERATION_FIELDS: Dict[str, str] = {
    "stop": "stopSequences",
    "n": "candidateCount",
    "max_tokens": "maxOutputTokens",
    "max_completion_tokens": "maxOutputTokens",
    "temperature": "temperature",
    "top_p": "topP",
    "top_k": "topK",
    "frequency_penalty": "frequencyPenalty",
    "presence_penalty": "presencePenalty",
}


def resolve_model(model: Any, default_model: Optional[str] = None) -> str:
    """
    Resolve the Gemini model name for a requested model.

    "models/<id>" is unwrapped, known family names are kept, anything else
    (including a missing or non-string model) becomes the default model.
    """
    if default_model is None:
        default_model = get_settings().DEFAULT_MODEL
    if not isinstance(model, str):
        return default_model
    if model.startswith(_MODELS_PREFIX) and len(model) > len(_MODELS_PREFIX):
        return model[len(_MODELS_PREFIX):]
    if model.startswith(KNOWN_MODEL_PREFIXES):
        return model
    return default_model


def _response_format_to_config(response_format: ResponseFormat) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {}
    format_type = response_format.type

    if format_type == "json_schema":
        schema_payload = response_format.json_schema or {}
        schema = schema_payload.get("schema") if isinstance(schema_payload, dict) else None
        if schema is not None:
            cfg["responseSchema"] = schema
        if isinstance(schema, dict) and "enum" in schema:
            cfg["responseMimeType"] = "text/x.enum"
        else:
            cfg["responseMimeType"] = "application/json"
    elif format_type == "json_object":
        cfg["responseMimeType"] = "application/json"
    elif format_type == "text":
        cfg["responseMimeType"] = "text/plain"
    else:
        raise ClientRequestError(
            message=f"Unsupported response_format.type: {format_type!r}",
            code="unsupported_response_format",
        )
    return cfg


def build_generation_config(request: ChatCompletionRequest) -> Dict[str, Any]:
    """Map OpenAI generation options onto a Gemini generationConfig."""
    cfg: Dict[str, Any] = {}
    for src, dst in GENERATION_FIELDS.items():
        value = getattr(request, src, None)
        if value is None:
            continue
        if src == "max_tokens" and request.max_completion_tokens is not None:
            continue
        if src == "stop" and isinstance(value, str):
            value = [value]
        cfg[dst] = value

    if request.response_format is not None:
        cfg.update(_response_format_to_config(request.response_format))
    return cfg


def _parse_data_uri(url: str) -> Tuple[str, str]:
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep:
        raise ClientRequestError(
            message=f"Invalid image data: {url[:64]}",
            code="invalid_image_data",
        )
    if header.endswith(";base64"):
        return header[: -len(";base64")], payload
    # Percent-encoded payload, Gemini expects base64
    raw = unquote_to_bytes(payload)
    return header, base64.b64encode(raw).decode("ascii")


async def fetch_image(url: str) -> Tuple[str, str]:
    """
    Download a remote image.

    Returns:
        tuple: (MIME type, base64 data)

    Raises:
        UpstreamTransportError: The image could not be fetched
    """
    settings = get_settings()
    try:
        async with httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT, follow_redirects=True
        ) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise UpstreamTransportError(
            message=f"Error fetching image: {e} ({url})",
            code="image_fetch_failed",
        ) from e

    if response.status_code >= 400:
        raise UpstreamTransportError(
            message=f"Error fetching image: {response.status_code} {response.reason_phrase} ({url})",
            code="image_fetch_failed",
        )

    mime_type = (response.headers.get("content-type") or "").split(";")[0].strip()
    data = base64.b64encode(response.content).decode("ascii")
    logger.debug("Fetched image: url=%s mime_type=%s bytes=%d", url, mime_type, len(response.content))
    return mime_type, data


async def _image_part(image_url: Any) -> Dict[str, Any]:
    url = image_url.get("url") if isinstance(image_url, dict) else image_url
    if not isinstance(url, str) or not url:
        raise ClientRequestError(
            message="image_url content part requires a url",
            code="invalid_image_url",
        )
    if url.startswith(("http://", "https://")):
        mime_type, data = await fetch_image(url)
    elif url.startswith("data:"):
        mime_type, data = _parse_data_uri(url)
    else:
        raise ClientRequestError(
            message=f"Invalid image data: {url[:64]}",
            code="invalid_image_data",
        )
    return {"inlineData": {"mimeType": mime_type, "data": data}}


def _audio_part(input_audio: Any) -> Dict[str, Any]:
    if not isinstance(input_audio, dict) or not input_audio.get("data"):
        raise ClientRequestError(
            message="input_audio content part requires data and format",
            code="invalid_input_audio",
        )
    return {
        "inlineData": {
            "mimeType": f"audio/{input_audio.get('format')}",
            "data": input_audio["data"],
        }
    }


async def transform_content(content: Any) -> List[Dict[str, Any]]:
    """Convert one message's content into Gemini parts."""
    if content is None:
        return [{"text": ""}]
    if isinstance(content, str):
        return [{"text": content}]

    parts: List[Dict[str, Any]] = []
    for item in content:
        item_type = item.get("type") if isinstance(item, dict) else None
        if item_type == "text":
            text = item.get("text")
            parts.append({"text": text if isinstance(text, str) else ""})
        elif item_type == "image_url":
            parts.append(await _image_part(item.get("image_url")))
        elif item_type == "input_audio":
            parts.append(_audio_part(item.get("input_audio")))
        else:
            raise ClientRequestError(
                message=f'Unknown "content" item type: "{item_type}"',
                code="unknown_content_type",
            )

    if all(item.get("type") == "image_url" for item in content):
        # Gemini requires a text part in every turn
        parts.append({"text": ""})
    return parts


async def transform_messages(
    messages: List[ChatMessage],
) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split messages into (system_instruction, contents).

    The last system message wins; other roles become "model" (assistant) or "user".
    """
    system_instruction: Optional[Dict[str, Any]] = None
    contents: List[Dict[str, Any]] = []

    for message in messages:
        parts = await transform_content(message.content)
        if message.role == "system":
            system_instruction = {"parts": parts}
        else:
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": parts})

    # Gemini rejects an empty conversation
    if system_instruction is not None and not contents:
        contents.append({"role": "user", "parts": [{"text": " "}]})
    return system_instruction, contents


async def transform_request(request: ChatCompletionRequest) -> Dict[str, Any]:
    """
    Build the Gemini generateContent body for a chat completion request.

    Raises:
        ClientRequestError: The request cannot be expressed for Gemini
        UpstreamTransportError: A remote image could not be fetched
    """
    generation_config = build_generation_config(request)
    system_instruction, contents = await transform_messages(request.messages)

    body: Dict[str, Any] = {}
    if system_instruction is not None:
        body["system_instruction"] = system_instruction
    body["contents"] = contents
    body["safetySettings"] = SAFETY_SETTINGS
    body["generationConfig"] = generation_config
    return body
