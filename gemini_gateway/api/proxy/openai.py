"""
OpenAI Proxy API

Provides the OpenAI-compatible endpoints, each under /v1 and without prefix.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse

from gemini_gateway.api.deps import ApiKey, ProxyServiceDep
from gemini_gateway.common.errors import AppError, ClientRequestError
from gemini_gateway.providers.base import ProviderResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proxy - OpenAI"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ClientRequestError(message=f"Invalid JSON body: {e}", code="invalid_json") from e


def _to_http_response(response: ProviderResponse) -> Response:
    """Render a ProviderResponse, passing upstream error bodies through unchanged"""
    content = response.body
    if isinstance(content, bytes):
        try:
            content = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return Response(content=content, status_code=response.status_code)
    if isinstance(content, (dict, list)):
        return JSONResponse(content=content, status_code=response.status_code)
    return Response(content=content, status_code=response.status_code)


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        content={
            "error": {
                "message": "Internal server error",
                "type": "internal_error",
                "code": "internal_error",
            }
        },
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@router.post("/v1/chat/completions")
@router.post("/chat/completions")
async def chat_completions(
    request: Request,
    api_key: ApiKey,
    service: ProxyServiceDep,
):
    """
    OpenAI Chat Completions API
    """
    try:
        body = await _read_json(request)
        chat_request = service.parse_chat_request(body)

        if chat_request.stream:
            initial_response, stream_gen = await service.process_chat_completion_stream(
                chat_request, api_key
            )

            # Upstream rejected the request before streaming
            if stream_gen is None:
                return _to_http_response(initial_response)

            return StreamingResponse(
                stream_gen,
                headers=STREAM_HEADERS,
                media_type="text/event-stream",
            )

        response = await service.process_chat_completion(chat_request, api_key)
        return _to_http_response(response)

    except AppError as e:
        return JSONResponse(content=e.to_dict(), status_code=e.status_code)
    except Exception as e:
        logger.error("Unexpected error: %s", str(e), exc_info=True)
        return _internal_error_response()


@router.post("/v1/embeddings")
@router.post("/embeddings")
async def embeddings(
    request: Request,
    api_key: ApiKey,
    service: ProxyServiceDep,
):
    """
    OpenAI Embeddings API
    """
    try:
        body = await _read_json(request)
        response = await service.create_embeddings(body, api_key)
        return _to_http_response(response)
    except AppError as e:
        return JSONResponse(content=e.to_dict(), status_code=e.status_code)


@router.get("/v1/models")
@router.get("/models")
async def list_models(
    api_key: ApiKey,
    service: ProxyServiceDep,
):
    """
    OpenAI Models API (List)

    Returns the models available to the caller's Gemini API key.
    """
    try:
        response = await service.list_models(api_key)
        return _to_http_response(response)
    except AppError as e:
        return JSONResponse(content=e.to_dict(), status_code=e.status_code)
