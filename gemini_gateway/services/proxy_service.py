"""
Proxy Service Module

Orchestrates one OpenAI-compatible call: validate the inbound body, translate
it, call the Gemini API and translate the answer back.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncGenerator, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from gemini_gateway.common.errors import ClientRequestError, UpstreamTransportError
from gemini_gateway.common.protocol import (
    StreamTranslator,
    error_stream,
    resolve_model,
    transform_request,
    transform_response,
    translate_stream,
)
from gemini_gateway.config import Settings, get_settings
from gemini_gateway.domain.chat import ChatCompletionRequest, EmbeddingsRequest
from gemini_gateway.providers.base import ProviderResponse
from gemini_gateway.providers.gemini_client import GeminiClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_MODELS_PREFIX = "models/"


def _validation_message(e: ValidationError) -> str:
    first = e.errors(include_url=False)[0]
    location = ".".join(str(item) for item in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


class ProxyService:
    """
    Proxy Service

    Stateless between requests; one instance may serve many requests.
    """

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or GeminiClient(self.settings)

    @staticmethod
    def _parse(model_cls: Type[ModelT], body: Any) -> ModelT:
        try:
            return model_cls.model_validate(body)
        except ValidationError as e:
            raise ClientRequestError(message=_validation_message(e)) from e

    def parse_chat_request(self, body: Any) -> ChatCompletionRequest:
        """
        Validate an inbound chat completions body

        Raises:
            ClientRequestError: The body is not a valid request
        """
        return self._parse(ChatCompletionRequest, body)

    async def process_chat_completion(
        self,
        request: ChatCompletionRequest,
        api_key: Optional[str],
    ) -> ProviderResponse:
        """
        Process a non-streaming chat completion

        Returns:
            ProviderResponse: The OpenAI completion on success, otherwise the
                upstream error response unchanged

        Raises:
            ClientRequestError: The request cannot be translated
            UpstreamTransportError: An image or the Gemini API could not be reached
        """
        model = resolve_model(request.model, self.settings.DEFAULT_MODEL)
        body = await transform_request(request)

        response = await self.client.generate_content(model, body, api_key)
        if not response.is_success:
            return response

        completion = transform_response(response.body, model)
        logger.info(
            "Chat completion: model=%s choices=%d total_time_ms=%s",
            model,
            len(completion["choices"]),
            response.total_time_ms,
        )
        return ProviderResponse(
            status_code=200,
            body=completion,
            first_byte_delay_ms=response.first_byte_delay_ms,
            total_time_ms=response.total_time_ms,
        )

    async def process_chat_completion_stream(
        self,
        request: ChatCompletionRequest,
        api_key: Optional[str],
    ) -> tuple[ProviderResponse, Optional[AsyncGenerator[bytes, None]]]:
        """
        Process a streaming chat completion

        The first upstream item is awaited before returning so an upstream
        error status can still be sent as a plain error response.

        Returns:
            tuple: (Initial response, SSE byte generator). The generator is
                None when the initial response is an upstream error.

        Raises:
            ClientRequestError: The request cannot be translated
        """
        model = resolve_model(request.model, self.settings.DEFAULT_MODEL)
        translator = StreamTranslator(
            model=model,
            include_usage=request.include_usage,
            default_finish_reason=self.settings.STREAM_DEFAULT_FINISH_REASON,
        )

        try:
            body = await transform_request(request)
        except UpstreamTransportError as e:
            logger.error("Stream request aborted before upstream call: %s", e.message)
            return ProviderResponse(status_code=200, error=e.message), error_stream(translator)

        upstream_gen = self.client.stream_generate_content(model, body, api_key)
        try:
            first_chunk, first_resp = await anext(upstream_gen)
        except StopAsyncIteration:
            first_chunk, first_resp = b"", ProviderResponse(status_code=200)
        except UpstreamTransportError as e:
            logger.error("Stream upstream call failed: model=%s error=%s", model, e.message)
            return ProviderResponse(status_code=200, error=e.message), error_stream(translator)

        if not first_resp.is_success:
            await upstream_gen.aclose()
            return first_resp, None

        async def upstream_bytes() -> AsyncGenerator[bytes, None]:
            try:
                if first_chunk:
                    yield first_chunk
                async for chunk, _ in upstream_gen:
                    yield chunk
            finally:
                await upstream_gen.aclose()

        async def wrapped_generator() -> AsyncGenerator[bytes, None]:
            try:
                async with aclosing(translate_stream(upstream_bytes(), translator)) as stream:
                    async for chunk in stream:
                        yield chunk
            except (GeneratorExit, asyncio.CancelledError):
                logger.info("Stream closed by client: model=%s", model)
                raise
            logger.info(
                "Stream completed: model=%s candidates=%d",
                model,
                len(translator.state.last_frames),
            )

        return first_resp, wrapped_generator()

    async def create_embeddings(
        self,
        body: Any,
        api_key: Optional[str],
    ) -> ProviderResponse:
        """
        Create embeddings through batchEmbedContents

        Raises:
            ClientRequestError: model is missing or the body is invalid
            UpstreamTransportError: The Gemini API could not be reached
        """
        request = self._parse(EmbeddingsRequest, body)
        if not isinstance(request.model, str):
            raise ClientRequestError(
                message="model is not specified",
                code="model_not_specified",
            )

        if request.model.startswith(_MODELS_PREFIX):
            response_model = request.model
            model = request.model
        else:
            response_model = self.settings.DEFAULT_EMBEDDINGS_MODEL
            model = f"{_MODELS_PREFIX}{response_model}"

        inputs = [request.input] if isinstance(request.input, str) else request.input
        requests = []
        for text in inputs:
            item: dict[str, Any] = {"model": model, "content": {"parts": [{"text": text}]}}
            if request.dimensions is not None:
                item["outputDimensionality"] = request.dimensions
            requests.append(item)

        response = await self.client.batch_embed_contents(model, {"requests": requests}, api_key)
        if not response.is_success:
            return response

        embeddings = response.body.get("embeddings") if isinstance(response.body, dict) else None
        if not isinstance(embeddings, list):
            logger.warning("Embeddings response without 'embeddings' array: model=%s", model)
            embeddings = []

        data = [
            {
                "object": "embedding",
                "index": index,
                "embedding": embedding.get("values", []) if isinstance(embedding, dict) else [],
            }
            for index, embedding in enumerate(embeddings)
        ]
        return ProviderResponse(
            status_code=200,
            body={"object": "list", "data": data, "model": response_model},
            total_time_ms=response.total_time_ms,
        )

    async def list_models(self, api_key: Optional[str]) -> ProviderResponse:
        """
        List models in the OpenAI format

        Raises:
            UpstreamTransportError: The Gemini API could not be reached
        """
        response = await self.client.list_models(api_key)
        if not response.is_success:
            return response

        models = response.body.get("models") if isinstance(response.body, dict) else None
        if not isinstance(models, list):
            logger.warning("Models response without 'models' array")
            models = []

        data = []
        for item in models:
            name = item.get("name") if isinstance(item, dict) else None
            if not isinstance(name, str):
                continue
            if name.startswith(_MODELS_PREFIX):
                name = name[len(_MODELS_PREFIX):]
            data.append({"id": name, "object": "model", "created": 0, "owned_by": ""})

        return ProviderResponse(status_code=200, body={"object": "list", "data": data})
