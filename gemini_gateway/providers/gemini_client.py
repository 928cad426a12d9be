"""
Google Gemini API Client

Sends translated requests to the Gemini generativelanguage API.
"""

import json
import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from gemini_gateway.common.errors import UpstreamTransportError
from gemini_gateway.common.timer import Timer
from gemini_gateway.config import Settings, get_settings
from gemini_gateway.providers.base import ProviderResponse

logger = logging.getLogger(__name__)


class GeminiClient:
    """Google Gemini API client."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.api_root = settings.gemini_api_root
        self.api_client = settings.GEMINI_API_CLIENT
        self.timeout = settings.HTTP_TIMEOUT

    def _prepare_headers(self, api_key: Optional[str]) -> dict[str, str]:
        headers = {"x-goog-api-client": self.api_client}
        if api_key:
            headers["x-goog-api-key"] = api_key
        return headers

    def _build_url(self, path: str) -> str:
        cleaned_path = path if path.startswith("/") else f"/{path}"
        return f"{self.api_root}{cleaned_path}"

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text

    @staticmethod
    def _transport_error(e: httpx.HTTPError, url: str) -> UpstreamTransportError:
        if isinstance(e, httpx.TimeoutException):
            return UpstreamTransportError(
                message=f"Request timeout: {str(e)}",
                code="upstream_timeout",
                details={"url": url},
                status_code=504,
            )
        return UpstreamTransportError(
            message=f"Request error: {str(e)}",
            details={"url": url},
        )

    async def _request(
        self,
        method: str,
        path: str,
        api_key: Optional[str],
        body: Optional[dict[str, Any]] = None,
    ) -> ProviderResponse:
        url = self._build_url(path)
        headers = self._prepare_headers(api_key)
        if body is not None:
            headers["Content-Type"] = "application/json"

        logger.debug(
            "Gemini Request: method=%s url=%s body=%s",
            method,
            url,
            json.dumps(body, ensure_ascii=False) if body is not None else None,
        )

        timer = Timer().start()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=body,
                )
                timer.mark_first_byte()
                response_body = self._parse_body(response)
        except httpx.HTTPError as e:
            timer.stop()
            logger.error(
                "Gemini request failed: url=%s error=%s total_time_ms=%s",
                url,
                e,
                timer.total_time_ms,
            )
            raise self._transport_error(e, url) from e

        timer.stop()
        provider_response = ProviderResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response_body,
            first_byte_delay_ms=timer.first_byte_delay_ms,
            total_time_ms=timer.total_time_ms,
        )
        if not provider_response.is_success:
            provider_response.error = (
                f"{response.status_code} {response.reason_phrase or 'Upstream error'}"
            )
            logger.warning(
                "Gemini returned error: url=%s status=%s", url, response.status_code
            )

        logger.debug(
            "Gemini Response: status=%s first_byte_delay_ms=%s total_time_ms=%s",
            provider_response.status_code,
            provider_response.first_byte_delay_ms,
            provider_response.total_time_ms,
        )
        return provider_response

    async def generate_content(
        self, model: str, body: dict[str, Any], api_key: Optional[str]
    ) -> ProviderResponse:
        """
        Call models/{model}:generateContent

        Raises:
            UpstreamTransportError: The API could not be reached
        """
        return await self._request("POST", f"/models/{model}:generateContent", api_key, body)

    async def batch_embed_contents(
        self, model: str, body: dict[str, Any], api_key: Optional[str]
    ) -> ProviderResponse:
        """Call {model}:batchEmbedContents (model includes the "models/" prefix)"""
        return await self._request("POST", f"/{model}:batchEmbedContents", api_key, body)

    async def list_models(self, api_key: Optional[str]) -> ProviderResponse:
        return await self._request("GET", "/models", api_key)

    async def stream_generate_content(
        self, model: str, body: dict[str, Any], api_key: Optional[str]
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        """
        Call models/{model}:streamGenerateContent?alt=sse

        Yields (chunk, ProviderResponse) tuples. A non-2xx status yields a
        single tuple carrying the whole error body and ends.

        Raises:
            UpstreamTransportError: The API could not be reached or the
                connection broke while streaming
        """
        url = self._build_url(f"/models/{model}:streamGenerateContent")
        headers = self._prepare_headers(api_key)
        headers["Content-Type"] = "application/json"

        logger.debug(
            "Gemini Stream Request: url=%s body=%s",
            url,
            json.dumps(body, ensure_ascii=False),
        )

        timer = Timer().start()
        first_chunk = True

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    url,
                    params={"alt": "sse"},
                    headers=headers,
                    json=body,
                ) as response:
                    provider_response = ProviderResponse(
                        status_code=response.status_code,
                        headers=dict(response.headers),
                    )

                    if not provider_response.is_success:
                        body_bytes = await response.aread()
                        timer.mark_first_byte()
                        timer.stop()
                        provider_response.first_byte_delay_ms = timer.first_byte_delay_ms
                        provider_response.total_time_ms = timer.total_time_ms
                        provider_response.body = body_bytes
                        reason = response.reason_phrase or "Upstream error"
                        provider_response.error = f"{response.status_code} {reason}"
                        logger.warning(
                            "Gemini stream returned error: url=%s status=%s",
                            url,
                            response.status_code,
                        )
                        yield body_bytes or b"", provider_response
                        return

                    async for chunk in response.aiter_bytes():
                        if first_chunk:
                            timer.mark_first_byte()
                            provider_response.first_byte_delay_ms = (
                                timer.first_byte_delay_ms
                            )
                            first_chunk = False

                        yield chunk, provider_response

                    timer.stop()
                    provider_response.total_time_ms = timer.total_time_ms
                    logger.debug(
                        "Gemini stream finished: first_byte_delay_ms=%s total_time_ms=%s",
                        provider_response.first_byte_delay_ms,
                        provider_response.total_time_ms,
                    )

        except httpx.HTTPError as e:
            timer.stop()
            logger.error(
                "Gemini stream failed: url=%s error=%s total_time_ms=%s",
                url,
                e,
                timer.total_time_ms,
            )
            raise self._transport_error(e, url) from e
