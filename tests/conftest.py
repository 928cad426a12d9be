"""
Test Configuration Module
"""

from typing import Any, AsyncGenerator, Optional

import pytest

from gemini_gateway.common.errors import AppError
from gemini_gateway.config import Settings, get_settings
from gemini_gateway.main import app
from gemini_gateway.providers.base import ProviderResponse


class FakeGeminiClient:
    """
    In-memory stand-in for GeminiClient

    Tests set the canned responses as attributes; every call is recorded
    in ``calls`` as (method, model, body, api_key).
    """

    def __init__(self):
        self.calls: list[tuple[str, Optional[str], Any, Optional[str]]] = []
        self.response = ProviderResponse(status_code=200, body={})
        self.error: Optional[AppError] = None
        self.stream_chunks: list[bytes] = []
        self.stream_status = 200
        self.stream_error_body = b""
        self.stream_error: Optional[AppError] = None

    async def generate_content(self, model, body, api_key):
        self.calls.append(("generate_content", model, body, api_key))
        if self.error:
            raise self.error
        return self.response

    async def batch_embed_contents(self, model, body, api_key):
        self.calls.append(("batch_embed_contents", model, body, api_key))
        if self.error:
            raise self.error
        return self.response

    async def list_models(self, api_key):
        self.calls.append(("list_models", None, None, api_key))
        if self.error:
            raise self.error
        return self.response

    async def stream_generate_content(
        self, model, body, api_key
    ) -> AsyncGenerator[tuple[bytes, ProviderResponse], None]:
        self.calls.append(("stream_generate_content", model, body, api_key))
        if self.stream_error:
            raise self.stream_error

        response = ProviderResponse(status_code=self.stream_status)
        if not response.is_success:
            response.body = self.stream_error_body
            response.error = f"{self.stream_status} Upstream error"
            yield self.stream_error_body, response
            return

        for chunk in self.stream_chunks:
            yield chunk, response


@pytest.fixture
def settings() -> Settings:
    """Settings with the defaults, unaffected by the environment's .env"""
    return Settings(_env_file=None)


@pytest.fixture
def fake_gemini_client() -> FakeGeminiClient:
    return FakeGeminiClient()


@pytest.fixture(autouse=True)
def reset_overrides():
    yield
    app.dependency_overrides = {}
    get_settings.cache_clear()
