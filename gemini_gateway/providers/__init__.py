"""
Upstream Provider Module Initialization
"""

from gemini_gateway.providers.base import ProviderResponse
from gemini_gateway.providers.gemini_client import GeminiClient

__all__ = [
    "ProviderResponse",
    "GeminiClient",
]
