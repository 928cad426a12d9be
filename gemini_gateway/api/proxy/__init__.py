"""
Proxy API Module Initialization
"""

from gemini_gateway.api.proxy.openai import router as openai_router

__all__ = [
    "openai_router",
]
