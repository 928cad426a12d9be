"""
Service Layer Module Initialization
"""

from gemini_gateway.services.proxy_service import ProxyService

__all__ = [
    "ProxyService",
]
