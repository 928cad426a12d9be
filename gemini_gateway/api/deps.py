"""
API Dependency Injection Module

Provides the dependencies used by FastAPI routes.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header

from gemini_gateway.services.proxy_service import ProxyService


def get_proxy_service() -> ProxyService:
    """Get proxy service"""
    return ProxyService()


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return authorization.strip() or None


async def get_api_key(
    authorization: str = Header(None, description="Bearer <Gemini API key>"),
) -> Optional[str]:
    """
    Get the caller's Gemini API key

    The key is forwarded to the Gemini API as-is; a missing key is not an
    error here, the upstream decides.
    """
    return _extract_bearer_token(authorization)


ProxyServiceDep = Annotated[ProxyService, Depends(get_proxy_service)]
ApiKey = Annotated[Optional[str], Depends(get_api_key)]
