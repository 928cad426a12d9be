"""
Upstream Response Model
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ProviderResponse:
    """
    Gemini API Response

    What the gateway keeps from one upstream HTTP exchange. Transport
    failures never produce a ProviderResponse, they raise
    UpstreamTransportError instead.
    """

    # HTTP status code
    status_code: int
    # Response headers
    headers: dict[str, str] = field(default_factory=dict)
    # Parsed JSON body, the raw text when it is not JSON, or bytes for streams
    body: Any = None
    # Time to first byte (ms)
    first_byte_delay_ms: Optional[int] = None
    # Total time (ms)
    total_time_ms: Optional[int] = None
    # "<status> <reason>" for non-2xx responses
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        """Whether the upstream returned a 2xx status"""
        return 200 <= self.status_code < 300

    @property
    def is_server_error(self) -> bool:
        """Whether it is a server error (status code >= 500)"""
        return self.status_code >= 500
