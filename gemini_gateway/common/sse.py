"""
Server-Sent Events Encoding Helpers
"""

import json
from typing import Any

DATA_PREFIX = "data: "
EVENT_DELIMITER = "\n\n"
DONE_SENTINEL = "[DONE]"


def encode_sse_data(payload: str) -> str:
    """Encode string as SSE data record."""
    return f"{DATA_PREFIX}{payload}{EVENT_DELIMITER}"


def encode_sse_json(obj: dict[str, Any]) -> str:
    """Encode dict as SSE JSON data record."""
    return encode_sse_data(json.dumps(obj, ensure_ascii=False))


DONE_MESSAGE = encode_sse_data(DONE_SENTINEL)
