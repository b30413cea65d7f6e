import json
import logging
from typing import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def relay_lines(source: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Re-frame a byte stream into complete lines as soon as each one arrives.

    The trailing partial line stays buffered until the next read; whatever is
    left when the source ends goes out as a final line. Every emitted line ends
    with exactly one ``\\n``; whitespace-only lines are dropped.
    """
    buffer = b""
    async for chunk in source:
        if not chunk:
            continue
        buffer += chunk
        *lines, buffer = buffer.split(b"\n")
        for line in lines:
            if line.strip():
                yield line + b"\n"
    if buffer.strip():
        yield buffer + b"\n"


def error_frame(message: str, details: str = "") -> bytes:
    payload = json.dumps({"error": message, "details": details})
    return f"event: error\ndata: {payload}\n\n".encode("utf-8")
