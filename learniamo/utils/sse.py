"""Server-Sent Events framing for streamed chat replies (text/event-stream)."""

import json
from typing import Optional

SSE_MEDIA_TYPE = "text/event-stream"

# Stops proxies (nginx, Cloud Run front ends) from buffering the stream.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def format_sse(data: dict, event: Optional[str] = None) -> str:
    """
    One SSE frame. Unnamed frames are plain `data:` lines, which is what the
    browser client parses for reply fragments.
    """
    payload = json.dumps(data, ensure_ascii=False)
    if event:
        return f"event: {event}\ndata: {payload}\n\n"
    return f"data: {payload}\n\n"
