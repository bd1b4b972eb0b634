"""SSE helpers for the web widget stream.

Every event is a single ``data:`` line carrying a JSON object, terminated by
a blank line:

- ``{"content": <chunk>, "done": false}`` for each generated chunk
- ``{"content": "", "done": true}`` once generation completes
- ``{"content": <text>, "done": true, "error": <code>}`` on failure
"""

import json
from typing import Optional

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(content: str, done: bool, error: Optional[str] = None) -> str:
    """Encode one SSE frame."""
    payload = {"content": content, "done": done}
    if error:
        payload["error"] = error
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def parse_sse_events(raw: str) -> list[dict]:
    """Decode a buffered SSE body back into its JSON payloads."""
    events = []
    for block in raw.split("\n\n"):
        block = block.strip()
        if not block.startswith("data:"):
            continue
        events.append(json.loads(block[len("data:"):].strip()))
    return events
