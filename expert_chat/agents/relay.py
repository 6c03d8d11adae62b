import json
import logging
from typing import AsyncIterator

import httpx
from fastapi.responses import StreamingResponse

from .orchestrator import AgentReply

logger = logging.getLogger(__name__)

DONE_MARKER = b"data: [DONE]"
# the sentinel only counts at the start of a line; JSON deltas carry newlines escaped
DONE_LINE = b"\n" + DONE_MARKER
TOOL_CALLS_HEADER = "X-Tool-Calls"


async def relay_stream(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the upstream body unchanged, stopping after the `[DONE]` sentinel line.

    The upstream response is closed when the relay finishes, fails, or is
    cancelled because the client went away.
    """
    tail = b"\n"
    sent = 0
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
            sent += len(chunk)
            window = tail + chunk
            if DONE_LINE in window:
                break
            tail = window[-len(DONE_LINE):]
    except httpx.HTTPError as e:
        logger.warning("[relay_stream] upstream stream broke after %d bytes: %s", sent, e)
    finally:
        await response.aclose()
        logger.debug("[relay_stream] closed upstream after %d bytes", sent)


def stream_reply(reply: AgentReply) -> StreamingResponse:
    headers = {
        TOOL_CALLS_HEADER: json.dumps(reply.tool_names),
        "Cache-Control": "no-cache",
    }
    return StreamingResponse(relay_stream(reply.response), media_type="text/event-stream", headers=headers)
