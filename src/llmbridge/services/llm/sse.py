"""Server-sent event helpers over an httpx streaming response."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from httpx_sse import EventSource, ServerSentEvent, SSEError

from llmbridge.core.exceptions import StreamParseError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[ServerSentEvent]:
    """Yield the events of a ``text/event-stream`` body.

    Raises:
        StreamParseError: If the provider answered with another content type.

    """
    try:
        async for event in EventSource(response).aiter_sse():
            yield event
    except SSEError as exc:
        message = f"Provider did not answer with an event stream: {exc}"
        raise StreamParseError(message, cause=exc) from exc


def sse_json(event: ServerSentEvent) -> object | None:
    """Decode the event data as JSON, logging and returning None on failure."""
    try:
        return json.loads(event.data)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed SSE frame: %.200s", event.data)
        return None
