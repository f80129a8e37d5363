"""Turn failed provider responses into domain errors."""

from __future__ import annotations

import httpx

from llmbridge.core.exceptions import ChatError, build_upstream_error


async def upstream_error_from_response(response: httpx.Response) -> ChatError:
    """Read the whole error body and build the matching ``ChatError``."""
    body = await response.aread()
    text = body.decode("utf-8", errors="replace")
    return build_upstream_error(response.status_code, response.reason_phrase, text)


async def raise_for_upstream_error(response: httpx.Response) -> None:
    """Raise a ``ChatError`` when ``response`` is not a 2xx response."""
    if response.is_success:
        return
    raise await upstream_error_from_response(response)
