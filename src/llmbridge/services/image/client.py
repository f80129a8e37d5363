"""Image generation API client.

Two API patterns are supported:

* sync: ``POST`` returns the image (binary, or JSON naming the image);
* async: ``POST`` returns a ``task_id`` that is polled at
  ``{host}/v3/async/task-result`` until it succeeds or fails.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from llmbridge.core.config.constants import (
    IMAGE_POLL_INTERVAL_SECONDS,
    IMAGE_POLL_TIMEOUT_SECONDS,
)
from llmbridge.core.config.http import HttpxClientOptions, SharedHttpClient
from llmbridge.core.exceptions import ProviderSpecificError, StreamParseError
from llmbridge.core.models import CancellationToken
from llmbridge.services.http import RetryOptions, request_with_retries
from llmbridge.services.llm.errors import raise_for_upstream_error

logger = logging.getLogger(__name__)

TASK_STATUS_SUCCEED = "TASK_STATUS_SUCCEED"
TASK_STATUS_FAILED = "TASK_STATUS_FAILED"

IMAGE_HTTP_CLIENT = SharedHttpClient(HttpxClientOptions(timeout=60.0, read_timeout=180.0))


def get_image_http_client() -> httpx.AsyncClient:
    return IMAGE_HTTP_CLIENT.get()


def task_result_url(endpoint: str, task_id: str) -> str:
    base_host = endpoint.split("/v3/", 1)[0]
    return f"{base_host}/v3/async/task-result?task_id={quote(task_id, safe='')}"


def _image_from_json(data: Any) -> str | None:
    """Find an image URL or base64 payload in a JSON response body."""
    if not isinstance(data, dict):
        return None
    images = data.get("images") or data.get("data")
    if isinstance(images, list) and images:
        first = images[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict):
            if url := first.get("image_url") or first.get("url"):
                return url
            if b64 := first.get("b64_json"):
                return f"data:image/png;base64,{b64}"
    if url := data.get("image_url") or data.get("url"):
        return url
    if b64 := data.get("b64_json") or data.get("image_base64"):
        return f"data:image/png;base64,{b64}"
    return None


async def _post_json(
    client: httpx.AsyncClient,
    endpoint: str,
    api_key: str,
    body: dict[str, Any],
    *,
    retry_options: RetryOptions | None,
) -> httpx.Response:
    response = await request_with_retries(
        lambda: client.post(
            endpoint,
            headers={"Authorization": f"Bearer {api_key}"},
            json=body,
        ),
        options=retry_options,
        log_context=f"image API {endpoint}",
    )
    await raise_for_upstream_error(response)
    return response


async def generate_image_sync(
    client: httpx.AsyncClient,
    endpoint: str,
    api_key: str,
    body: dict[str, Any],
    *,
    retry_options: RetryOptions | None = None,
) -> str:
    """Return the generated image as a URL or ``data:`` URL."""
    response = await _post_json(client, endpoint, api_key, body, retry_options=retry_options)
    content_type = response.headers.get("content-type", "").split(";")[0].strip()

    if content_type == "application/json":
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            message = "Image API returned malformed JSON"
            raise StreamParseError(message, cause=response.text) from exc
        if image := _image_from_json(data):
            return image
        message = "No image in image API response"
        raise ProviderSpecificError(message, cause=data)

    if not response.content:
        message = "Received empty image from API"
        raise ProviderSpecificError(message)
    mime_type = content_type if content_type.startswith("image/") else "image/png"
    encoded = base64.b64encode(response.content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


async def generate_image_async(
    client: httpx.AsyncClient,
    endpoint: str,
    api_key: str,
    body: dict[str, Any],
    *,
    signal: CancellationToken | None = None,
    retry_options: RetryOptions | None = None,
    poll_interval: float = IMAGE_POLL_INTERVAL_SECONDS,
    poll_timeout: float = IMAGE_POLL_TIMEOUT_SECONDS,
) -> str:
    """Create a generation task and poll it until an image URL is ready.

    Raises:
        ProviderSpecificError: If no task id is returned, the task fails, or
            polling exceeds ``poll_timeout``.

    """
    response = await _post_json(client, endpoint, api_key, body, retry_options=retry_options)
    try:
        created = response.json()
    except json.JSONDecodeError as exc:
        message = "Image API returned malformed JSON"
        raise StreamParseError(message, cause=response.text) from exc

    task_id = None
    if isinstance(created, dict):
        nested = created.get("data")
        task_id = created.get("task_id") or (
            nested.get("task_id") if isinstance(nested, dict) else None
        )
    if not task_id:
        message = "No task_id in API response"
        raise ProviderSpecificError(message, cause=created)

    result_url = task_result_url(endpoint, str(task_id))
    loop = asyncio.get_running_loop()
    deadline = loop.time() + poll_timeout
    logger.info("Polling image task %s", task_id)

    while loop.time() < deadline:
        await asyncio.sleep(poll_interval)
        if signal is not None and signal.cancelled:
            message = "Image generation cancelled"
            raise ProviderSpecificError(message)

        try:
            poll = await client.get(result_url, headers={"Authorization": f"Bearer {api_key}"})
        except httpx.RequestError as exc:
            logger.debug("Image task poll failed, retrying: %s", exc)
            continue
        if not poll.is_success:
            logger.debug("Image task poll returned %s, retrying", poll.status_code)
            continue
        try:
            result = poll.json()
        except json.JSONDecodeError:
            logger.debug("Image task poll returned malformed JSON, retrying")
            continue

        task = result.get("task") if isinstance(result, dict) else None
        status = task.get("status") if isinstance(task, dict) else None
        if status == TASK_STATUS_SUCCEED:
            images = result.get("images") or []
            image_url = images[0].get("image_url") if images and isinstance(images[0], dict) else None
            if not image_url:
                message = "No image URL in successful task result"
                raise ProviderSpecificError(message, cause=result)
            return image_url
        if status == TASK_STATUS_FAILED:
            reason = task.get("reason") or "Unknown error"
            message = f"Image generation failed: {reason}"
            raise ProviderSpecificError(message, cause=result)

    message = f"Image generation timeout (exceeded {poll_timeout:g} seconds)"
    raise ProviderSpecificError(message)


async def generate_image(
    endpoint: str,
    api_key: str,
    body: dict[str, Any],
    *,
    is_async: bool,
    signal: CancellationToken | None = None,
    http_client: httpx.AsyncClient | None = None,
    retry_options: RetryOptions | None = None,
    poll_interval: float = IMAGE_POLL_INTERVAL_SECONDS,
    poll_timeout: float = IMAGE_POLL_TIMEOUT_SECONDS,
) -> str:
    """Generate one image and return its URL (``data:`` URL for binary bodies)."""
    client = http_client or get_image_http_client()
    if is_async:
        return await generate_image_async(
            client,
            endpoint,
            api_key,
            body,
            signal=signal,
            retry_options=retry_options,
            poll_interval=poll_interval,
            poll_timeout=poll_timeout,
        )
    return await generate_image_sync(
        client,
        endpoint,
        api_key,
        body,
        retry_options=retry_options,
    )
