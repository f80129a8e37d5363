"""Bounded retries for one-shot provider requests (image generation, polling)."""

from __future__ import annotations

import asyncio
import email.utils
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
HTTP_TOO_MANY_REQUESTS = 429
_JITTER_RANDOM = secrets.SystemRandom()


def parse_retry_after_seconds(value: str) -> float | None:
    """Return the delay a ``Retry-After`` header asks for.

    Both forms are accepted: a number of seconds and an HTTP date. Negative,
    non-finite and unparseable values give ``None``; a date in the past
    gives ``0.0``.
    """
    text = value.strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return seconds if math.isfinite(seconds) and seconds >= 0 else None

    try:
        when = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError, OSError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _retry_after(response: httpx.Response | None) -> float | None:
    if response is None or response.status_code != HTTP_TOO_MANY_REQUESTS:
        return None
    header = response.headers.get("retry-after")
    return parse_retry_after_seconds(header) if isinstance(header, str) else None


async def wait_before_retry(
    attempt: int,
    *,
    response: httpx.Response | None = None,
    backoff_factor: float = 1.0,
    max_backoff_seconds: float = 30.0,
) -> None:
    """Sleep before retry number ``attempt + 1``.

    A rate-limited response with ``Retry-After`` sets the delay; otherwise it
    is ``(2 ** (attempt + 1) + jitter) * backoff_factor``. Either way it is
    capped at ``max_backoff_seconds``.
    """
    requested = _retry_after(response)
    if requested is None:
        requested = (2 ** (attempt + 1) + _JITTER_RANDOM.random()) * backoff_factor
    delay = min(requested, max_backoff_seconds)
    if delay > 0:
        await asyncio.sleep(delay)


@dataclass(frozen=True, slots=True)
class RetryOptions:
    """How often and how patiently ``request_with_retries`` tries again.

    A ``backoff_factor`` of zero retries immediately, which is what tests use.
    """

    retries: int = 2
    backoff_factor: float = 1.0
    max_backoff_seconds: float = 30.0
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES

    async def pause(self, attempt: int, response: httpx.Response | None = None) -> None:
        await wait_before_retry(
            attempt,
            response=response,
            backoff_factor=self.backoff_factor,
            max_backoff_seconds=self.max_backoff_seconds,
        )


async def request_with_retries(
    request_factory: Callable[[], Awaitable[httpx.Response]],
    *,
    options: RetryOptions | None = None,
    log_context: str = "",
) -> httpx.Response:
    """Send a request, retrying transport errors and transient statuses.

    ``request_factory`` is called once per attempt. The final response is
    returned whatever its status, so the caller maps non-2xx answers to its
    own errors; the final transport error is re-raised.
    """
    opts = options or RetryOptions()
    where = f" for {log_context}" if log_context else ""
    attempt = 0
    while True:
        retries_left = attempt < opts.retries
        try:
            response = await request_factory()
        except httpx.RequestError as exc:
            if not retries_left:
                raise
            logger.warning(
                "Request error%s (attempt %s of %s): %s",
                where,
                attempt + 1,
                opts.retries + 1,
                exc,
            )
            await opts.pause(attempt)
        else:
            if not retries_left or response.status_code not in opts.retryable_statuses:
                return response
            logger.warning(
                "Upstream answered %s%s (attempt %s of %s)",
                response.status_code,
                where,
                attempt + 1,
                opts.retries + 1,
            )
            await response.aclose()
            await opts.pause(attempt, response)
        attempt += 1
