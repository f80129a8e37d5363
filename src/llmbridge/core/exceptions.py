"""Domain errors raised at the adapter boundary."""

from __future__ import annotations

import json
from enum import StrEnum

UPSTREAM_BODY_PREVIEW_CHARS = 300
_QUOTA_MARKERS = ("insufficient_quota", "exceeded your current quota")


class ErrorCode(StrEnum):
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UPSTREAM_HTTP_ERROR = "UPSTREAM_HTTP_ERROR"
    PROVIDER_SPECIFIC_ERROR = "PROVIDER_SPECIFIC_ERROR"
    STREAM_PARSE_ERROR = "STREAM_PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ChatError(RuntimeError):
    """Base class for every error surfaced to a bot caller."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        cause: object | None = None,
    ) -> None:
        """Create a ChatError.

        Args:
            message: Human-readable error message.
            code: Error kind; defaults to the subclass kind.
            cause: Parsed body, raw text or original exception behind the error.

        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.cause = cause


class ConfigurationError(ChatError):
    """Missing or invalid bot configuration."""

    default_code = ErrorCode.CONFIGURATION_ERROR


class UpstreamHttpError(ChatError):
    """Raised when a provider answers with a non-2xx status."""

    default_code = ErrorCode.UPSTREAM_HTTP_ERROR

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        api_message: str | None = None,
        cause: object | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.api_message = api_message


class ProviderSpecificError(ChatError):
    default_code = ErrorCode.PROVIDER_SPECIFIC_ERROR


class InsufficientQuotaError(ProviderSpecificError):
    """Raised when the provider reports an exhausted usage quota."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        cause: object | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status_code = status_code


class StreamParseError(ChatError):
    default_code = ErrorCode.STREAM_PARSE_ERROR


class UnknownError(ChatError):
    default_code = ErrorCode.UNKNOWN_ERROR


class BotBusyError(RuntimeError):
    """Raised when a bot is asked to reset while a message is streaming."""


def wrap_error(error: BaseException) -> ChatError:
    """Return ``error`` unchanged when it is a ChatError, otherwise wrap it."""
    if isinstance(error, ChatError):
        return error
    message = str(error) or type(error).__name__
    return UnknownError(message, cause=error)


def _parse_body(body_text: str) -> object | None:
    try:
        return json.loads(body_text)
    except (TypeError, ValueError):
        return None


def _extract_api_error(parsed: object) -> tuple[str | None, str | None]:
    """Return ``(message, code)`` from a provider error envelope."""
    if isinstance(parsed, list) and parsed:
        # Vertex returns a one-element list around the envelope.
        parsed = parsed[0]
    if not isinstance(parsed, dict):
        return None, None

    error = parsed.get("error", parsed)
    if isinstance(error, str):
        return error, None
    if not isinstance(error, dict):
        return None, None

    message = error.get("message")
    code = error.get("code") or error.get("type") or error.get("status")
    return (
        message if isinstance(message, str) else None,
        str(code) if code is not None else None,
    )


def is_quota_error(message: str | None, code: str | None) -> bool:
    haystack = f"{code or ''} {message or ''}".lower()
    return any(marker in haystack for marker in _QUOTA_MARKERS)


def build_upstream_error(
    status_code: int,
    reason: str,
    body_text: str,
) -> ChatError:
    """Build the domain error for a non-2xx provider response.

    The message reads ``"<status> <reason>; <api message>"``; when the body
    is not a JSON error envelope the first characters of the raw body are
    used instead. ``cause`` carries the parsed body, or the raw text when it
    could not be parsed.
    """
    parsed = _parse_body(body_text)
    api_message, api_code = _extract_api_error(parsed)
    detail = api_message or body_text[:UPSTREAM_BODY_PREVIEW_CHARS]
    status_line = f"{status_code} {reason}".strip()
    message = f"{status_line}; {detail}" if detail else status_line
    cause = parsed if parsed is not None else body_text

    if is_quota_error(api_message, api_code):
        return InsufficientQuotaError(
            message,
            status_code=status_code,
            cause=cause,
        )
    return UpstreamHttpError(
        message,
        status_code=status_code,
        api_message=api_message,
        cause=cause,
    )
