"""Structured error logging for bot failures and uncaught exceptions.

Every failure is logged once, at the boundary that handles it, as
``"<message> | key=value, ..."`` with the traceback attached.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Mapping
    from types import TracebackType

    from llmbridge.core.exceptions import ChatError

LOGGER = logging.getLogger(__name__)


def _format_context(context: Mapping[str, object]) -> str:
    return ", ".join(f"{key}={value!r}" for key, value in sorted(context.items()))


def log_exception(
    *,
    logger: logging.Logger,
    message: str,
    error: BaseException,
    context: Mapping[str, object] | None = None,
) -> None:
    """Log ``error`` at ERROR level with its traceback and sorted context."""
    text = f"{message} | {_format_context(context)}" if context else message
    logger.error("%s", text, exc_info=error)


def chat_error_context(error: ChatError) -> dict[str, object]:
    """Collect the loggable attributes of a domain error."""
    context: dict[str, object] = {"code": str(error.code)}
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        context["status_code"] = status_code
    if error.cause is not None:
        context["cause_type"] = type(error.cause).__name__
    return context


def log_chat_error(
    *,
    logger: logging.Logger,
    message: str,
    error: ChatError,
    context: Mapping[str, object] | None = None,
) -> None:
    """Log a domain error with its code, status and cause attached.

    When the error wraps an exception, that exception's traceback is the one
    logged.
    """
    traced = error.cause if isinstance(error.cause, BaseException) else error
    log_exception(
        logger=logger,
        message=message,
        error=traced,
        context={**chat_error_context(error), **(context or {})},
    )


def register_asyncio_exception_handler(
    loop: asyncio.AbstractEventLoop,
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Log exceptions nobody retrieved from tasks and callbacks on ``loop``."""
    target = logger or LOGGER

    def _handle(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        details = dict(context)
        error = details.pop("exception", None)
        message = str(details.get("message") or "Unhandled asyncio exception")
        if isinstance(error, BaseException):
            log_exception(logger=target, message=message, error=error, context=details)
        else:
            target.error("%s | %s", message, _format_context(details))

    loop.set_exception_handler(_handle)


def install_global_exception_hooks(*, logger: logging.Logger | None = None) -> None:
    """Send uncaught exceptions in the main thread and worker threads to logging.

    ``KeyboardInterrupt`` keeps its default handling.
    """
    target = logger or LOGGER
    previous_hook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def _excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            previous_hook(exc_type, exc_value, exc_traceback)
            return
        target.error(
            "Unhandled exception at process boundary",
            exc_info=(exc_type, exc_value, exc_traceback),
        )

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, KeyboardInterrupt):
            previous_thread_hook(args)
            return
        thread_name = args.thread.name if args.thread else "unknown"
        exc_info = (
            (args.exc_type, args.exc_value, args.exc_traceback)
            if isinstance(args.exc_value, BaseException)
            else None
        )
        target.error("Unhandled thread exception | thread=%s", thread_name, exc_info=exc_info)

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook
