from __future__ import annotations

import asyncio
import logging
import sys
import threading

import pytest

from llmbridge.core.error_handling import (
    install_global_exception_hooks,
    log_chat_error,
    log_exception,
    register_asyncio_exception_handler,
)
from llmbridge.core.exceptions import (
    ErrorCode,
    InsufficientQuotaError,
    UnknownError,
    UpstreamHttpError,
    build_upstream_error,
    is_quota_error,
    wrap_error,
)

LOGGER_NAME = "tests.errors"


def test_upstream_error_message_uses_api_message() -> None:
    error = build_upstream_error(400, "Bad Request", '{"error": {"message": "model not found"}}')

    assert isinstance(error, UpstreamHttpError)
    assert error.message == "400 Bad Request; model not found"
    assert error.api_message == "model not found"
    assert error.code is ErrorCode.UPSTREAM_HTTP_ERROR
    assert error.cause == {"error": {"message": "model not found"}}


def test_upstream_error_falls_back_to_raw_body_preview() -> None:
    body = "<html>" + "x" * 1000

    error = build_upstream_error(502, "Bad Gateway", body)

    assert error.message.startswith("502 Bad Gateway; <html>")
    assert len(error.message) < 400
    assert error.cause == body


def test_upstream_error_string_envelope_and_empty_body() -> None:
    assert build_upstream_error(500, "", '{"error": "boom"}').message == "500; boom"
    assert build_upstream_error(503, "Service Unavailable", "").message == "503 Service Unavailable"


def test_quota_errors() -> None:
    error = build_upstream_error(
        429,
        "Too Many Requests",
        '{"error": {"message": "quota", "code": "insufficient_quota"}}',
    )

    assert isinstance(error, InsufficientQuotaError)
    assert error.status_code == 429
    assert error.code is ErrorCode.PROVIDER_SPECIFIC_ERROR
    assert is_quota_error("You exceeded your current quota", None)
    assert not is_quota_error("rate limited", "429")


def test_wrap_error_keeps_chat_errors_and_wraps_others() -> None:
    chat_error = UpstreamHttpError("x", status_code=500)
    wrapped = wrap_error(KeyError("missing"))
    unnamed = wrap_error(ValueError())

    assert wrap_error(chat_error) is chat_error
    assert isinstance(wrapped, UnknownError)
    assert isinstance(wrapped.cause, KeyError)
    assert unnamed.message == "ValueError"


def test_log_exception_renders_sorted_context(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger(LOGGER_NAME)

    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        log_exception(
            logger=logger,
            message="Request failed",
            error=RuntimeError("boom"),
            context={"model": "gpt", "bot": "chat"},
        )

    record = caplog.records[-1]
    assert record.getMessage() == "Request failed | bot='chat', model='gpt'"
    assert record.exc_info is not None
    assert isinstance(record.exc_info[1], RuntimeError)


def test_log_chat_error_attaches_code_status_and_cause(caplog: pytest.LogCaptureFixture) -> None:
    cause = ConnectionError("reset")
    error = UpstreamHttpError("502 Bad Gateway", status_code=502, cause=cause)

    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        log_chat_error(
            logger=logging.getLogger(LOGGER_NAME),
            message="Bot request failed",
            error=error,
            context={"bot": "ChatGPTApiBot"},
        )

    record = caplog.records[-1]
    assert record.getMessage() == (
        "Bot request failed | bot='ChatGPTApiBot', cause_type='ConnectionError', "
        "code='UPSTREAM_HTTP_ERROR', status_code=502"
    )
    assert record.exc_info is not None
    assert record.exc_info[1] is cause


@pytest.mark.asyncio
async def test_asyncio_exception_handler_logs_through_logger(
    caplog: pytest.LogCaptureFixture,
) -> None:
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    register_asyncio_exception_handler(loop, logger=logging.getLogger(LOGGER_NAME))
    try:
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            loop.call_exception_handler({"message": "Task exception", "exception": ValueError("bad")})
            loop.call_exception_handler({"message": "No exception here"})
    finally:
        loop.set_exception_handler(previous)

    messages = [record.getMessage() for record in caplog.records]
    assert messages[0] == "Task exception | message='Task exception'"
    assert messages[1] == "No exception here | message='No exception here'"


def test_global_excepthook_logs_uncaught_errors(
    caplog: pytest.LogCaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    forwarded: list[type[BaseException]] = []
    monkeypatch.setattr(sys, "excepthook", lambda exc_type, _value, _tb: forwarded.append(exc_type))
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)

    install_global_exception_hooks(logger=logging.getLogger(LOGGER_NAME))
    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        sys.excepthook(RuntimeError, RuntimeError("late"), None)
        sys.excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)

    assert caplog.records[-1].getMessage() == "Unhandled exception at process boundary"
    assert forwarded == [KeyboardInterrupt]


def test_thread_excepthook_names_the_thread(
    caplog: pytest.LogCaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    monkeypatch.setattr(threading, "excepthook", threading.excepthook)
    install_global_exception_hooks(logger=logging.getLogger(LOGGER_NAME))

    worker = threading.Thread(name="image-poller")
    error = ValueError("worker failed")
    with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
        threading.excepthook(threading.ExceptHookArgs((ValueError, error, None, worker)))

    record = caplog.records[-1]
    assert record.getMessage() == "Unhandled thread exception | thread=image-poller"
    assert record.exc_info is not None
    assert isinstance(record.exc_info[1], ValueError)
