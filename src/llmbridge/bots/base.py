"""Bot lifecycle state machine shared by every provider adapter."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from llmbridge.bots.thinking import split_thinking, thinking_diff
from llmbridge.core.error_handling import log_chat_error
from llmbridge.core.exceptions import BotBusyError, wrap_error
from llmbridge.core.models import (
    AnswerPayload,
    DoneEvent,
    ErrorEvent,
    Event,
    SendMessageParams,
    TERMINAL_EVENT_TYPES,
    ToolCallEvent,
    UpdateAnswerEvent,
)

if TYPE_CHECKING:
    from llmbridge.core.models import ConversationHistory, MessageParams

logger = logging.getLogger(__name__)


class BotState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    ERRORED = "errored"


class _TerminalGate:
    """Forward events until the first terminal one, then drop the rest."""

    __slots__ = ("closed", "queue")

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Event] = asyncio.Queue()
        self.closed = False

    def __call__(self, event: Event) -> None:
        if self.closed:
            logger.debug("Dropping %s event after terminal event", event.type)
            return
        if isinstance(event, TERMINAL_EVENT_TYPES):
            self.closed = True
        self.queue.put_nowait(event)


class AbstractBot(ABC):
    """Uniform conversational contract over one provider adapter.

    Subclasses implement ``do_send_message``, which reports progress through
    ``params.on_event``: any number of ``UPDATE_ANSWER``/``TOOL_CALL`` events
    followed by exactly one ``DONE`` or ``ERROR``. ``send_message`` turns that
    callback stream into an async iterator of answer payloads.
    """

    def __init__(self) -> None:
        self.state = BotState.IDLE
        self._last_thinking: str | None = None

    # Capabilities

    @property
    def name(self) -> str | None:
        return None

    @property
    def chat_bot_name(self) -> str | None:
        return self.name

    @property
    def model_name(self) -> str | None:
        return None

    @property
    def avatar(self) -> str | None:
        return None

    @property
    def supports_image_input(self) -> bool:
        return False

    @property
    def supports_audio_input(self) -> bool:
        return False

    # Adapter contract

    @abstractmethod
    async def do_send_message(self, params: SendMessageParams) -> None:
        """Run one exchange and report it through ``params.on_event``."""

    @abstractmethod
    def clear_history(self) -> None:
        """Drop the adapter's native conversation context."""

    def get_conversation_history(self) -> ConversationHistory | None:
        return None

    def set_conversation_history(self, history: ConversationHistory) -> None:
        _ = history

    def snapshot_history(self) -> object:
        """Capture the native context so a failed exchange can be rolled back."""
        return self.get_conversation_history()

    def restore_history(self, snapshot: object) -> None:
        if snapshot is None:
            self.clear_history()
        else:
            self.set_conversation_history(snapshot)  # type: ignore[arg-type]

    async def modify_last_message(self, text: str) -> None:
        _ = text

    async def set_system_message(self, system_message: str) -> None:
        _ = system_message

    async def get_system_message(self) -> str:
        return ""

    async def set_web_access_enabled(self, enabled: bool) -> None:
        _ = enabled

    async def set_tools(self, tools: list[dict[str, Any]]) -> None:
        _ = tools

    # Lifecycle

    def reset_conversation(self) -> None:
        """Clear history and return to ``IDLE``.

        Raises:
            BotBusyError: If a message is still streaming; cancel it first.

        """
        if self.state is BotState.SENDING:
            message = "Cannot reset a conversation while a message is streaming"
            raise BotBusyError(message)
        self.clear_history()
        self.reset_thinking_diff()
        self.state = BotState.IDLE

    def reset_thinking_diff(self) -> None:
        self._last_thinking = None

    def emit_update_answer(
        self,
        params: SendMessageParams,
        payload: AnswerPayload,
    ) -> None:
        """Emit an answer update with ``thinking`` reduced to a delta.

        The visible ``text`` keeps replace semantics. ``thinking`` is taken
        from the payload, or from tags embedded in the text, and only the part
        not sent before is emitted; when it no longer extends the previous
        value the full new value is sent.
        """
        split = split_thinking(payload.text)
        current = payload.thinking or split.thinking
        if not current:
            params.on_event(UpdateAnswerEvent(data=payload))
            return

        diff = thinking_diff(self._last_thinking, current)
        self._last_thinking = current
        params.on_event(
            UpdateAnswerEvent(
                data=AnswerPayload(
                    text=split.text,
                    thinking=diff,
                    search_results=payload.search_results,
                    reference_urls=payload.reference_urls,
                ),
            ),
        )

    async def send_message(self, params: MessageParams) -> AsyncIterator[AnswerPayload]:
        """Stream the answer to one prompt.

        Yields cumulative answer payloads and ends after ``DONE``. An
        ``ERROR`` is raised as its ``ChatError``. Cancelling ``params.signal``
        or closing the iterator stops the request without raising.
        """
        gate = _TerminalGate()
        send_params = SendMessageParams(
            prompt=params.prompt,
            raw_user_input=params.raw_user_input,
            images=list(params.images),
            audio_files=list(params.audio_files),
            signal=params.signal,
            on_event=gate,
        )
        self.reset_thinking_diff()
        self.state = BotState.SENDING
        task = asyncio.create_task(self._run_exchange(send_params))
        cancel_waiter = (
            asyncio.ensure_future(params.signal.wait()) if params.signal else None
        )

        getter: asyncio.Future[Event] | None = None
        finished = False
        try:
            while True:
                getter = asyncio.ensure_future(gate.queue.get())
                waiters = {getter} if cancel_waiter is None else {getter, cancel_waiter}
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if params.signal is not None and params.signal.cancelled:
                    getter.cancel()
                    logger.debug("Send cancelled by caller")
                    return
                event = getter.result()
                if isinstance(event, UpdateAnswerEvent):
                    yield event.data
                elif isinstance(event, DoneEvent):
                    finished = True
                    self.state = BotState.IDLE
                    return
                elif isinstance(event, ErrorEvent):
                    finished = True
                    self.state = BotState.ERRORED
                    raise event.error
                elif isinstance(event, ToolCallEvent):
                    logger.debug("Tool call %s not consumed by caller", event.data.name)
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            # After a terminal event the adapter is only unwinding; let it finish.
            if not finished and not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            if self.state is BotState.SENDING:
                self.state = BotState.IDLE

    async def _run_exchange(self, params: SendMessageParams) -> None:
        try:
            await self.do_send_message(params)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            if params.signal is not None and params.signal.cancelled:
                logger.debug("Ignoring error raised after cancellation: %s", exc)
                return
            error = wrap_error(exc)
            log_chat_error(
                logger=logger,
                message="Bot request failed",
                error=error,
                context={"bot": type(self).__name__, "model": self.model_name},
            )
            params.on_event(ErrorEvent(error=error))
            return
        # No-op when the adapter already sent its terminal event.
        params.on_event(DoneEvent())
