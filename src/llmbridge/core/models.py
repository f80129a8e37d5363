"""Canonical answer, event and history types shared by every bot."""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Literal

if TYPE_CHECKING:
    from llmbridge.core.exceptions import ChatError

Author = Literal["user", "assistant"]


@dataclass(slots=True)
class SearchResultItem:
    """A single web search hit attached to an answer."""

    title: str
    link: str
    snippet: str = ""
    provider: str | None = None


@dataclass(slots=True)
class ReferenceUrl:
    url: str
    title: str | None = None


@dataclass(slots=True)
class AnswerPayload:
    """The visible answer at one point in time.

    ``text`` is cumulative: every update replaces the previous one. ``thinking``
    is a delta once it has passed through ``AbstractBot.emit_update_answer``
    and must be appended by the caller.
    """

    text: str
    thinking: str | None = None
    search_results: list[SearchResultItem] | None = None
    reference_urls: list[ReferenceUrl] | None = None


@dataclass(slots=True)
class ToolCallData:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class UpdateAnswerEvent:
    type: ClassVar[Literal["UPDATE_ANSWER"]] = "UPDATE_ANSWER"

    data: AnswerPayload


@dataclass(slots=True)
class DoneEvent:
    type: ClassVar[Literal["DONE"]] = "DONE"


@dataclass(slots=True)
class ErrorEvent:
    type: ClassVar[Literal["ERROR"]] = "ERROR"

    error: ChatError


@dataclass(slots=True)
class ToolCallEvent:
    type: ClassVar[Literal["TOOL_CALL"]] = "TOOL_CALL"

    data: ToolCallData


Event = UpdateAnswerEvent | DoneEvent | ErrorEvent | ToolCallEvent
EventCallback = Callable[[Event], None]
TERMINAL_EVENT_TYPES = (DoneEvent, ErrorEvent)


@dataclass(slots=True)
class HistoryMessage:
    """Provider-agnostic conversation turn used to move history between bots."""

    id: str
    author: Author
    text: str


@dataclass(slots=True)
class ConversationHistory:
    messages: list[HistoryMessage] = field(default_factory=list)


class _Base64Mixin:
    __slots__ = ()

    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass(slots=True)
class ImageInput(_Base64Mixin):
    """An image attached to a user message."""

    data: bytes
    mime_type: str = "image/png"
    filename: str = "image.png"


@dataclass(slots=True)
class AudioInput(_Base64Mixin):
    """An audio clip attached to a user message."""

    data: bytes
    mime_type: str = "audio/mpeg"
    filename: str = "audio.mp3"


class CancellationToken:
    """Cooperative cancellation shared by the caller and an in-flight send."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(slots=True)
class MessageParams:
    """What the caller hands to ``AbstractBot.send_message``."""

    prompt: str
    raw_user_input: str | None = None
    images: list[ImageInput] = field(default_factory=list)
    audio_files: list[AudioInput] = field(default_factory=list)
    signal: CancellationToken | None = None

    @property
    def history_text(self) -> str:
        """Text recorded in history for the user turn."""
        return self.raw_user_input or self.prompt


def _discard_event(_event: Event) -> None:
    return None


@dataclass(slots=True)
class SendMessageParams(MessageParams):
    """Parameters passed to ``do_send_message`` with the event sink attached."""

    on_event: EventCallback = field(default=_discard_event, kw_only=True)
