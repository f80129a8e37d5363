"""Bots whose real adapter is built asynchronously after construction."""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any

from llmbridge.bots.base import AbstractBot
from llmbridge.core.error_handling import log_exception

if TYPE_CHECKING:
    from llmbridge.core.models import ConversationHistory, SendMessageParams

logger = logging.getLogger(__name__)


class PlaceholderBot(AbstractBot):
    """Stands in for the real adapter until initialization finishes."""

    async def do_send_message(self, params: SendMessageParams) -> None:
        _ = params

    def clear_history(self) -> None:
        return None


class AsyncAbstractBot(AbstractBot):
    """Expose the bot contract immediately and build the adapter in the background.

    ``initialize_bot`` runs once, in a task started at construction when an
    event loop is running and otherwise on first use. Every delegated call
    awaits that task, so calls made early simply queue behind it. A failed
    initialization is remembered and raised again from each such call.
    Capability getters read the current inner bot, placeholder included, and
    never wait.
    """

    def __init__(self) -> None:
        super().__init__()
        self._bot: AbstractBot = PlaceholderBot()
        self._init_task: asyncio.Task[None] | None = None
        self._init_error: BaseException | None = None
        self._pending_history: ConversationHistory | None = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._init_task = loop.create_task(self._initialize())

    @abstractmethod
    async def initialize_bot(self) -> AbstractBot:
        """Build the adapter this wrapper delegates to."""

    @property
    def initialized(self) -> bool:
        return self._init_task is not None and self._init_task.done()

    async def _initialize(self) -> None:
        try:
            bot = await self.initialize_bot()
        except Exception as exc:  # noqa: BLE001
            self._init_error = exc
            log_exception(
                logger=logger,
                message="Bot initialization failed",
                error=exc,
                context={"bot": type(self).__name__},
            )
            return
        if self._pending_history is not None:
            bot.set_conversation_history(self._pending_history)
            self._pending_history = None
        self._bot = bot

    async def wait_until_ready(self) -> AbstractBot:
        """Wait for initialization and return the real adapter.

        Raises:
            Exception: The error ``initialize_bot`` failed with.

        """
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())
        # Shielded so a cancelled caller does not abort the shared setup.
        await asyncio.shield(self._init_task)
        if self._init_error is not None:
            raise self._init_error
        return self._bot

    # Capabilities proxy to whatever is current.

    @property
    def name(self) -> str | None:
        return self._bot.name

    @property
    def chat_bot_name(self) -> str | None:
        return self._bot.chat_bot_name

    @property
    def model_name(self) -> str | None:
        return self._bot.model_name

    @property
    def avatar(self) -> str | None:
        return self._bot.avatar

    @property
    def supports_image_input(self) -> bool:
        return self._bot.supports_image_input

    @property
    def supports_audio_input(self) -> bool:
        return self._bot.supports_audio_input

    # Delegated calls

    async def do_send_message(self, params: SendMessageParams) -> None:
        bot = await self.wait_until_ready()
        bot.reset_thinking_diff()
        await bot.do_send_message(params)

    async def modify_last_message(self, text: str) -> None:
        bot = await self.wait_until_ready()
        await bot.modify_last_message(text)

    async def set_system_message(self, system_message: str) -> None:
        bot = await self.wait_until_ready()
        await bot.set_system_message(system_message)

    async def get_system_message(self) -> str:
        bot = await self.wait_until_ready()
        return await bot.get_system_message()

    async def set_web_access_enabled(self, enabled: bool) -> None:
        bot = await self.wait_until_ready()
        await bot.set_web_access_enabled(enabled)

    async def set_tools(self, tools: list[dict[str, Any]]) -> None:
        bot = await self.wait_until_ready()
        await bot.set_tools(tools)

    # History is reachable before initialization finishes.

    def clear_history(self) -> None:
        self._pending_history = None
        self._bot.clear_history()

    def get_conversation_history(self) -> ConversationHistory | None:
        if isinstance(self._bot, PlaceholderBot):
            return self._pending_history
        return self._bot.get_conversation_history()

    def set_conversation_history(self, history: ConversationHistory) -> None:
        if isinstance(self._bot, PlaceholderBot):
            self._pending_history = history
            return
        self._bot.set_conversation_history(history)

    def snapshot_history(self) -> object:
        if isinstance(self._bot, PlaceholderBot):
            return self._pending_history
        return self._bot.snapshot_history()

    def restore_history(self, snapshot: object) -> None:
        if isinstance(self._bot, PlaceholderBot):
            self._pending_history = snapshot  # type: ignore[assignment]
            return
        self._bot.restore_history(snapshot)
