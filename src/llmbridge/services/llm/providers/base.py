"""Plumbing shared by the adapters that talk to providers over httpx."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import httpx

from llmbridge.bots.base import AbstractBot
from llmbridge.bots.history import chat_turns_to_history, history_to_chat_turns
from llmbridge.core.config.bot_settings import BotSettings
from llmbridge.core.config.http import HttpxClientOptions, SharedHttpClient
from llmbridge.core.exceptions import StreamParseError
from llmbridge.core.models import ConversationHistory
from llmbridge.services.llm.errors import raise_for_upstream_error

logger = logging.getLogger(__name__)

LLM_HTTP_CLIENT = SharedHttpClient(HttpxClientOptions(timeout=60.0, read_timeout=300.0))
_SettingsT = TypeVar("_SettingsT", bound=BotSettings)


def get_llm_http_client() -> httpx.AsyncClient:
    return LLM_HTTP_CLIENT.get()


@dataclass(slots=True)
class PreparedRequest:
    """A fully built provider request."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class ProviderBot(AbstractBot, Generic[_SettingsT]):
    """Adapter base holding settings, mutable prompt state and the turn list.

    ``_turns`` is the provider-native context. It only changes through
    ``commit_exchange`` (one user turn plus one assistant turn after a
    completed exchange), ``set_conversation_history`` and ``clear_history``.
    """

    def __init__(self, settings: _SettingsT) -> None:
        super().__init__()
        self.settings = settings
        self._system_message = settings.system_message
        self._web_access = settings.web_access
        self._tools: list[dict[str, Any]] = []
        self._turns: list[dict[str, Any]] = []

    @property
    def name(self) -> str | None:
        return self.settings.name

    @property
    def model_name(self) -> str | None:
        return self.settings.model

    @property
    def avatar(self) -> str | None:
        return self.settings.avatar

    async def set_system_message(self, system_message: str) -> None:
        self._system_message = system_message

    async def get_system_message(self) -> str:
        return self._system_message

    async def set_web_access_enabled(self, enabled: bool) -> None:
        self._web_access = enabled

    async def set_tools(self, tools: list[dict[str, Any]]) -> None:
        self._tools = [dict(tool) for tool in tools]

    def clear_history(self) -> None:
        self._turns = []

    def get_conversation_history(self) -> ConversationHistory | None:
        return chat_turns_to_history(self._turns)

    def set_conversation_history(self, history: ConversationHistory) -> None:
        self._turns = history_to_chat_turns(history)

    def snapshot_history(self) -> object:
        return list(self._turns)

    def restore_history(self, snapshot: object) -> None:
        self._turns = list(snapshot)  # type: ignore[call-overload]

    def context_window(self) -> list[dict[str, Any]]:
        """Return the most recent turns that fit the configured window."""
        size = self.settings.context_size
        return list(self._turns[-size:]) if size > 0 else []

    def commit_exchange(
        self,
        user_turn: dict[str, Any],
        assistant_turn: dict[str, Any],
    ) -> None:
        self._turns.extend((user_turn, assistant_turn))

    async def modify_last_message(self, text: str) -> None:
        if not self._turns or self._turns[-1].get("role") not in {"assistant", "model"}:
            return
        self._turns[-1] = self.replace_turn_text(self._turns[-1], text)

    def replace_turn_text(self, turn: dict[str, Any], text: str) -> dict[str, Any]:
        """Return ``turn`` with its text replaced; chat-style by default."""
        content = turn.get("content")
        if isinstance(content, list):
            parts = [dict(part) for part in content]
            for part in parts:
                if "text" in part:
                    part["text"] = text
                    return {**turn, "content": parts}
            return {**turn, "content": [{"type": "text", "text": text}, *parts]}
        return {**turn, "content": text}


class HttpProviderBot(ProviderBot[_SettingsT]):
    """Provider adapter that talks JSON over the shared httpx client."""

    def __init__(
        self,
        settings: _SettingsT,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(settings)
        self._http_client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._http_client or get_llm_http_client()

    @contextlib.asynccontextmanager
    async def open_stream(
        self,
        request: PreparedRequest,
    ) -> AsyncIterator[httpx.Response]:
        """POST ``request`` and yield the streaming response once it is 2xx."""
        logger.debug("POST %s (model=%s)", request.url, self.settings.model)
        headers = {"Content-Type": "application/json", **request.headers}
        async with self.client.stream(
            "POST",
            request.url,
            headers=headers,
            json=request.body,
        ) as response:
            await raise_for_upstream_error(response)
            yield response

    async def post_json(self, request: PreparedRequest) -> object:
        """POST ``request`` without streaming and return the decoded body."""
        logger.debug("POST %s (model=%s)", request.url, self.settings.model)
        headers = {"Content-Type": "application/json", **request.headers}
        response = await self.client.post(request.url, headers=headers, json=request.body)
        await raise_for_upstream_error(response)
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            message = f"Provider returned a body that is not JSON: {response.text[:200]}"
            raise StreamParseError(message, cause=response.text) from exc
