"""OpenAI-compatible ``/v1/chat/completions`` streaming adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from llmbridge.core.config.bot_settings import OpenAIChatSettings
from llmbridge.core.config.constants import OPENAI_IMAGE_DETAIL
from llmbridge.core.config.user_config import ResponseFormatType
from llmbridge.core.config.utils import build_endpoint
from llmbridge.core.models import (
    AnswerPayload,
    DoneEvent,
    SendMessageParams,
    ToolCallData,
    ToolCallEvent,
)
from llmbridge.services.llm.providers.base import HttpProviderBot, PreparedRequest
from llmbridge.services.llm.sse import DONE_SENTINEL, iter_sse_events, sse_json

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "v1/chat/completions"


@dataclass(slots=True)
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


@dataclass(slots=True)
class ChatStreamState:
    """Accumulated answer of one chat-completions stream."""

    text: str = ""
    reasoning_summary: str = ""
    tool_calls: dict[int, _PendingToolCall] = field(default_factory=dict)

    def payload(self) -> AnswerPayload:
        return AnswerPayload(text=self.text, thinking=self.reasoning_summary or None)

    def finished_tool_calls(self) -> list[ToolCallData]:
        calls: list[ToolCallData] = []
        for index in sorted(self.tool_calls):
            pending = self.tool_calls[index]
            try:
                arguments = json.loads(pending.arguments) if pending.arguments else {}
            except json.JSONDecodeError:
                logger.warning("Tool call %s has malformed arguments", pending.name)
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {"value": arguments}
            calls.append(
                ToolCallData(id=pending.id, name=pending.name, arguments=arguments),
            )
        return calls


def apply_chat_chunk(state: ChatStreamState, data: dict[str, Any]) -> bool:
    """Fold one decoded stream chunk into ``state``.

    Returns:
        True when the visible answer or reasoning changed.

    """
    changed = False

    # Reasoning models may send whole output items instead of deltas.
    output = data.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict):
                continue
            if item.get("type") == "reasoning":
                for summary in item.get("summary") or ():
                    if not isinstance(summary, dict):
                        continue
                    if summary.get("type") == "summary_text" and summary.get("text"):
                        state.reasoning_summary = summary["text"]
            elif item.get("type") == "message":
                for content in item.get("content") or ():
                    if not isinstance(content, dict):
                        continue
                    if content.get("type") == "output_text" and content.get("text"):
                        state.text = content["text"]
        changed = True

    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
        if isinstance(content, str) and content:
            state.text += content
            changed = True
        for tool_delta in delta.get("tool_calls") or ():
            index = tool_delta.get("index", 0)
            pending = state.tool_calls.setdefault(index, _PendingToolCall())
            pending.id = tool_delta.get("id") or pending.id
            function = tool_delta.get("function") or {}
            pending.name = function.get("name") or pending.name
            pending.arguments += function.get("arguments") or ""

    return changed


class ChatGPTApiBot(HttpProviderBot[OpenAIChatSettings]):
    """Adapter for OpenAI and every API that mimics chat completions."""

    @property
    def name(self) -> str | None:
        return self.settings.name or f"ChatGPT (API/{self.settings.model})"

    @property
    def supports_image_input(self) -> bool:
        return True

    def build_user_turn(self, text: str, params: SendMessageParams) -> dict[str, Any]:
        if not params.images:
            return {"role": "user", "content": text}
        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        content.extend(
            {
                "type": "image_url",
                "image_url": {"url": image.to_data_url(), "detail": OPENAI_IMAGE_DETAIL},
            }
            for image in params.images
        )
        return {"role": "user", "content": content}

    def build_messages(self, params: SendMessageParams) -> list[dict[str, Any]]:
        return [
            {"role": "system", "content": self._system_message},
            *self.context_window(),
            self.build_user_turn(params.prompt, params),
        ]

    def _response_format(self) -> dict[str, Any] | None:
        extra_body = self.settings.extra_body or {}
        response_format = self.settings.response_format
        if response_format is None or "response_format" in extra_body:
            return None
        if response_format.type is ResponseFormatType.JSON_SCHEMA:
            return {
                "type": "json_schema",
                "json_schema": {
                    "name": response_format.name,
                    "schema": response_format.schema,
                },
            }
        return {"type": "json_object"}

    def build_request(self, params: SendMessageParams) -> PreparedRequest:
        settings = self.settings
        body: dict[str, Any] = {
            "model": settings.model,
            "messages": self.build_messages(params),
            "stream": True,
        }
        if response_format := self._response_format():
            body["response_format"] = response_format
        if settings.thinking_mode:
            body["reasoning_effort"] = settings.reasoning_effort
        elif settings.temperature is not None:
            body["temperature"] = settings.temperature
        if settings.provider_only:
            only = [name.strip() for name in settings.provider_only.split(",")]
            body["provider"] = {"only": [name for name in only if name]}
        if settings.extra_body:
            body["extra_body"] = settings.extra_body
        if self._tools:
            body["tools"] = self._tools

        return PreparedRequest(
            url=build_endpoint(
                settings.host,
                CHAT_COMPLETIONS_PATH,
                is_full_path=settings.is_host_full_path,
            ),
            body=body,
            headers={"Authorization": f"Bearer {settings.api_key}"},
        )

    async def do_send_message(self, params: SendMessageParams) -> None:
        request = self.build_request(params)
        state = ChatStreamState()

        async with self.open_stream(request) as response:
            async for event in iter_sse_events(response):
                if event.data == DONE_SENTINEL:
                    break
                data = sse_json(event)
                if not isinstance(data, dict):
                    continue
                if apply_chat_chunk(state, data):
                    self.emit_update_answer(params, state.payload())

        for call in state.finished_tool_calls():
            params.on_event(ToolCallEvent(data=call))

        self.commit_exchange(
            self.build_user_turn(params.history_text, params),
            {"role": "assistant", "content": state.text},
        )
        params.on_event(DoneEvent())
