"""Anthropic Messages API adapters (direct API and Claude on Vertex AI)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from llmbridge.core.config.bot_settings import AnthropicSettings, VertexClaudeSettings
from llmbridge.core.config.constants import (
    ANTHROPIC_DEFAULT_HOST,
    ANTHROPIC_MIN_THINKING_BUDGET,
    ANTHROPIC_VERSION,
    EMPTY_MESSAGE_PLACEHOLDER,
    VERTEX_ANTHROPIC_VERSION,
    VERTEX_CLAUDE_DEFAULT_THINKING_BUDGET,
)
from llmbridge.core.config.utils import build_endpoint, parse_key_value_headers
from llmbridge.core.exceptions import ProviderSpecificError
from llmbridge.core.models import (
    AnswerPayload,
    DoneEvent,
    SendMessageParams,
    ToolCallData,
    ToolCallEvent,
)
from llmbridge.services.llm.providers.base import HttpProviderBot, PreparedRequest
from llmbridge.services.llm.sse import iter_sse_events, sse_json

logger = logging.getLogger(__name__)

MESSAGES_PATH = "v1/messages"


def sanitize_claude_turns(turns: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Make stored turns safe to resend.

    The API rejects empty text blocks and ``tool_use`` blocks that have no
    matching ``tool_result``, so empty text becomes a placeholder and tool
    uses are rendered as plain text.
    """
    sanitized: list[dict[str, Any]] = []
    for turn in turns:
        content = turn.get("content")
        if isinstance(content, str):
            sanitized.append({**turn, "content": content or EMPTY_MESSAGE_PLACEHOLDER})
            continue

        parts: list[dict[str, Any]] = []
        for part in content or ():
            part_type = part.get("type")
            if part_type == "tool_use":
                parts.append({"type": "text", "text": f"[Tool use: {part.get('name')}]"})
            elif part_type == "text":
                parts.append({"type": "text", "text": part.get("text") or EMPTY_MESSAGE_PLACEHOLDER})
            else:
                parts.append(dict(part))
        if not parts:
            parts.append({"type": "text", "text": EMPTY_MESSAGE_PLACEHOLDER})
        sanitized.append({**turn, "content": parts})
    return sanitized


@dataclass(slots=True)
class ClaudeEventOutcome:
    changed: bool = False
    tool_call: ToolCallData | None = None
    stop: bool = False


@dataclass(slots=True)
class ClaudeStreamState:
    """Content blocks of one Messages stream, keyed by block index."""

    blocks: dict[int, dict[str, Any]] = field(default_factory=dict)

    def _ordered(self) -> list[dict[str, Any]]:
        return [self.blocks[index] for index in sorted(self.blocks)]

    @property
    def text(self) -> str:
        return "".join(
            block.get("text") or ""
            for block in self._ordered()
            if block.get("type") == "text"
        )

    @property
    def thinking(self) -> str:
        return "\n\n".join(
            block["thinking"]
            for block in self._ordered()
            if block.get("type") == "thinking" and block.get("thinking")
        )

    def payload(self) -> AnswerPayload:
        return AnswerPayload(text=self.text, thinking=self.thinking or None)

    def assistant_content(self) -> list[dict[str, Any]]:
        """Blocks worth keeping in history; thinking is dropped."""
        content: list[dict[str, Any]] = []
        for block in self._ordered():
            if block.get("type") == "text":
                content.append({"type": "text", "text": block.get("text") or ""})
            elif block.get("type") == "tool_use":
                content.append(
                    {
                        "type": "tool_use",
                        "id": block.get("id", ""),
                        "name": block.get("name", ""),
                        "input": block.get("input") or {},
                    },
                )
        return content


def _finish_tool_use(block: dict[str, Any]) -> ToolCallData:
    raw = block.pop("partial_json", "")
    try:
        arguments = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        logger.warning("Tool use %s has malformed input: %.200s", block.get("name"), raw)
        arguments = {}
    if not isinstance(arguments, dict):
        arguments = {"value": arguments}
    block["input"] = arguments
    return ToolCallData(id=block.get("id", ""), name=block.get("name", ""), arguments=arguments)


def apply_claude_event(state: ClaudeStreamState, data: dict[str, Any]) -> ClaudeEventOutcome:
    """Fold one Messages stream event into ``state``.

    Raises:
        ProviderSpecificError: If the stream reports an ``error`` event.

    """
    event_type = data.get("type")
    index = data.get("index", 0)

    if event_type == "content_block_start":
        block = dict(data.get("content_block") or {})
        if block.get("type") == "tool_use":
            block["partial_json"] = ""
        state.blocks[index] = block
        return ClaudeEventOutcome(changed=bool(block.get("text") or block.get("thinking")))

    if event_type == "content_block_delta":
        block = state.blocks.setdefault(index, {"type": "text", "text": ""})
        delta = data.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            block["text"] = (block.get("text") or "") + (delta.get("text") or "")
            return ClaudeEventOutcome(changed=True)
        if delta_type == "thinking_delta":
            block["thinking"] = (block.get("thinking") or "") + (delta.get("thinking") or "")
            return ClaudeEventOutcome(changed=True)
        if delta_type == "input_json_delta":
            block["partial_json"] = block.get("partial_json", "") + (delta.get("partial_json") or "")
        return ClaudeEventOutcome()

    if event_type == "content_block_stop":
        block = state.blocks.get(index)
        if block is not None and block.get("type") == "tool_use":
            return ClaudeEventOutcome(tool_call=_finish_tool_use(block))
        return ClaudeEventOutcome()

    if event_type == "message_stop":
        return ClaudeEventOutcome(stop=True)

    if event_type == "error":
        error = data.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ProviderSpecificError(message or "Anthropic stream error", cause=data)

    return ClaudeEventOutcome()


class ClaudeApiBot(HttpProviderBot[AnthropicSettings]):
    """Adapter for the Anthropic Messages API and compatible gateways."""

    @property
    def name(self) -> str | None:
        return self.settings.name or "Claude (API)"

    @property
    def supports_image_input(self) -> bool:
        return True

    def build_user_turn(self, text: str, params: SendMessageParams) -> dict[str, Any]:
        if not params.images:
            return {"role": "user", "content": text}
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": image.to_base64(),
                },
            }
            for image in params.images
        ]
        content.append({"type": "text", "text": text})
        return {"role": "user", "content": content}

    def endpoint(self) -> str:
        return build_endpoint(
            self.settings.host or ANTHROPIC_DEFAULT_HOST,
            MESSAGES_PATH,
            is_full_path=self.settings.is_host_full_path,
        )

    def auth_headers(self) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self.settings.use_authorization_header:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        else:
            headers["x-api-key"] = self.settings.api_key
        headers.update(parse_key_value_headers(self.settings.beta_headers))
        return headers

    def base_body(self) -> dict[str, Any]:
        return {"model": self.settings.model}

    def thinking_budget(self) -> int:
        return max(self.settings.thinking_budget or 0, ANTHROPIC_MIN_THINKING_BUDGET)

    def build_request(self, params: SendMessageParams) -> PreparedRequest:
        settings = self.settings
        messages = sanitize_claude_turns(
            [*self.context_window(), self.build_user_turn(params.prompt, params)],
        )
        body: dict[str, Any] = {
            **self.base_body(),
            "messages": messages,
            "max_tokens": settings.max_tokens,
            "stream": True,
        }
        if self._system_message:
            body["system"] = self._system_message
        if settings.thinking_mode:
            budget = self.thinking_budget()
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
            body["max_tokens"] = budget + settings.max_tokens
        elif settings.temperature is not None:
            body["temperature"] = settings.temperature
        if self._tools:
            body["tools"] = self._tools

        return PreparedRequest(url=self.endpoint(), body=body, headers=self.auth_headers())

    async def do_send_message(self, params: SendMessageParams) -> None:
        request = self.build_request(params)
        state = ClaudeStreamState()

        async with self.open_stream(request) as response:
            async for event in iter_sse_events(response):
                data = sse_json(event)
                if not isinstance(data, dict):
                    continue
                outcome = apply_claude_event(state, data)
                if outcome.changed:
                    self.emit_update_answer(params, state.payload())
                if outcome.tool_call is not None:
                    params.on_event(ToolCallEvent(data=outcome.tool_call))
                if outcome.stop:
                    break

        self.commit_exchange(
            self.build_user_turn(params.history_text, params),
            {"role": "assistant", "content": state.assistant_content()},
        )
        params.on_event(DoneEvent())


class VertexClaudeBot(ClaudeApiBot):
    """Claude served through Vertex AI ``rawPredict``/``streamRawPredict``.

    The host is always the complete endpoint, the model is part of that URL
    and the API version travels in the body.
    """

    settings: VertexClaudeSettings

    @property
    def name(self) -> str | None:
        return self.settings.name or "Claude (Vertex AI)"

    def endpoint(self) -> str:
        return self.settings.host.strip()

    def auth_headers(self) -> dict[str, str]:
        headers = {"Authorization": self.settings.api_key}
        headers.update(parse_key_value_headers(self.settings.beta_headers))
        return headers

    def base_body(self) -> dict[str, Any]:
        return {"anthropic_version": VERTEX_ANTHROPIC_VERSION}

    def thinking_budget(self) -> int:
        budget = self.settings.thinking_budget or VERTEX_CLAUDE_DEFAULT_THINKING_BUDGET
        return max(budget, ANTHROPIC_MIN_THINKING_BUDGET)
