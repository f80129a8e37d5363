"""OpenAI Responses API (``/v1/responses``) streaming adapter."""

from __future__ import annotations

import json
import logging
from typing import Any

from llmbridge.bots.history import history_to_responses_input
from llmbridge.core.config.bot_settings import ResponsesSettings
from llmbridge.core.config.utils import build_endpoint
from llmbridge.core.exceptions import ProviderSpecificError
from llmbridge.core.models import (
    AnswerPayload,
    ConversationHistory,
    DoneEvent,
    SendMessageParams,
    ToolCallData,
    ToolCallEvent,
)
from llmbridge.services.llm.providers.base import HttpProviderBot, PreparedRequest
from llmbridge.services.llm.responses_stream import (
    FunctionCallItem,
    ResponsesStreamHandler,
    handle_responses_event,
)
from llmbridge.services.llm.sse import DONE_SENTINEL, iter_sse_events, sse_json

logger = logging.getLogger(__name__)

RESPONSES_PATH = "v1/responses"

_MIME_BY_FORMAT = {"jpeg": "image/jpeg", "jpg": "image/jpeg", "webp": "image/webp"}


def sanitize_responses_input(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Force ``output_text`` parts on assistant items and ``input_*`` on user items."""
    sanitized: list[dict[str, Any]] = []
    for item in items:
        role = item.get("role")
        content = item.get("content")
        parts = content if isinstance(content, list) else [{"text": content or ""}]
        if role == "assistant":
            sanitized.append(
                {
                    "role": role,
                    "content": [
                        {"type": "output_text", "text": part.get("text") or ""}
                        for part in parts
                    ],
                },
            )
        else:
            sanitized.append(
                {
                    "role": role,
                    "content": [
                        part
                        if part.get("type") == "input_image"
                        else {"type": "input_text", "text": part.get("text") or ""}
                        for part in parts
                    ],
                },
            )
    return sanitized


def to_responses_function_tool(tool: dict[str, Any]) -> dict[str, Any]:
    """Flatten a chat-completions function tool into the Responses shape."""
    function = tool.get("function")
    if tool.get("type") == "function" and isinstance(function, dict):
        return {"type": "function", **function}
    if "input_schema" in tool:
        return {
            "type": "function",
            "name": tool.get("name"),
            "description": tool.get("description"),
            "parameters": tool["input_schema"],
        }
    return dict(tool)


def extract_completed_image(response: dict[str, Any]) -> tuple[str, str, str | None] | None:
    """Return ``(base64, mime_type, revised_prompt)`` of an image output item."""
    item = next(
        (
            entry
            for entry in response.get("output") or ()
            if isinstance(entry, dict) and entry.get("type") == "image_generation_call"
        ),
        None,
    )
    if item is None:
        return None
    raw: Any = None
    for key in ("result", "image_b64", "image_base64", "b64_json"):
        if item.get(key):
            raw = item[key]
            break
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    if isinstance(raw, dict):
        raw = raw.get("b64_json") or raw.get("base64")
    if not isinstance(raw, str) or not raw:
        return None
    image_format = str(item.get("output_format") or item.get("format") or "png")
    mime_type = _MIME_BY_FORMAT.get(image_format, "image/png")
    return raw, mime_type, item.get("revised_prompt") or None


class _ResponsesAnswer(ResponsesStreamHandler):
    """Collects one streamed answer and re-emits it after every change."""

    def __init__(self, bot: OpenAIResponsesBot, params: SendMessageParams) -> None:
        self.bot = bot
        self.params = params
        self.text = ""
        self.reasoning = ""
        self.image_markdown = ""
        self.revised_prompt_note = ""
        self.tool_calls: list[ToolCallData] = []
        self.finished = False

    def _emit(self) -> None:
        display = (self.text + self.image_markdown + self.revised_prompt_note).strip()
        self.bot.emit_update_answer(
            self.params,
            AnswerPayload(text=display, thinking=self.reasoning or None),
        )

    def on_text_delta(self, text: str) -> None:
        self.text += text
        self._emit()

    def on_text_final(self, text: str) -> None:
        self.text = text
        self._emit()

    def on_reasoning_delta(self, text: str) -> None:
        self.reasoning += text
        self._emit()

    def on_reasoning_final(self, text: str) -> None:
        self.reasoning = text
        self._emit()

    def on_image_partial(self, b64: str) -> None:
        self.image_markdown = f"\n\n![image](data:image/png;base64,{b64})"
        self._emit()

    def on_image_done(self, b64: str) -> None:
        self.on_image_partial(b64)

    def on_function_call(self, call: FunctionCallItem) -> None:
        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError:
            logger.warning("Function call %s has malformed arguments", call.name)
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        self.tool_calls.append(
            ToolCallData(id=call.call_id or call.id, name=call.name, arguments=arguments),
        )

    def on_completed(self, response: dict[str, Any] | None) -> None:
        self.finished = True
        image = extract_completed_image(response) if isinstance(response, dict) else None
        if image is None:
            return
        b64, mime_type, revised_prompt = image
        self.image_markdown = f"\n\n![image](data:{mime_type};base64,{b64})"
        if revised_prompt:
            self.revised_prompt_note = f"\n\n_Revised prompt:_\n{revised_prompt}"
        self._emit()

    def on_incomplete(self, response: dict[str, Any] | None) -> None:
        logger.info("Response ended incomplete: %s", (response or {}).get("incomplete_details"))
        self.finished = True

    def on_error(self, message: str, raw: object) -> None:
        raise ProviderSpecificError(message, cause=raw)


class OpenAIResponsesBot(HttpProviderBot[ResponsesSettings]):
    @property
    def name(self) -> str | None:
        return self.settings.name or f"OpenAI Responses ({self.settings.model})"

    @property
    def supports_image_input(self) -> bool:
        return True

    def build_user_item(self, text: str, params: SendMessageParams) -> dict[str, Any]:
        content: list[dict[str, Any]] = [{"type": "input_text", "text": text}]
        content.extend(
            {"type": "input_image", "image_url": image.to_data_url()}
            for image in params.images
        )
        return {"role": "user", "content": content}

    def set_conversation_history(self, history: ConversationHistory) -> None:
        self._turns = history_to_responses_input(history)

    def replace_turn_text(self, turn: dict[str, Any], text: str) -> dict[str, Any]:
        return {**turn, "content": text}

    def build_tools(self) -> list[dict[str, Any]] | None:
        extra_tools = (self.settings.extra_body or {}).get("tools")
        if self._tools:
            return [to_responses_function_tool(tool) for tool in self._tools]
        if isinstance(extra_tools, list):
            return extra_tools
        if self._web_access:
            return [{"type": "web_search_preview"}]
        return None

    def build_request(self, params: SendMessageParams) -> PreparedRequest:
        settings = self.settings
        body: dict[str, Any] = {
            "model": settings.model,
            "input": sanitize_responses_input(
                [*self.context_window(), self.build_user_item(params.prompt, params)],
            ),
            "stream": True,
        }
        if self._system_message.strip():
            body["instructions"] = self._system_message
        if settings.thinking_mode:
            body["reasoning"] = {"effort": settings.reasoning_effort}
        if settings.extra_body:
            body["extra_body"] = settings.extra_body
        if tools := self.build_tools():
            body["tools"] = tools

        return PreparedRequest(
            url=build_endpoint(
                settings.host,
                RESPONSES_PATH,
                is_full_path=settings.is_host_full_path,
            ),
            body=body,
            headers={"Authorization": f"Bearer {settings.api_key}"},
        )

    async def do_send_message(self, params: SendMessageParams) -> None:
        request = self.build_request(params)
        answer = _ResponsesAnswer(self, params)

        async with self.open_stream(request) as response:
            async for event in iter_sse_events(response):
                if event.data == DONE_SENTINEL:
                    break
                data = sse_json(event)
                if not isinstance(data, dict):
                    continue
                handle_responses_event(data, event.event, answer)
                if answer.finished:
                    break

        for call in answer.tool_calls:
            params.on_event(ToolCallEvent(data=call))

        # Only the text is kept; generated images are display-only.
        self.commit_exchange(
            self.build_user_item(params.history_text, params),
            {"role": "assistant", "content": answer.text},
        )
        params.on_event(DoneEvent())
