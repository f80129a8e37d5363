"""Hosted Gemini adapter built on the google-genai SDK."""

from __future__ import annotations

import base64
import logging
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from llmbridge.bots.history import (
    gemini_contents_to_history,
    history_to_gemini_contents,
    new_message_id,
)
from llmbridge.core.config import image_only_placeholder
from llmbridge.core.config.bot_settings import GeminiSettings
from llmbridge.core.config.constants import GEMINI_DEFAULT_TEMPERATURE
from llmbridge.core.config.utils import is_gemini_3_model
from llmbridge.core.exceptions import UpstreamHttpError
from llmbridge.core.models import (
    AnswerPayload,
    ConversationHistory,
    DoneEvent,
    ReferenceUrl,
    SendMessageParams,
    ToolCallData,
    ToolCallEvent,
)
from llmbridge.services.llm.providers.base import ProviderBot

logger = logging.getLogger(__name__)

GEMINI_ERROR_PREFIX = "[GoogleGenerativeAI Error]"


def _function_declaration(tool: dict[str, Any]) -> types.FunctionDeclaration | None:
    """Accept a tool in OpenAI function or Anthropic ``input_schema`` shape."""
    if tool.get("type") == "function" and isinstance(tool.get("function"), dict):
        function = tool["function"]
        schema = function.get("parameters")
    elif "input_schema" in tool:
        function = tool
        schema = tool.get("input_schema")
    else:
        return None
    return types.FunctionDeclaration(
        name=function.get("name", ""),
        description=function.get("description"),
        parameters_json_schema=schema,
    )


def build_gemini_tools(
    custom_tools: list[dict[str, Any]],
    *,
    web_access: bool,
) -> list[types.Tool]:
    tools: list[types.Tool] = []
    declarations: list[types.FunctionDeclaration] = []
    for tool in custom_tools:
        declaration = _function_declaration(tool)
        if declaration is not None:
            declarations.append(declaration)
        else:
            tools.append(types.Tool.model_validate(tool))
    if declarations:
        tools.append(types.Tool(function_declarations=declarations))
    if web_access and not any(tool.google_search is not None for tool in tools):
        tools.append(types.Tool(google_search=types.GoogleSearch()))
    return tools


def _reference_urls(candidate: types.Candidate) -> list[ReferenceUrl]:
    metadata = candidate.grounding_metadata
    if metadata is None or not metadata.grounding_chunks:
        return []
    return [
        ReferenceUrl(url=chunk.web.uri, title=chunk.web.title or None)
        for chunk in metadata.grounding_chunks
        if chunk.web is not None and chunk.web.uri
    ]


class GeminiApiBot(ProviderBot[GeminiSettings]):
    """Streams answers through ``client.aio.models.generate_content_stream``.

    Thought parts are never surfaced. Inline images in the final chunk are
    appended as markdown and grounding chunks become reference URLs.
    """

    def __init__(
        self,
        settings: GeminiSettings,
        *,
        client: genai.Client | None = None,
    ) -> None:
        super().__init__(settings)
        self._client = client

    @property
    def name(self) -> str | None:
        return self.settings.name or "Gemini (API)"

    @property
    def supports_image_input(self) -> bool:
        return True

    @property
    def supports_audio_input(self) -> bool:
        return True

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(
                api_key=self.settings.api_key,
                vertexai=self.settings.vertexai,
                http_options=self._http_options(),
            )
        return self._client

    def _http_options(self) -> types.HttpOptions | None:
        settings = self.settings
        host = settings.host.strip()
        if not host and not settings.extra_headers and settings.api_version is None:
            return None
        options = types.HttpOptions()
        if host:
            options.base_url = host
            if settings.vertexai:
                # Gateways expect the path exactly as configured.
                options.api_version = settings.api_version or ""
            elif settings.api_version is not None:
                options.api_version = settings.api_version
        if settings.extra_headers:
            options.headers = dict(settings.extra_headers)
        return options

    def get_conversation_history(self) -> ConversationHistory | None:
        return gemini_contents_to_history(self._turns)

    def set_conversation_history(self, history: ConversationHistory) -> None:
        self._turns = history_to_gemini_contents(history)

    def replace_turn_text(self, turn: dict[str, Any], text: str) -> dict[str, Any]:
        return {**turn, "parts": [{"text": text}]}

    def build_user_content(self, text: str, params: SendMessageParams) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [
            {"inline_data": {"data": media.data, "mime_type": media.mime_type}}
            for media in (*params.images, *params.audio_files)
        ]
        parts.append({"text": text})
        return {"role": "user", "parts": parts}

    def build_config(self) -> types.GenerateContentConfig:
        settings = self.settings
        config = types.GenerateContentConfig(
            temperature=(
                settings.temperature
                if settings.temperature is not None
                else GEMINI_DEFAULT_TEMPERATURE
            ),
        )
        if self._system_message:
            config.system_instruction = self._system_message
        tools = build_gemini_tools(self._tools, web_access=self._web_access)
        if tools:
            config.tools = tools
        if settings.thinking_mode:
            if is_gemini_3_model(settings.model):
                config.thinking_config = types.ThinkingConfig(
                    thinking_level=settings.thinking_level.upper(),
                )
            elif settings.thinking_budget is not None:
                config.thinking_config = types.ThinkingConfig(
                    thinking_budget=settings.thinking_budget,
                )
        return config

    async def do_send_message(self, params: SendMessageParams) -> None:
        contents = [*self.context_window(), self.build_user_content(params.prompt, params)]
        placeholder = image_only_placeholder(self.settings.locale)

        response_text = ""
        last_chunk: types.GenerateContentResponse | None = None
        tool_calls: list[ToolCallData] = []
        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=self.settings.model,
                contents=contents,
                config=self.build_config(),
            )
            async for chunk in stream:
                last_chunk = chunk
                if not chunk.candidates or chunk.candidates[0].content is None:
                    continue
                for part in chunk.candidates[0].content.parts or ():
                    if part.thought:
                        continue
                    if part.function_call is not None:
                        tool_calls.append(
                            ToolCallData(
                                id=part.function_call.id or new_message_id(),
                                name=part.function_call.name or "",
                                arguments=dict(part.function_call.args or {}),
                            ),
                        )
                    elif part.text:
                        response_text += part.text
                self.emit_update_answer(params, AnswerPayload(text=response_text))
        except genai_errors.APIError as exc:
            message = f"{GEMINI_ERROR_PREFIX}; {exc.message or exc}"
            raise UpstreamHttpError(
                message,
                status_code=exc.code,
                api_message=exc.message,
                cause=exc.details,
            ) from exc

        image_markdown = ""
        reference_urls: list[ReferenceUrl] = []
        if last_chunk is not None and last_chunk.candidates:
            candidate = last_chunk.candidates[0]
            images = [
                "![image](data:{};base64,{})".format(
                    part.inline_data.mime_type or "image/png",
                    base64.b64encode(part.inline_data.data).decode("ascii"),
                )
                for part in ((candidate.content.parts or ()) if candidate.content else ())
                if part.inline_data is not None and part.inline_data.data
            ]
            if images:
                image_markdown = "\n\n" + "\n\n".join(images)
            reference_urls = _reference_urls(candidate)

        if image_markdown or reference_urls:
            self.emit_update_answer(
                params,
                AnswerPayload(
                    text=(response_text + image_markdown).strip() or placeholder,
                    reference_urls=reference_urls or None,
                ),
            )
        elif not response_text and not tool_calls:
            self.emit_update_answer(params, AnswerPayload(text=placeholder))

        for call in tool_calls:
            params.on_event(ToolCallEvent(data=call))

        self.commit_exchange(
            self.build_user_content(params.history_text, params),
            {"role": "model", "parts": [{"text": response_text}]},
        )
        params.on_event(DoneEvent())
