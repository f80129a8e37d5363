"""Gemini on Vertex AI (or a Vertex-style gateway) over plain REST.

The adapter never streams: one ``generateContent`` call returns the whole
answer, which is emitted as a single update.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote

from llmbridge.bots.history import gemini_contents_to_history, history_to_gemini_contents
from llmbridge.core.config import image_only_placeholder
from llmbridge.core.config.bot_settings import VertexGeminiSettings
from llmbridge.core.config.constants import (
    GEMINI_DEFAULT_TEMPERATURE,
    VERTEX_GEMINI_MIN_THINKING_BUDGET,
)
from llmbridge.core.config.user_config import AuthMode
from llmbridge.core.models import (
    AnswerPayload,
    ConversationHistory,
    DoneEvent,
    SendMessageParams,
)
from llmbridge.services.llm.providers.base import HttpProviderBot, PreparedRequest

logger = logging.getLogger(__name__)

_INLINE_IMAGE_MARKDOWN_RE = re.compile(r"!\[[^\]]*\]\(data:[^)]+\)")


def strip_inline_image_markdown(text: str) -> str:
    """Remove ``![..](data:...)`` images so they are not resent as text."""
    if not text:
        return ""
    return _INLINE_IMAGE_MARKDOWN_RE.sub("", text).strip()


def resolve_vertex_url(host: str, model: str) -> str:
    """Fill ``%model`` and force the non-streaming ``:generateContent`` method."""
    url = host.strip()
    if "%model" in url:
        url = url.replace("%model", quote(model, safe=""))
    return url.replace(":streamGenerateContent", ":generateContent", 1)


def _first_text(content: dict[str, Any]) -> str:
    for part in content.get("parts") or ():
        if isinstance(part, dict) and part.get("text"):
            return part["text"]
    return ""


class VertexGeminiBot(HttpProviderBot[VertexGeminiSettings]):
    @property
    def name(self) -> str | None:
        return self.settings.name or f"VertexAI Gemini ({self.settings.model})"

    @property
    def supports_image_input(self) -> bool:
        return True

    def get_conversation_history(self) -> ConversationHistory | None:
        return gemini_contents_to_history(self._turns)

    def set_conversation_history(self, history: ConversationHistory) -> None:
        self._turns = history_to_gemini_contents(history)

    def replace_turn_text(self, turn: dict[str, Any], text: str) -> dict[str, Any]:
        return {**turn, "parts": [{"text": text}]}

    def build_user_content(self, text: str, params: SendMessageParams) -> dict[str, Any]:
        parts: list[dict[str, Any]] = [{"text": text or ""}]
        parts.extend(
            {"inlineData": {"data": image.to_base64(), "mimeType": image.mime_type}}
            for image in params.images
        )
        return {"role": "user", "parts": parts}

    def sanitized_context(self) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        for content in self.context_window():
            if content.get("role") == "model":
                clean = strip_inline_image_markdown(_first_text(content))
                contents.append({"role": "model", "parts": [{"text": clean}]})
            else:
                contents.append(content)
        return contents

    def build_request(self, params: SendMessageParams) -> PreparedRequest:
        settings = self.settings
        generation_config: dict[str, Any] = {
            "temperature": (
                settings.temperature
                if settings.temperature is not None
                else GEMINI_DEFAULT_TEMPERATURE
            ),
        }
        if settings.thinking_mode:
            budget = settings.thinking_budget or VERTEX_GEMINI_MIN_THINKING_BUDGET
            generation_config["thinkingConfig"] = {
                "thinkingBudget": max(budget, VERTEX_GEMINI_MIN_THINKING_BUDGET),
                "includeThoughts": True,
            }
        body: dict[str, Any] = {
            "contents": [
                *self.sanitized_context(),
                self.build_user_content(params.prompt, params),
            ],
            "generationConfig": generation_config,
        }
        if self._system_message.strip():
            body["systemInstruction"] = {"parts": [{"text": self._system_message}]}

        url = resolve_vertex_url(settings.host, settings.model)
        headers: dict[str, str] = {}
        if settings.auth_mode is AuthMode.QUERY:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}key={quote(settings.api_key, safe='')}"
        else:
            headers["Authorization"] = settings.api_key
        return PreparedRequest(url=url, body=body, headers=headers)

    async def do_send_message(self, params: SendMessageParams) -> None:
        data = await self.post_json(self.build_request(params))

        texts: list[str] = []
        thinking = ""
        images: list[str] = []
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            for part in content.get("parts") or ():
                if not isinstance(part, dict):
                    continue
                if part.get("thought"):
                    thinking += part.get("text") or ""
                elif part.get("text"):
                    texts.append(part["text"])
                elif (inline := part.get("inlineData")) and inline.get("data"):
                    mime_type = inline.get("mimeType") or "image/png"
                    images.append(f"![image](data:{mime_type};base64,{inline['data']})")
        else:
            logger.warning("Vertex Gemini response has no candidates")

        final_text = "".join(texts) or image_only_placeholder(self.settings.locale)
        image_markdown = "\n\n" + "\n\n".join(images) if images else ""

        self.commit_exchange(
            self.build_user_content(params.history_text, params),
            {"role": "model", "parts": [{"text": final_text}]},
        )
        self.emit_update_answer(
            params,
            AnswerPayload(text=(final_text + image_markdown).strip(), thinking=thinking or None),
        )
        params.on_event(DoneEvent())
