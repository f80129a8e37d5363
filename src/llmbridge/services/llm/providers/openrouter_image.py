"""OpenRouter chat completions with image output (``modalities: image, text``)."""

from __future__ import annotations

import logging
import os
from typing import Any

from llmbridge.bots.history import first_text_part
from llmbridge.core.config.bot_settings import OpenRouterImageSettings
from llmbridge.core.config.constants import OPENAI_IMAGE_DETAIL, OPENROUTER_DEFAULT_HOST
from llmbridge.core.config.utils import build_endpoint
from llmbridge.core.models import AnswerPayload, DoneEvent, SendMessageParams
from llmbridge.services.llm.providers.base import HttpProviderBot, PreparedRequest
from llmbridge.services.llm.providers.openai_chat import CHAT_COMPLETIONS_PATH
from llmbridge.services.llm.sse import DONE_SENTINEL, iter_sse_events, sse_json

logger = logging.getLogger(__name__)

OPENROUTER_SITE_URL_ENV = "OR_SITE_URL"
OPENROUTER_APP_NAME_ENV = "OR_APP_NAME"


def build_openrouter_headers(
    api_key: str,
    *,
    http_referer: str | None = None,
    x_title: str | None = None,
) -> dict[str, str]:
    """Bearer auth plus the optional app attribution headers.

    Explicit values win over the ``OR_SITE_URL`` / ``OR_APP_NAME`` environment.
    """
    headers = {"Authorization": f"Bearer {api_key}"}
    if site_url := http_referer or os.getenv(OPENROUTER_SITE_URL_ENV):
        headers["HTTP-Referer"] = site_url
    if app_name := x_title or os.getenv(OPENROUTER_APP_NAME_ENV):
        headers["X-Title"] = app_name
    return headers


def first_delta_image_url(delta: dict[str, Any]) -> str | None:
    images = delta.get("images")
    if not isinstance(images, list) or not images or not isinstance(images[0], dict):
        return None
    image_url = images[0].get("image_url") or {}
    return image_url.get("url") or None


class OpenRouterImageBot(HttpProviderBot[OpenRouterImageSettings]):
    """History is kept as plain text; images are only part of the live answer."""

    @property
    def name(self) -> str | None:
        return self.settings.name or f"OpenRouter Image ({self.settings.model})"

    @property
    def supports_image_input(self) -> bool:
        return True

    def build_messages(self, params: SendMessageParams) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self._system_message.strip():
            messages.append({"role": "system", "content": self._system_message})
        messages.extend(
            {"role": turn["role"], "content": first_text_part(turn.get("content"))}
            for turn in self.context_window()
        )
        if params.images:
            content: list[dict[str, Any]] = [{"type": "text", "text": params.prompt}]
            content.extend(
                {
                    "type": "image_url",
                    "image_url": {"url": image.to_data_url(), "detail": OPENAI_IMAGE_DETAIL},
                }
                for image in params.images
            )
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": params.prompt})
        return messages

    def build_request(self, params: SendMessageParams) -> PreparedRequest:
        settings = self.settings
        body: dict[str, Any] = {
            "model": settings.model,
            "messages": self.build_messages(params),
            "modalities": ["image", "text"],
            "stream": True,
        }
        if settings.aspect_ratio and settings.aspect_ratio != "auto":
            body["image_config"] = {"aspect_ratio": settings.aspect_ratio}
        if settings.provider_only and settings.provider_only.strip():
            only = [name.strip() for name in settings.provider_only.split(",")]
            body["provider"] = {"only": [name for name in only if name]}

        return PreparedRequest(
            url=build_endpoint(
                settings.host or OPENROUTER_DEFAULT_HOST,
                CHAT_COMPLETIONS_PATH,
                is_full_path=settings.is_host_full_path,
            ),
            body=body,
            headers=build_openrouter_headers(
                settings.api_key,
                http_referer=settings.http_referer,
                x_title=settings.x_title,
            ),
        )

    async def do_send_message(self, params: SendMessageParams) -> None:
        request = self.build_request(params)
        text = ""
        image_markdown = ""

        async with self.open_stream(request) as response:
            async for event in iter_sse_events(response):
                if event.data == DONE_SENTINEL:
                    break
                data = sse_json(event)
                if not isinstance(data, dict):
                    continue
                choices = data.get("choices")
                if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                    continue
                delta = choices[0].get("delta")
                if not isinstance(delta, dict):
                    continue
                if isinstance(delta.get("content"), str):
                    text += delta["content"]
                if url := first_delta_image_url(delta):
                    image_markdown = f"\n\n![image]({url})"
                self.emit_update_answer(
                    params,
                    AnswerPayload(text=(text + image_markdown).strip()),
                )

        self.commit_exchange(
            {"role": "user", "content": params.history_text},
            {"role": "assistant", "content": text},
        )
        params.on_event(DoneEvent())
