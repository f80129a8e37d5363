"""Dispatch OpenAI Responses API stream events to handler methods."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class FunctionCallItem:
    id: str
    name: str
    arguments: str
    call_id: str


class ResponsesStreamHandler:
    """Receives decoded Responses stream events; every hook is a no-op."""

    def on_text_delta(self, text: str) -> None:
        pass

    def on_text_final(self, text: str) -> None:
        pass

    def on_reasoning_delta(self, text: str) -> None:
        pass

    def on_reasoning_final(self, text: str) -> None:
        pass

    def on_image_partial(self, b64: str) -> None:
        pass

    def on_image_done(self, b64: str) -> None:
        pass

    def on_function_call(self, call: FunctionCallItem) -> None:
        pass

    def on_completed(self, response: dict[str, Any] | None) -> None:
        pass

    def on_incomplete(self, response: dict[str, Any] | None) -> None:
        pass

    def on_error(self, message: str, raw: object) -> None:
        pass


def _first_image_b64(data: dict[str, Any]) -> str | None:
    for key in ("result", "image_b64", "image_base64", "b64_json"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def handle_responses_event(
    data: dict[str, Any],
    event_name: str | None,
    handler: ResponsesStreamHandler,
) -> None:
    """Route one stream frame by its ``type`` (or the SSE event name)."""
    event_type = data.get("type") or event_name

    if event_type == "error":
        error = data.get("error") or data
        message = error.get("message") if isinstance(error, dict) else None
        handler.on_error(message or "Response stream error", error)
    elif event_type == "response.failed":
        response = data.get("response") or {}
        error = response.get("error") or data.get("error") or data
        message = error.get("message") if isinstance(error, dict) else None
        handler.on_error(message or "Response failed", error)
    elif event_type == "response.incomplete":
        handler.on_incomplete(data.get("response"))
    elif event_type == "response.completed":
        handler.on_completed(data.get("response"))
    elif event_type in {"response.output_text.delta", "response.refusal.delta"}:
        if delta := data.get("delta"):
            handler.on_text_delta(delta)
    elif event_type == "response.output_text.done":
        if text := data.get("text"):
            handler.on_text_final(text)
    elif event_type in {
        "response.reasoning_summary_text.delta",
        "response.reasoning_text.delta",
    }:
        if delta := data.get("delta"):
            handler.on_reasoning_delta(delta)
    elif event_type in {
        "response.reasoning_summary_text.done",
        "response.reasoning_text.done",
    }:
        if text := data.get("text"):
            handler.on_reasoning_final(text)
    elif event_type == "response.image_generation_call.partial_image":
        if b64 := data.get("partial_image_b64"):
            handler.on_image_partial(b64)
    elif event_type in {
        "response.image_generation_call.done",
        "response.image_generation_call.completed",
        "image_generation.completed",
    }:
        if b64 := _first_image_b64(data):
            handler.on_image_done(b64)
    elif event_type == "response.output_item.done":
        item = data.get("item") or {}
        if item.get("type") == "function_call" and item.get("status") == "completed":
            handler.on_function_call(
                FunctionCallItem(
                    id=item.get("id", ""),
                    name=item.get("name", ""),
                    arguments=item.get("arguments") or "",
                    call_id=item.get("call_id", ""),
                ),
            )
