"""Convert adapter-native conversation turns to and from the agnostic history.

Only text crosses the bridge. Images, audio and tool blocks stay with the
adapter that produced them. Every function returns freshly built objects, so
the two sides never share a list or dict.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from llmbridge.core.models import Author, ConversationHistory, HistoryMessage

_TEXT_PART_TYPES = frozenset({"text", "input_text", "output_text"})
_GEMINI_ROLE_BY_AUTHOR = {"user": "user", "assistant": "model"}


def new_message_id() -> str:
    return uuid.uuid4().hex


def first_text_part(content: object) -> str:
    """Return the first textual part of a chat-style ``content`` value."""
    if isinstance(content, str):
        return content
    if not isinstance(content, Iterable):
        return ""
    for part in content:
        if not isinstance(part, Mapping):
            continue
        text = part.get("text")
        if part.get("type", "text") in _TEXT_PART_TYPES and isinstance(text, str):
            return text
    return ""


def _author_for(role: object) -> Author | None:
    if role == "user":
        return "user"
    if role in {"assistant", "model"}:
        return "assistant"
    return None


def chat_turns_to_history(turns: Iterable[Mapping[str, Any]]) -> ConversationHistory:
    """Map ``{"role", "content"}`` turns (OpenAI, Anthropic, Responses)."""
    messages: list[HistoryMessage] = []
    for turn in turns:
        author = _author_for(turn.get("role"))
        if author is None:
            continue
        messages.append(
            HistoryMessage(
                id=new_message_id(),
                author=author,
                text=first_text_part(turn.get("content")),
            ),
        )
    return ConversationHistory(messages=messages)


def history_to_chat_turns(history: ConversationHistory) -> list[dict[str, Any]]:
    return [
        {"role": message.author, "content": message.text}
        for message in history.messages
    ]


def history_to_responses_input(history: ConversationHistory) -> list[dict[str, Any]]:
    """Build Responses API ``input`` items; user text is ``input_text``."""
    items: list[dict[str, Any]] = []
    for message in history.messages:
        part_type = "input_text" if message.author == "user" else "output_text"
        items.append(
            {
                "role": message.author,
                "content": [{"type": part_type, "text": message.text}],
            },
        )
    return items


def gemini_contents_to_history(
    contents: Iterable[Mapping[str, Any]],
) -> ConversationHistory:
    """Map Gemini ``{"role": "user"|"model", "parts": [...]}`` contents."""
    messages: list[HistoryMessage] = []
    for content in contents:
        author = _author_for(content.get("role"))
        if author is None:
            continue
        text = ""
        for part in content.get("parts") or ():
            if not isinstance(part, Mapping) or part.get("thought"):
                continue
            value = part.get("text")
            if isinstance(value, str):
                text = value
                break
        messages.append(HistoryMessage(id=new_message_id(), author=author, text=text))
    return ConversationHistory(messages=messages)


def history_to_gemini_contents(history: ConversationHistory) -> list[dict[str, Any]]:
    return [
        {
            "role": _GEMINI_ROLE_BY_AUTHOR[message.author],
            "parts": [{"text": message.text}],
        }
        for message in history.messages
    ]
