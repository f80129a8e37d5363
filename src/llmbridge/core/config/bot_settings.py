"""Resolved, per-adapter configuration records.

The factory layers provider references, bot entries and global defaults into
exactly one of these records. Each adapter accepts only its own record, so a
missing key or wrong provider is rejected before any request is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from llmbridge.core.config.constants import (
    ANTHROPIC_DEFAULT_MAX_TOKENS,
    DEFAULT_CONTEXT_SIZE,
    DEFAULT_LOCALE,
    DEFAULT_REASONING_EFFORT,
    GEMINI_DEFAULT_THINKING_LEVEL,
)
from llmbridge.core.config.user_config import (
    AgentSettings,
    AuthMode,
    ProviderEntry,
    ProviderKind,
    ResponseFormat,
)


@dataclass(frozen=True, slots=True, kw_only=True)
class BotSettings:
    """Fields every adapter understands."""

    provider: ProviderKind
    model: str
    api_key: str = ""
    host: str = ""
    is_host_full_path: bool = False
    name: str | None = None
    avatar: str | None = None
    temperature: float | None = None
    system_message: str = ""
    context_size: int = DEFAULT_CONTEXT_SIZE
    locale: str = DEFAULT_LOCALE
    web_access: bool = False
    thinking_mode: bool = False
    thinking_budget: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class OpenAIChatSettings(BotSettings):
    reasoning_effort: str = DEFAULT_REASONING_EFFORT
    response_format: ResponseFormat | None = None
    extra_body: dict[str, Any] | None = None
    provider_only: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AnthropicSettings(BotSettings):
    use_authorization_header: bool = False
    beta_headers: str | None = None
    max_tokens: int = ANTHROPIC_DEFAULT_MAX_TOKENS


@dataclass(frozen=True, slots=True, kw_only=True)
class VertexClaudeSettings(AnthropicSettings):
    """Claude on Vertex AI; ``host`` is always the full ``rawPredict`` URL."""


@dataclass(frozen=True, slots=True, kw_only=True)
class GeminiSettings(BotSettings):
    api_version: str | None = None
    extra_headers: dict[str, str] | None = None
    vertexai: bool = False
    thinking_level: str = GEMINI_DEFAULT_THINKING_LEVEL


@dataclass(frozen=True, slots=True, kw_only=True)
class VertexGeminiSettings(BotSettings):
    auth_mode: AuthMode = AuthMode.HEADER


@dataclass(frozen=True, slots=True, kw_only=True)
class ResponsesSettings(BotSettings):
    reasoning_effort: str = DEFAULT_REASONING_EFFORT
    extra_body: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class OpenRouterImageSettings(BotSettings):
    aspect_ratio: str | None = None
    provider_only: str | None = None
    http_referer: str | None = None
    x_title: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ImageAgentBotSettings(BotSettings):
    """Settings for the tool-calling image agent.

    ``image_provider`` holds the credentials of the image API and
    ``prompt_bot_index`` points at the text bot that writes the prompt.
    """

    agent: AgentSettings = field(default_factory=AgentSettings)
    image_provider: ProviderEntry | None = None
    prompt_bot_index: int = 0
    prompt_bot_provider: ProviderKind = ProviderKind.OPENAI


AdapterSettings = (
    OpenAIChatSettings
    | AnthropicSettings
    | VertexClaudeSettings
    | GeminiSettings
    | VertexGeminiSettings
    | ResponsesSettings
    | OpenRouterImageSettings
    | ImageAgentBotSettings
)
