"""Resolve a configured bot index into a ready-to-use adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx

from llmbridge.bots.base import AbstractBot
from llmbridge.bots.deferred import AsyncAbstractBot
from llmbridge.bots.image_agent import ImageAgentBot
from llmbridge.core.config import load_user_config
from llmbridge.core.config.bot_settings import (
    AdapterSettings,
    AnthropicSettings,
    GeminiSettings,
    ImageAgentBotSettings,
    OpenAIChatSettings,
    OpenRouterImageSettings,
    ResponsesSettings,
    VertexClaudeSettings,
    VertexGeminiSettings,
)
from llmbridge.core.config.constants import (
    ANTHROPIC_DEFAULT_HOST,
    DEFAULT_REASONING_EFFORT,
    OPENAI_DEFAULT_HOST,
    OPENROUTER_DEFAULT_HOST,
)
from llmbridge.core.config.user_config import (
    AdvancedConfig,
    AgentSettings,
    BotEntry,
    OutputType,
    ProviderEntry,
    ProviderKind,
    SystemPromptMode,
    UserConfig,
)
from llmbridge.core.config.utils import parse_key_value_headers
from llmbridge.core.exceptions import ConfigurationError
from llmbridge.services.llm.providers.anthropic import ClaudeApiBot, VertexClaudeBot
from llmbridge.services.llm.providers.gemini import GeminiApiBot
from llmbridge.services.llm.providers.openai_chat import ChatGPTApiBot
from llmbridge.services.llm.providers.openai_responses import OpenAIResponsesBot
from llmbridge.services.llm.providers.openrouter_image import OpenRouterImageBot
from llmbridge.services.llm.providers.vertex_gemini import VertexGeminiBot

logger = logging.getLogger(__name__)

ConfigLoader = Callable[[], UserConfig]

_DEFAULT_HOSTS = {
    ProviderKind.OPENAI: OPENAI_DEFAULT_HOST,
    ProviderKind.OPENAI_RESPONSES: OPENAI_DEFAULT_HOST,
    ProviderKind.ANTHROPIC: ANTHROPIC_DEFAULT_HOST,
    ProviderKind.ANTHROPIC_CUSTOMAUTH: ANTHROPIC_DEFAULT_HOST,
    ProviderKind.OPENROUTER: OPENROUTER_DEFAULT_HOST,
}
# Kinds whose adapter cannot work without a host.
_HOST_REQUIRED = frozenset(
    {
        ProviderKind.OPENAI_GEMINI,
        ProviderKind.OPENAI_QWEN,
        ProviderKind.PERPLEXITY,
        ProviderKind.VERTEXAI_CLAUDE,
        ProviderKind.VERTEXAI_GEMINI,
    },
)
_OPENAI_CHAT_KINDS = frozenset(
    {
        ProviderKind.OPENAI,
        ProviderKind.OPENAI_GEMINI,
        ProviderKind.OPENAI_QWEN,
        ProviderKind.PERPLEXITY,
    },
)
_IMAGE_ONLY_KINDS = frozenset({ProviderKind.CHUTES_AI, ProviderKind.NOVITA_AI})


def infer_provider_kind(model: str) -> ProviderKind:
    """Guess the provider of a bot entry that does not name one."""
    if "anthropic.claude" in model:
        return ProviderKind.BEDROCK
    return ProviderKind.OPENAI


def combine_system_message(
    common: str,
    own: str,
    mode: SystemPromptMode | None,
) -> str:
    if mode is SystemPromptMode.APPEND:
        return f"{common}\n{own}"
    if mode is SystemPromptMode.OVERRIDE:
        return own
    if mode is SystemPromptMode.COMMON:
        return common
    return own or common


def _now(timezone: str | None) -> datetime:
    if not timezone:
        return datetime.now().astimezone()
    try:
        return datetime.now(ZoneInfo(timezone))
    except (ZoneInfoNotFoundError, ValueError) as exc:
        message = f"Unknown timezone: {timezone}"
        raise ConfigurationError(message, cause=exc) from exc


def render_system_message(
    template: str,
    *,
    model: str,
    bot_name: str | None,
    locale: str,
    timezone: str | None = None,
    now: datetime | None = None,
) -> str:
    """Substitute the supported ``{placeholder}`` variables.

    Unknown placeholders and stray braces are left untouched.
    """
    if "{" not in template:
        return template
    current = now or _now(timezone)
    values = {
        "{current_date}": current.strftime("%Y-%m-%d"),
        "{current_time}": current.strftime("%H:%M:%S"),
        "{modelname}": model,
        "{chatbotname}": bot_name or "",
        "{language}": locale,
        "{timezone}": timezone or current.strftime("%Z") or "UTC",
    }
    rendered = template
    for placeholder, value in values.items():
        rendered = rendered.replace(placeholder, value)
    return rendered


def _merge_advanced(primary: AdvancedConfig | None, fallback: AdvancedConfig) -> AdvancedConfig:
    """Overlay the keys written in ``primary`` on ``fallback``.

    A key counts as written even when its value is false or empty.
    """
    if primary is None:
        return fallback
    return fallback.model_copy(
        update={name: getattr(primary, name) for name in primary.model_fields_set},
    )


def _layered(name: str, reference: ProviderEntry | None, entry: BotEntry) -> Any:
    if reference is not None and name in reference.model_fields_set:
        return getattr(reference, name)
    return getattr(entry, name)


def _resolve_host(
    config: UserConfig,
    reference: ProviderEntry | None,
    entry: BotEntry,
    kind: ProviderKind,
) -> tuple[str, bool]:
    """Return the host and its full-path flag, both taken from the same layer."""
    for layer in (reference, entry):
        if layer is not None and layer.host:
            return layer.host, layer.is_host_full_path
    return config.custom_api_host or _DEFAULT_HOSTS.get(kind, ""), False


def _bot_entry(config: UserConfig, index: int) -> BotEntry:
    if not 0 <= index < len(config.bots):
        message = f"No configuration found for bot index {index}"
        raise ConfigurationError(message)
    return config.bots[index]


def _provider_reference(config: UserConfig, entry: BotEntry) -> ProviderEntry | None:
    if not entry.provider_ref_id:
        return None
    provider = config.find_provider(entry.provider_ref_id)
    if provider is None:
        message = f"Provider reference not found: {entry.provider_ref_id}"
        raise ConfigurationError(message)
    return provider


def resolve_provider_kind(config: UserConfig, index: int) -> ProviderKind:
    entry = _bot_entry(config, index)
    reference = _provider_reference(config, entry)
    return (
        (reference.provider if reference else None)
        or entry.provider
        or infer_provider_kind(entry.model)
    )


def resolve_bot_settings(
    config: UserConfig,
    index: int,
    *,
    now: datetime | None = None,
) -> AdapterSettings:
    """Build the settings record of bot ``index``.

    Connection values come from the referenced provider first, then the bot
    entry, then the global custom key and host.

    Raises:
        ConfigurationError: If the entry is missing or disabled, the provider
            reference does not resolve, the provider has no adapter, or a
            required host is missing.

    """
    entry = _bot_entry(config, index)
    if not entry.enabled:
        message = f"Bot {index} ({entry.name}) is disabled"
        raise ConfigurationError(message)

    reference = _provider_reference(config, entry)
    kind = resolve_provider_kind(config, index)
    if kind is ProviderKind.BEDROCK:
        message = f"Unsupported provider: {kind.value}"
        raise ConfigurationError(message)
    if kind in _IMAGE_ONLY_KINDS:
        message = f"Provider {kind.value} can only be used as an image agent's image provider"
        raise ConfigurationError(message)

    host, is_host_full_path = _resolve_host(config, reference, entry, kind)
    if not host and kind in _HOST_REQUIRED:
        message = f"Bot {index} ({entry.name}) needs a host for provider {kind.value}"
        raise ConfigurationError(message)
    api_key = (
        (reference.api_key if reference else None)
        or entry.api_key
        or config.custom_api_key
        or ""
    )
    advanced = _merge_advanced(reference.advanced if reference else None, entry.advanced)
    system_message = render_system_message(
        combine_system_message(
            config.common_system_message,
            entry.system_message,
            entry.system_prompt_mode,
        ),
        model=entry.model,
        bot_name=entry.name,
        locale=config.locale,
        timezone=config.timezone,
        now=now,
    )

    common: dict[str, Any] = {
        "provider": kind,
        "model": entry.model,
        "api_key": api_key,
        "host": host,
        "is_host_full_path": is_host_full_path,
        "name": entry.name,
        "avatar": entry.avatar,
        "temperature": entry.temperature,
        "system_message": system_message,
        "context_size": config.context_size,
        "locale": config.locale,
        "web_access": entry.web_access,
        "thinking_mode": entry.thinking_mode,
        "thinking_budget": entry.thinking_budget,
    }
    use_authorization_header = _layered("use_authorization_header", reference, entry)

    if kind is ProviderKind.OPENROUTER and reference and reference.output_type is OutputType.IMAGE:
        return OpenRouterImageSettings(
            **common,
            aspect_ratio=advanced.image_aspect_ratio,
            provider_only=advanced.provider_only,
            http_referer=advanced.http_referer,
            x_title=advanced.x_title,
        )
    if kind in _OPENAI_CHAT_KINDS or kind is ProviderKind.OPENROUTER:
        return OpenAIChatSettings(
            **common,
            reasoning_effort=entry.reasoning_effort or DEFAULT_REASONING_EFFORT,
            response_format=entry.response_format,
            extra_body=entry.extra_body,
            provider_only=advanced.provider_only,
        )
    if kind in (ProviderKind.ANTHROPIC, ProviderKind.ANTHROPIC_CUSTOMAUTH):
        return AnthropicSettings(
            **common,
            use_authorization_header=(
                use_authorization_header or kind is ProviderKind.ANTHROPIC_CUSTOMAUTH
            ),
            beta_headers=advanced.anthropic_beta_headers,
        )
    if kind is ProviderKind.VERTEXAI_CLAUDE:
        return VertexClaudeSettings(**common, beta_headers=advanced.anthropic_beta_headers)
    if kind is ProviderKind.GOOGLE:
        return GeminiSettings(
            **common,
            extra_headers=parse_key_value_headers(advanced.extra_headers) or None,
            vertexai=advanced.gemini_vertexai,
        )
    if kind is ProviderKind.VERTEXAI_GEMINI:
        return VertexGeminiSettings(
            **common,
            auth_mode=_layered("auth_mode", reference, entry),
        )
    if kind is ProviderKind.OPENAI_RESPONSES:
        return ResponsesSettings(
            **common,
            reasoning_effort=entry.reasoning_effort or DEFAULT_REASONING_EFFORT,
            extra_body=entry.extra_body,
        )
    if kind is ProviderKind.IMAGE_AGENT:
        return _image_agent_settings(config, entry, common)

    message = f"Unsupported provider: {kind.value}"
    raise ConfigurationError(message)


def _image_agent_settings(
    config: UserConfig,
    entry: BotEntry,
    common: dict[str, Any],
) -> ImageAgentBotSettings:
    agent = entry.agent or AgentSettings()
    image_provider = None
    if agent.image_provider_id:
        image_provider = config.find_provider(agent.image_provider_id)
        if image_provider is None:
            message = f"Image provider not found: {agent.image_provider_id}"
            raise ConfigurationError(message)
    prompt_bot_index = agent.prompt_generator_bot_index or 0
    return ImageAgentBotSettings(
        **common,
        agent=agent,
        image_provider=image_provider,
        prompt_bot_index=prompt_bot_index,
        prompt_bot_provider=resolve_provider_kind(config, prompt_bot_index),
    )


class BotRegistry:
    """One ``CustomBot`` per bot index."""

    def __init__(self) -> None:
        self._bots: dict[int, CustomBot] = {}

    def get(self, index: int) -> CustomBot | None:
        return self._bots.get(index)

    def set(self, index: int, bot: CustomBot) -> None:
        self._bots[index] = bot

    def invalidate(self, index: int) -> None:
        """Forget the bot at ``index`` so the next lookup rebuilds it."""
        self._bots.pop(index, None)

    def clear(self) -> None:
        self._bots.clear()

    def __len__(self) -> int:
        return len(self._bots)


class BotFactory:
    """Builds adapters from the user configuration and caches bots by index.

    Args:
        config_loader: Returns the current ``UserConfig``; called on every
            build so configuration edits apply to rebuilt bots.
        registry: Cache of built bots. A fresh one is created when omitted.
        http_client: Client injected into every HTTP adapter and image call.

    """

    def __init__(
        self,
        config_loader: ConfigLoader = load_user_config,
        registry: BotRegistry | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config_loader = config_loader
        self.registry = registry if registry is not None else BotRegistry()
        self._http_client = http_client

    def build_adapter(
        self,
        index: int,
        visited: frozenset[int] = frozenset(),
    ) -> AbstractBot:
        """Create a new, unshared adapter for bot ``index``.

        An image agent builds its own prompt bot adapter; ``visited`` holds
        the agent indices already on the way so a cycle raises instead of
        recursing forever.
        """
        if index in visited:
            message = f"Image agent prompt bot cycle at bot index {index}"
            raise ConfigurationError(message)
        settings = resolve_bot_settings(self.config_loader(), index)
        logger.debug("Building %s adapter for bot %s", settings.provider.value, index)

        match settings:
            case ImageAgentBotSettings():
                prompt_bot = self.build_adapter(settings.prompt_bot_index, visited | {index})
                return ImageAgentBot(settings, prompt_bot, http_client=self._http_client)
            case VertexClaudeSettings():
                return VertexClaudeBot(settings, http_client=self._http_client)
            case AnthropicSettings():
                return ClaudeApiBot(settings, http_client=self._http_client)
            case GeminiSettings():
                return GeminiApiBot(settings)
            case VertexGeminiSettings():
                return VertexGeminiBot(settings, http_client=self._http_client)
            case ResponsesSettings():
                return OpenAIResponsesBot(settings, http_client=self._http_client)
            case OpenRouterImageSettings():
                return OpenRouterImageBot(settings, http_client=self._http_client)
            case OpenAIChatSettings():
                return ChatGPTApiBot(settings, http_client=self._http_client)
        message = f"No adapter for settings {type(settings).__name__}"
        raise ConfigurationError(message)

    def get_bot(self, index: int) -> CustomBot:
        bot = self.registry.get(index)
        if bot is None:
            bot = CustomBot(index, self)
            self.registry.set(index, bot)
        return bot

    def invalidate(self, index: int) -> None:
        self.registry.invalidate(index)


class CustomBot(AsyncAbstractBot):
    """The bot configured at one index, built on first use."""

    def __init__(self, index: int, factory: BotFactory) -> None:
        self.index = index
        self._factory = factory
        super().__init__()

    async def initialize_bot(self) -> AbstractBot:
        return self._factory.build_adapter(self.index)


_default_factory: BotFactory | None = None


def get_default_factory() -> BotFactory:
    global _default_factory  # noqa: PLW0603
    if _default_factory is None:
        _default_factory = BotFactory()
    return _default_factory


def create_bot_instance(index: int, *, factory: BotFactory | None = None) -> CustomBot:
    """Return the cached bot for ``index``, falling back to bot 0 when out of range."""
    active = factory or get_default_factory()
    bot_count = len(active.config_loader().bots)
    if not 0 <= index < bot_count:
        logger.warning("Bot index %s out of range (%s bots), using 0", index, bot_count)
        index = 0
    return active.get_bot(index)
