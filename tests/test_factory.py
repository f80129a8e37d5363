from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from llmbridge.bots.factory import (
    BotFactory,
    CustomBot,
    combine_system_message,
    create_bot_instance,
    get_default_factory,
    render_system_message,
    resolve_bot_settings,
)
from llmbridge.bots.image_agent import ImageAgentBot
from llmbridge.core.config.bot_settings import (
    AnthropicSettings,
    GeminiSettings,
    ImageAgentBotSettings,
    OpenAIChatSettings,
    OpenRouterImageSettings,
    VertexGeminiSettings,
)
from llmbridge.core.config.constants import OPENAI_DEFAULT_HOST
from llmbridge.core.config.user_config import (
    AdvancedConfig,
    AgentSettings,
    AuthMode,
    BotEntry,
    OutputType,
    ProviderEntry,
    ProviderKind,
    SystemPromptMode,
    UserConfig,
)
from llmbridge.core.exceptions import ConfigurationError
from llmbridge.services.llm.providers.anthropic import VertexClaudeBot
from llmbridge.services.llm.providers.openai_chat import ChatGPTApiBot

from ._fakes import RecordingTransport, collect, sse_response

FIXED_NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=UTC)


def _config(*bots: BotEntry, **kwargs: object) -> UserConfig:
    return UserConfig(bots=bots, **kwargs)  # type: ignore[arg-type]


def _openai(name: str = "gpt", **kwargs: object) -> BotEntry:
    return BotEntry(name=name, model="gpt-4o", provider=ProviderKind.OPENAI, **kwargs)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        (SystemPromptMode.APPEND, "common\nown"),
        (SystemPromptMode.OVERRIDE, "own"),
        (SystemPromptMode.COMMON, "common"),
        (None, "own"),
    ],
)
def test_combine_system_message(mode: SystemPromptMode | None, expected: str) -> None:
    assert combine_system_message("common", "own", mode) == expected


def test_combine_without_own_message_falls_back_to_common() -> None:
    assert combine_system_message("common", "", None) == "common"


def test_render_system_message_variables() -> None:
    template = (
        "{chatbotname} on {modelname}, {current_date} {current_time} "
        "{timezone} in {language}; {unknown} {"
    )

    rendered = render_system_message(
        template,
        model="gpt-4o",
        bot_name="Helper",
        locale="ja",
        now=FIXED_NOW,
    )

    assert rendered == "Helper on gpt-4o, 2024-05-06 07:08:09 UTC in ja; {unknown} {"


def test_render_without_placeholders_is_unchanged() -> None:
    assert render_system_message("plain", model="m", bot_name=None, locale="en") == "plain"


def test_render_rejects_unknown_timezone() -> None:
    with pytest.raises(ConfigurationError, match="Unknown timezone"):
        render_system_message(
            "{current_time}",
            model="m",
            bot_name=None,
            locale="en",
            timezone="Nowhere/Never",
        )


def test_connection_values_layer_reference_then_entry_then_global() -> None:
    reference = ProviderEntry(id="ref", provider=ProviderKind.OPENAI, api_key="ref-key")
    config = _config(
        _openai(provider_ref_id="ref", host="https://entry.example/v1"),
        _openai(),
        custom_api_key="global-key",
        custom_api_host="https://global.example",
        providers=(reference,),
    )

    first = resolve_bot_settings(config, 0)
    second = resolve_bot_settings(config, 1)

    assert isinstance(first, OpenAIChatSettings)
    assert (first.api_key, first.host) == ("ref-key", "https://entry.example/v1")
    assert (second.api_key, second.host) == ("global-key", "https://global.example")


def test_full_path_flag_follows_the_layer_that_supplied_the_host() -> None:
    reference = ProviderEntry(id="ref", provider=ProviderKind.OPENAI, api_key="ref-key")
    full_path_reference = ProviderEntry(
        id="full",
        provider=ProviderKind.OPENAI,
        host="https://ref.example/chat",
        is_host_full_path=True,
    )
    config = _config(
        _openai(provider_ref_id="ref", host="https://entry.example/chat", is_host_full_path=True),
        _openai(provider_ref_id="full", host="https://entry.example/v1"),
        providers=(reference, full_path_reference),
    )

    first = resolve_bot_settings(config, 0)
    second = resolve_bot_settings(config, 1)

    assert (first.host, first.is_host_full_path) == ("https://entry.example/chat", True)
    assert (second.host, second.is_host_full_path) == ("https://ref.example/chat", True)


def test_reference_advanced_keys_override_even_when_false() -> None:
    reference = ProviderEntry(
        id="ref",
        provider=ProviderKind.GOOGLE,
        advanced=AdvancedConfig(gemini_vertexai=False),
    )
    entry = BotEntry(
        name="g",
        model="gemini-2.5-pro",
        provider_ref_id="ref",
        advanced=AdvancedConfig(gemini_vertexai=True, extra_headers="x-goog-user-project:proj"),
    )

    settings = resolve_bot_settings(_config(entry, providers=(reference,)), 0)

    assert isinstance(settings, GeminiSettings)
    assert settings.vertexai is False
    assert settings.extra_headers == {"x-goog-user-project": "proj"}


def test_default_factory_is_created_once() -> None:
    assert get_default_factory() is get_default_factory()


def test_default_host_and_reasoning_effort() -> None:
    settings = resolve_bot_settings(_config(_openai()), 0)

    assert isinstance(settings, OpenAIChatSettings)
    assert settings.host == OPENAI_DEFAULT_HOST
    assert settings.reasoning_effort == "medium"


def test_system_message_is_combined_and_rendered() -> None:
    config = _config(
        _openai(
            name="Helper",
            system_message="I am {chatbotname}.",
            system_prompt_mode=SystemPromptMode.APPEND,
        ),
        common_system_message="Today is {current_date}.",
        context_size=10,
        locale="ja",
    )

    settings = resolve_bot_settings(config, 0, now=FIXED_NOW)

    assert settings.system_message == "Today is 2024-05-06.\nI am Helper."
    assert settings.context_size == 10
    assert settings.locale == "ja"


@pytest.mark.parametrize(
    ("config", "match"),
    [
        (_config(), "No configuration found for bot index 0"),
        (_config(_openai(enabled=False)), "disabled"),
        (_config(_openai(provider_ref_id="gone")), "Provider reference not found: gone"),
        (_config(BotEntry(name="b", model="anthropic.claude-v2")), "Unsupported provider: bedrock"),
        (_config(BotEntry(name="c", model="chroma", provider=ProviderKind.CHUTES_AI)), "image provider"),
        (
            _config(BotEntry(name="v", model="gemini", provider=ProviderKind.VERTEXAI_GEMINI)),
            "needs a host",
        ),
    ],
)
def test_resolution_errors(config: UserConfig, match: str) -> None:
    with pytest.raises(ConfigurationError, match=match):
        resolve_bot_settings(config, 0)


def test_customauth_forces_authorization_header() -> None:
    config = _config(
        BotEntry(
            name="claude",
            model="claude-sonnet",
            provider=ProviderKind.ANTHROPIC_CUSTOMAUTH,
            advanced=AdvancedConfig(anthropic_beta_headers="anthropic-beta:x"),
        ),
    )

    settings = resolve_bot_settings(config, 0)

    assert isinstance(settings, AnthropicSettings)
    assert settings.use_authorization_header
    assert settings.beta_headers == "anthropic-beta:x"
    assert settings.host == "https://api.anthropic.com"


def test_image_output_reference_selects_openrouter_image_settings() -> None:
    reference = ProviderEntry(
        id="or-img",
        provider=ProviderKind.OPENROUTER,
        api_key="or-key",
        output_type=OutputType.IMAGE,
        advanced=AdvancedConfig(image_aspect_ratio="16:9"),
    )
    config = _config(
        BotEntry(
            name="painter",
            model="google/gemini-2.5-flash-image",
            provider_ref_id="or-img",
            advanced=AdvancedConfig(image_aspect_ratio="1:1", provider_only="google-vertex"),
        ),
        providers=(reference,),
    )

    settings = resolve_bot_settings(config, 0)

    assert isinstance(settings, OpenRouterImageSettings)
    assert settings.aspect_ratio == "16:9"
    assert settings.provider_only == "google-vertex"


def test_google_and_vertex_gemini_settings() -> None:
    vertex_ref = ProviderEntry(
        id="vx",
        provider=ProviderKind.VERTEXAI_GEMINI,
        host="https://gw.example/%model:generateContent",
        api_key="k",
        auth_mode=AuthMode.QUERY,
    )
    config = _config(
        BotEntry(
            name="gemini",
            model="gemini-2.5-flash",
            provider=ProviderKind.GOOGLE,
            advanced=AdvancedConfig(extra_headers="x-goog-user-project:proj", gemini_vertexai=True),
        ),
        BotEntry(name="vertex", model="gemini-2.5-pro", provider_ref_id="vx"),
        providers=(vertex_ref,),
    )

    google = resolve_bot_settings(config, 0)
    vertex = resolve_bot_settings(config, 1)

    assert isinstance(google, GeminiSettings)
    assert google.extra_headers == {"x-goog-user-project": "proj"}
    assert google.vertexai
    assert isinstance(vertex, VertexGeminiSettings)
    assert vertex.auth_mode is AuthMode.QUERY


def _agent_config(prompt_index: int = 1) -> UserConfig:
    return _config(
        BotEntry(
            name="artist",
            model="chroma",
            provider=ProviderKind.IMAGE_AGENT,
            agent=AgentSettings(image_provider_id="img", prompt_generator_bot_index=prompt_index),
        ),
        BotEntry(name="claude", model="claude-sonnet", provider=ProviderKind.ANTHROPIC, api_key="a"),
        providers=(ProviderEntry(id="img", provider=ProviderKind.CHUTES_AI, api_key="chutes"),),
    )


def test_image_agent_settings_name_the_prompt_bot() -> None:
    settings = resolve_bot_settings(_agent_config(), 0)

    assert isinstance(settings, ImageAgentBotSettings)
    assert settings.prompt_bot_index == 1
    assert settings.prompt_bot_provider is ProviderKind.ANTHROPIC
    assert settings.image_provider is not None
    assert settings.image_provider.api_key == "chutes"


def test_factory_builds_the_adapter_for_each_kind() -> None:
    config = _config(
        _openai(),
        BotEntry(
            name="vc",
            model="claude",
            provider=ProviderKind.VERTEXAI_CLAUDE,
            host="https://vertex.example/claude:streamRawPredict",
        ),
    )
    factory = BotFactory(lambda: config)

    assert isinstance(factory.build_adapter(0), ChatGPTApiBot)
    assert isinstance(factory.build_adapter(1), VertexClaudeBot)


def test_factory_wires_image_agent_to_its_own_prompt_bot() -> None:
    factory = BotFactory(_agent_config)

    agent = factory.build_adapter(0)

    assert isinstance(agent, ImageAgentBot)
    assert agent.prompt_bot is not factory.build_adapter(1)
    assert agent.tool_payload()["name"] == "generate_image"


def test_image_agent_prompting_itself_is_a_cycle() -> None:
    factory = BotFactory(lambda: _agent_config(prompt_index=0))

    with pytest.raises(ConfigurationError, match="cycle"):
        factory.build_adapter(0)


def test_registry_caches_until_invalidated() -> None:
    factory = BotFactory(lambda: _config(_openai(), _openai("second")))

    first = factory.get_bot(1)

    assert factory.get_bot(1) is first
    factory.invalidate(1)
    assert factory.get_bot(1) is not first
    assert len(factory.registry) == 1


def test_create_bot_instance_clamps_out_of_range_index(caplog: pytest.LogCaptureFixture) -> None:
    factory = BotFactory(lambda: _config(_openai(), _openai("second")))

    with caplog.at_level(logging.WARNING, logger="llmbridge.bots.factory"):
        bot = create_bot_instance(7, factory=factory)

    assert isinstance(bot, CustomBot)
    assert bot.index == 0
    assert "out of range" in caplog.text
    assert create_bot_instance(1, factory=factory).index == 1


@pytest.mark.asyncio
async def test_custom_bot_builds_adapter_and_streams() -> None:
    transport = RecordingTransport(
        [sse_response([{"choices": [{"delta": {"content": "hello"}}]}, "[DONE]"])],
    )
    async with transport.client() as client:
        factory = BotFactory(lambda: _config(_openai(api_key="sk")), http_client=client)
        bot = create_bot_instance(0, factory=factory)

        adapter = await bot.wait_until_ready()
        answers = await collect(bot, "Hi")

    assert isinstance(adapter, ChatGPTApiBot)
    assert [answer.text for answer in answers] == ["hello"]
    assert bot.model_name == "gpt-4o"


@pytest.mark.asyncio
async def test_custom_bot_reports_configuration_errors() -> None:
    factory = BotFactory(lambda: _config(_openai(enabled=False)))
    bot = create_bot_instance(0, factory=factory)

    with pytest.raises(ConfigurationError, match="disabled"):
        await bot.wait_until_ready()
