"""Give any tool-capable text bot an image generation tool."""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Any

from llmbridge.bots.base import AbstractBot
from llmbridge.core.config.constants import (
    CHUTES_IMAGE_DEFAULT_HOST,
    IMAGE_POLL_INTERVAL_SECONDS,
    IMAGE_POLL_TIMEOUT_SECONDS,
    IMAGE_TOOL_NAME,
    NOVITA_DEFAULT_HOST,
)
from llmbridge.core.config.user_config import ANTHROPIC_FAMILY, ProviderKind
from llmbridge.core.exceptions import ConfigurationError, ProviderSpecificError
from llmbridge.core.models import (
    AnswerPayload,
    DoneEvent,
    Event,
    SendMessageParams,
    ToolCallData,
    ToolCallEvent,
    UpdateAnswerEvent,
)
from llmbridge.services.image.client import generate_image
from llmbridge.services.image.tool_definitions import (
    ImageModelConfig,
    convert_claude_tool_to_openai,
    get_default_image_model,
    get_image_model_by_key,
)

if TYPE_CHECKING:
    import httpx

    from llmbridge.core.config.bot_settings import ImageAgentBotSettings
    from llmbridge.core.models import ConversationHistory
    from llmbridge.services.http import RetryOptions

logger = logging.getLogger(__name__)

TOOL_INSTRUCTION = (
    "\n\nYou have access to an image generation tool called 'generate_image'. "
    "When the user asks you to create, generate, make, or show an image, you MUST "
    "use this tool. Do not describe or imagine the image in text - actually "
    "generate it using the tool."
)
EDIT_INSTRUCTION = (
    " Images attached by the user are sent to the image model together with your "
    "prompt, so when the user asks to change an attached image, call the tool with "
    "editing instructions as the prompt."
)
NO_EDIT_INSTRUCTION = (
    " The image model cannot see images attached by the user. When the user refers "
    "to an attached image, describe its relevant details in the prompt itself."
)

_DEFAULT_HOSTS = {
    ProviderKind.CHUTES_AI: CHUTES_IMAGE_DEFAULT_HOST,
    ProviderKind.NOVITA_AI: NOVITA_DEFAULT_HOST,
}


def resolve_image_model(settings: ImageAgentBotSettings) -> ImageModelConfig:
    """Use the configured preset key, otherwise infer one from model and provider."""
    key = settings.agent.image_model_key
    if key:
        config = get_image_model_by_key(key)
        if config is None:
            message = f"Unknown image model preset: {key}"
            raise ConfigurationError(message)
        return config
    provider = settings.image_provider
    provider_hint = (
        provider.provider.value.removesuffix("-ai") if provider and provider.provider else None
    )
    return get_default_image_model(settings.model, provider_hint)


def build_tool_instruction(model_config: ImageModelConfig) -> str:
    branch = EDIT_INSTRUCTION if model_config.api_config.supports_edit else NO_EDIT_INSTRUCTION
    return TOOL_INSTRUCTION + branch


class ImageAgentBot(AbstractBot):
    """Orchestrates a prompt bot and an image API around one tool call.

    The prompt bot gets the ``generate_image`` tool and an extra system
    instruction for one exchange. Its answer text streams through unchanged;
    its ``DONE`` is held back until the requested image has been generated.
    Afterwards the prompt bot's system message is restored and its tools are
    cleared, whatever the outcome. When the exchange fails or is cancelled the
    prompt bot's history is rolled back to what it was before.
    """

    def __init__(
        self,
        settings: ImageAgentBotSettings,
        prompt_bot: AbstractBot,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_options: RetryOptions | None = None,
        poll_interval: float = IMAGE_POLL_INTERVAL_SECONDS,
        poll_timeout: float = IMAGE_POLL_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__()
        provider = settings.image_provider
        if provider is None:
            message = "Image provider not configured for Image Agent"
            raise ConfigurationError(message)
        if not provider.api_key:
            message = "Image provider API key not set"
            raise ConfigurationError(message)

        self.settings = settings
        self.prompt_bot = prompt_bot
        self.model_config = resolve_image_model(settings)
        self.image_host = provider.host or _DEFAULT_HOSTS.get(provider.provider, "")
        self.image_api_key = provider.api_key
        self._http_client = http_client
        self._retry_options = retry_options
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout

    @property
    def name(self) -> str | None:
        return self.settings.name or "Image Agent"

    @property
    def model_name(self) -> str | None:
        return self.settings.model

    @property
    def avatar(self) -> str | None:
        return self.settings.avatar

    @property
    def supports_image_input(self) -> bool:
        return self.model_config.api_config.supports_edit

    def tool_payload(self) -> dict[str, Any]:
        """The tool definition in the shape the prompt bot's provider expects."""
        tool = self.model_config.tool_definition
        if self.settings.prompt_bot_provider in ANTHROPIC_FAMILY:
            return tool.to_dict()
        return convert_claude_tool_to_openai(tool)

    def build_image_request(
        self,
        arguments: dict[str, Any],
        params: SendMessageParams,
    ) -> dict[str, Any]:
        """Merge agent defaults under the tool arguments.

        Only defaults the preset's schema declares are added. User images go
        into the preset's image field when the model can edit.
        """
        agent = self.settings.agent
        declared = self.model_config.tool_definition.input_schema.get("properties", {})
        defaults = {
            "negative_prompt": agent.negative_prompt,
            "width": agent.default_width,
            "height": agent.default_height,
            "num_inference_steps": agent.inference_steps,
            "guidance_scale": agent.guidance_scale,
            "seed": agent.seed,
        }
        body: dict[str, Any] = {
            key: value
            for key, value in defaults.items()
            if value is not None and key in declared
        }
        body.update(arguments)

        prompt = body.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            body["prompt"] = params.history_text
        if self.model_config.api_config.sends_model and self.settings.model:
            body.setdefault("model", self.settings.model)
        return body

    def _attach_user_images(self, body: dict[str, Any], params: SendMessageParams) -> bool:
        api_config = self.model_config.api_config
        field = api_config.image_input_field
        if not (api_config.supports_edit and field and params.images):
            return False
        encoded = [image.to_base64() for image in params.images]
        body[field] = encoded[0] if field == "image" else encoded
        return True

    async def _generate(self, call: ToolCallData, params: SendMessageParams) -> tuple[str, dict[str, Any]]:
        body = self.build_image_request(call.arguments, params)
        shown = dict(body)
        has_images = self._attach_user_images(body, params)
        endpoint = self.model_config.api_config.endpoint_for(
            self.image_host,
            has_images=has_images,
        )
        logger.info("Generating image via %s", endpoint)
        image_url = await generate_image(
            endpoint,
            self.image_api_key,
            body,
            is_async=self.model_config.api_config.is_async,
            signal=params.signal,
            http_client=self._http_client,
            retry_options=self._retry_options,
            poll_interval=self._poll_interval,
            poll_timeout=self._poll_timeout,
        )
        return image_url, shown

    async def do_send_message(self, params: SendMessageParams) -> None:
        prompt_bot = self.prompt_bot
        original_system = await prompt_bot.get_system_message()
        snapshot = prompt_bot.snapshot_history()
        tool_calls: list[ToolCallData] = []
        last_text = ""

        def relay(event: Event) -> None:
            nonlocal last_text
            if isinstance(event, ToolCallEvent):
                if event.data.name != IMAGE_TOOL_NAME:
                    message = f"Unknown tool: {event.data.name}"
                    raise ProviderSpecificError(message, cause=event.data)
                tool_calls.append(event.data)
            elif isinstance(event, UpdateAnswerEvent):
                last_text = event.data.text
                params.on_event(event)
            elif not isinstance(event, DoneEvent):
                params.on_event(event)

        # The exchange only enters history once the image exists.
        try:
            try:
                await prompt_bot.set_tools([self.tool_payload()])
                if IMAGE_TOOL_NAME not in original_system:
                    await prompt_bot.set_system_message(
                        original_system + build_tool_instruction(self.model_config),
                    )
                prompt_bot.reset_thinking_diff()
                await prompt_bot.do_send_message(dataclasses.replace(params, on_event=relay))
            finally:
                await prompt_bot.set_system_message(original_system)
                await prompt_bot.set_tools([])

            if tool_calls:
                call = tool_calls[0]
                image_url, shown = await self._generate(call, params)
                markdown = f"![Generated Image]({image_url})"
                params_json = f"```json\n{json.dumps(shown, indent=2, ensure_ascii=False)}\n```"
                parts = [last_text, markdown, params_json] if last_text else [markdown, params_json]
                params.on_event(UpdateAnswerEvent(data=AnswerPayload(text="\n\n".join(parts))))
                note = f"[Generated image: {shown.get('prompt', '')}]"
                await prompt_bot.modify_last_message(f"{last_text}\n\n{note}".strip())
        except BaseException:
            prompt_bot.restore_history(snapshot)
            raise

        params.on_event(DoneEvent())

    # History, prompt and web access belong to the prompt bot.

    def clear_history(self) -> None:
        self.prompt_bot.clear_history()

    def get_conversation_history(self) -> ConversationHistory | None:
        return self.prompt_bot.get_conversation_history()

    def set_conversation_history(self, history: ConversationHistory) -> None:
        self.prompt_bot.set_conversation_history(history)

    def snapshot_history(self) -> object:
        return self.prompt_bot.snapshot_history()

    def restore_history(self, snapshot: object) -> None:
        self.prompt_bot.restore_history(snapshot)

    async def modify_last_message(self, text: str) -> None:
        await self.prompt_bot.modify_last_message(text)

    async def set_system_message(self, system_message: str) -> None:
        await self.prompt_bot.set_system_message(system_message)

    async def get_system_message(self) -> str:
        return await self.prompt_bot.get_system_message()

    async def set_web_access_enabled(self, enabled: bool) -> None:
        await self.prompt_bot.set_web_access_enabled(enabled)
