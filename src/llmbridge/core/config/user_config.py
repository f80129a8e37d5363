"""Typed view of the ``config.yaml`` bot and provider entries.

Every value is validated here so that adapters never see a malformed shape.
A pydantic ``ValidationError`` is turned into one ``ConfigurationError`` that
names each offending key, e.g. ``bots[0].model``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
    model_validator,
)

from llmbridge.core.config.constants import DEFAULT_CONTEXT_SIZE, DEFAULT_LOCALE
from llmbridge.core.exceptions import ConfigurationError


class ProviderKind(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    ANTHROPIC_CUSTOMAUTH = "anthropic-customauth"
    BEDROCK = "bedrock"
    GOOGLE = "google"
    OPENAI_GEMINI = "openai-gemini"
    OPENAI_QWEN = "openai-qwen"
    PERPLEXITY = "perplexity"
    VERTEXAI_CLAUDE = "vertexai-claude"
    VERTEXAI_GEMINI = "vertexai-gemini"
    OPENAI_RESPONSES = "openai-responses"
    OPENROUTER = "openrouter"
    CHUTES_AI = "chutes-ai"
    NOVITA_AI = "novita-ai"
    IMAGE_AGENT = "image-agent"


ANTHROPIC_FAMILY = frozenset(
    {
        ProviderKind.ANTHROPIC,
        ProviderKind.ANTHROPIC_CUSTOMAUTH,
        ProviderKind.VERTEXAI_CLAUDE,
    },
)


class SystemPromptMode(StrEnum):
    COMMON = "common"
    APPEND = "append"
    OVERRIDE = "override"


class AuthMode(StrEnum):
    HEADER = "header"
    QUERY = "query"


class OutputType(StrEnum):
    TEXT = "text"
    IMAGE = "image"


class ResponseFormatType(StrEnum):
    JSON_OBJECT = "json_object"
    JSON_SCHEMA = "json_schema"


@dataclass(frozen=True, slots=True)
class ResponseFormat:
    """Structured-output request for OpenAI-compatible chat completions."""

    type: ResponseFormatType
    schema: dict[str, Any] | None = None
    name: str = "response"


def _json_object(value: object) -> object:
    """Accept a mapping or a JSON string encoding one; blank means unset."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as exc:
            message = f"not valid JSON: {exc}"
            raise ValueError(message) from exc
    return value


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    # Enum keys whose blank value means "use the default".
    blank_means_unset: ClassVar[frozenset[str]] = frozenset()
    # Display name copied from this key when `name` is left out.
    name_source: ClassVar[str | None] = None

    @model_validator(mode="before")
    @classmethod
    def _drop_unset(cls, data: Any) -> Any:
        # A YAML key left empty loads as None.
        if not isinstance(data, Mapping):
            return data
        cleaned = {
            key: value
            for key, value in data.items()
            if value is not None and not (key in cls.blank_means_unset and value == "")
        }
        if cls.name_source and not cleaned.get("name") and cleaned.get(cls.name_source):
            cleaned["name"] = str(cleaned[cls.name_source])
        return cleaned


class AdvancedConfig(_ConfigModel):
    """Provider-specific knobs.

    Only keys present in the YAML count as set; ``model_fields_set`` is what
    the resolver uses to layer a provider reference over a bot entry.
    """

    anthropic_beta_headers: str | None = None
    provider_only: str | None = None
    image_aspect_ratio: str | None = None
    http_referer: str | None = None
    x_title: str | None = None
    extra_headers: str | None = None
    gemini_vertexai: StrictBool = False


class AgentSettings(_ConfigModel):
    """Image agent options stored on an ``image-agent`` bot entry."""

    image_provider_id: str | None = None
    prompt_generator_bot_index: Annotated[int, Field(ge=0)] | None = None
    image_model_key: str | None = None
    negative_prompt: str | None = None
    default_width: Annotated[int, Field(gt=0)] = 1024
    default_height: Annotated[int, Field(gt=0)] = 1024
    inference_steps: Annotated[int, Field(gt=0)] = 20
    guidance_scale: Annotated[float, Field(ge=0.0)] = 7.5
    seed: int | None = None


class ProviderEntry(_ConfigModel):
    """Shared credentials that several bots can reference by id."""

    blank_means_unset: ClassVar[frozenset[str]] = frozenset({"provider", "auth_mode", "output_type"})
    name_source: ClassVar[str | None] = "id"

    id: Annotated[str, Field(min_length=1)]
    name: str = ""
    provider: ProviderKind | None = None
    host: str | None = None
    api_key: str | None = None
    is_host_full_path: StrictBool = False
    use_authorization_header: StrictBool = False
    auth_mode: AuthMode = AuthMode.HEADER
    advanced: AdvancedConfig = Field(default_factory=AdvancedConfig)
    output_type: OutputType = OutputType.TEXT


class BotEntry(_ConfigModel):
    blank_means_unset: ClassVar[frozenset[str]] = frozenset({"provider", "system_prompt_mode", "auth_mode"})
    name_source: ClassVar[str | None] = "model"

    name: str = ""
    model: Annotated[str, Field(min_length=1)]
    provider: ProviderKind | None = None
    host: str | None = None
    api_key: str | None = None
    temperature: float | None = None
    system_message: str = ""
    system_prompt_mode: SystemPromptMode | None = None
    avatar: str | None = None
    thinking_mode: StrictBool = False
    thinking_budget: int | None = None
    reasoning_effort: str | None = None
    web_access: StrictBool = False
    is_host_full_path: StrictBool = False
    use_authorization_header: StrictBool = False
    auth_mode: AuthMode = AuthMode.HEADER
    provider_ref_id: str | None = None
    advanced: AdvancedConfig = Field(default_factory=AdvancedConfig)
    json_mode: StrictBool = False
    json_schema: dict[str, Any] | None = None
    json_schema_name: str = "response"
    extra_body: dict[str, Any] | None = None
    agent: AgentSettings | None = None
    enabled: StrictBool = True

    @field_validator("extra_body", "json_schema", mode="before")
    @classmethod
    def _decode_json(cls, value: object) -> object:
        return _json_object(value)

    @property
    def response_format(self) -> ResponseFormat | None:
        if self.json_schema is not None:
            return ResponseFormat(
                type=ResponseFormatType.JSON_SCHEMA,
                schema=self.json_schema,
                name=self.json_schema_name or "response",
            )
        if self.json_mode:
            return ResponseFormat(type=ResponseFormatType.JSON_OBJECT)
        return None


class UserConfig(_ConfigModel):
    custom_api_key: str | None = None
    custom_api_host: str | None = None
    common_system_message: str = ""
    context_size: Annotated[int, Field(gt=0)] = DEFAULT_CONTEXT_SIZE
    locale: str = DEFAULT_LOCALE
    timezone: str | None = None
    bots: tuple[BotEntry, ...] = ()
    providers: tuple[ProviderEntry, ...] = ()

    def find_provider(self, provider_id: str | None) -> ProviderEntry | None:
        if not provider_id:
            return None
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None


def _key_path(location: tuple[int | str, ...]) -> str:
    path = ""
    for part in location:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path.removeprefix(".") or "config"


def describe_validation_error(error: ValidationError) -> str:
    """Render every validation problem as ``Config key '<path>' ...``."""
    problems = []
    for item in error.errors(include_url=False):
        path = _key_path(item["loc"])
        if item["type"] == "missing":
            problems.append(f"Config key '{path}' is required")
        else:
            problems.append(f"Config key '{path}' is invalid: {item['msg']}")
    return "; ".join(problems)


def parse_user_config(data: Mapping[str, Any]) -> UserConfig:
    """Build a ``UserConfig`` from the loaded YAML mapping.

    Raises:
        ConfigurationError: If any key has the wrong shape.

    """
    try:
        return UserConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(describe_validation_error(exc), cause=exc) from exc
