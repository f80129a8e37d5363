"""Configuration loading and constants for llmbridge.

This package exposes the split configuration modules as a single interface.
"""

from llmbridge.core.config.constants import (
    ANTHROPIC_VERSION,
    DEFAULT_CONTEXT_SIZE,
    DEFAULT_LOCALE,
    IMAGE_ONLY_PLACEHOLDERS,
    IMAGE_TOOL_NAME,
)
from llmbridge.core.config.http import (
    DEFAULT_USER_AGENT,
    HttpxClientOptions,
    SharedHttpClient,
)
from llmbridge.core.config.manager import (
    CONFIG_CACHE_TTL,
    ConfigFileEmptyError,
    ConfigFileNotFoundError,
    clear_config_cache,
    get_config,
)
from llmbridge.core.config.user_config import (
    ProviderKind,
    UserConfig,
    parse_user_config,
)
from llmbridge.core.config.utils import build_endpoint, parse_key_value_headers


def load_user_config(filename: str | None = None) -> UserConfig:
    """Load and validate the YAML configuration file."""
    return parse_user_config(get_config(filename))


def image_only_placeholder(locale: str) -> str:
    """Return the localized text shown when a model answers with images only."""
    language = locale.split("-")[0].lower()
    return IMAGE_ONLY_PLACEHOLDERS.get(language, IMAGE_ONLY_PLACEHOLDERS[DEFAULT_LOCALE])


__all__ = [
    "ANTHROPIC_VERSION",
    "CONFIG_CACHE_TTL",
    "DEFAULT_CONTEXT_SIZE",
    "DEFAULT_USER_AGENT",
    "IMAGE_TOOL_NAME",
    "ConfigFileEmptyError",
    "ConfigFileNotFoundError",
    "HttpxClientOptions",
    "ProviderKind",
    "SharedHttpClient",
    "UserConfig",
    "build_endpoint",
    "clear_config_cache",
    "get_config",
    "image_only_placeholder",
    "load_user_config",
    "parse_key_value_headers",
    "parse_user_config",
]
