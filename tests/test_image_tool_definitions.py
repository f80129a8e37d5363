from __future__ import annotations

import pytest

from llmbridge.core.config.constants import IMAGE_TOOL_NAME
from llmbridge.services.image.tool_definitions import (
    IMAGE_MODEL_REGISTRY,
    MODEL_CHUTES_CHROMA,
    MODEL_NOVITA_HUNYUAN,
    MODEL_NOVITA_QWEN,
    MODEL_NOVITA_SEEDREAM,
    convert_claude_tool_to_openai,
    get_default_image_model,
    get_image_model_by_key,
)


def test_every_preset_exposes_the_same_tool_name() -> None:
    for config in IMAGE_MODEL_REGISTRY.values():
        assert config.tool_definition.name == IMAGE_TOOL_NAME
        assert config.tool_definition.input_schema["required"] == ["prompt"]


@pytest.mark.parametrize(
    ("model", "provider", "expected"),
    [
        ("qwen", "novita", MODEL_NOVITA_QWEN),
        ("seedream-4", "novita", MODEL_NOVITA_SEEDREAM),
        ("Hunyuan-Image-3", None, MODEL_NOVITA_HUNYUAN),
        ("some-flux-dev", "chutes", MODEL_CHUTES_CHROMA),
        ("unknown-model", None, MODEL_CHUTES_CHROMA),
    ],
)
def test_default_image_model(model: str, provider: str | None, expected: object) -> None:
    assert get_default_image_model(model, provider) is expected


def test_registry_lookup_ignores_case() -> None:
    assert get_image_model_by_key("Novita-Qwen") is MODEL_NOVITA_QWEN
    assert get_image_model_by_key("missing") is None


@pytest.mark.parametrize(
    ("config", "has_images", "expected"),
    [
        (MODEL_CHUTES_CHROMA, False, "https://image.chutes.ai/generate"),
        (MODEL_NOVITA_QWEN, False, "https://api.novita.ai/v3/async/qwen-image-txt2img"),
        (MODEL_NOVITA_QWEN, True, "https://api.novita.ai/v3/async/qwen-image-edit"),
        (MODEL_NOVITA_HUNYUAN, True, "https://api.novita.ai/v3/async/hunyuan-image-3"),
        (MODEL_NOVITA_SEEDREAM, True, "https://api.novita.ai/v3/seedream-4.0"),
    ],
)
def test_endpoints(config, has_images: bool, expected: str) -> None:
    host = "https://image.chutes.ai/" if config is MODEL_CHUTES_CHROMA else "https://api.novita.ai"

    assert config.api_config.endpoint_for(host, has_images=has_images) == expected


def test_edit_capabilities() -> None:
    assert MODEL_NOVITA_QWEN.api_config.image_input_field == "image"
    assert MODEL_NOVITA_SEEDREAM.api_config.image_input_field == "images"
    assert not MODEL_CHUTES_CHROMA.api_config.supports_edit
    assert MODEL_CHUTES_CHROMA.api_config.sends_model


def test_convert_claude_tool_to_openai() -> None:
    tool = MODEL_NOVITA_QWEN.tool_definition

    converted = convert_claude_tool_to_openai(tool)

    assert converted == {
        "type": "function",
        "function": {
            "name": IMAGE_TOOL_NAME,
            "description": tool.description,
            "parameters": tool.input_schema,
        },
    }
