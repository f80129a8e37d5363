"""Image generation presets: the tool shown to the LLM and how to call the API.

Tool definitions use the Anthropic ``input_schema`` shape and are converted
for OpenAI-style function calling when needed. Tool parameter names match the
image API's request fields so tool arguments can be posted as-is.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from llmbridge.core.config.constants import IMAGE_TOOL_NAME
from llmbridge.core.config.utils import normalize_base_url

EndpointSelector = Callable[[bool, str], str]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True, slots=True)
class ImageApiConfig:
    """How to reach one image API.

    Attributes:
        endpoint: Builds the URL from ``(has_images, base_host)``.
        is_async: Whether the API returns a task id that must be polled.
        supports_edit: Whether user images can be sent for editing.
        image_input_field: Request field that receives user images as base64;
            ``"image"`` takes one image, any other name takes a list.
        sends_model: Whether the request names the model to run.

    """

    endpoint: EndpointSelector
    is_async: bool
    supports_edit: bool
    image_input_field: str | None = None
    sends_model: bool = False

    def endpoint_for(self, base_host: str, *, has_images: bool) -> str:
        return self.endpoint(has_images, base_host)


@dataclass(frozen=True, slots=True)
class ImageModelConfig:
    tool_definition: ToolDefinition
    api_config: ImageApiConfig


def _prompt_property(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}


MODEL_CHUTES_CHROMA = ImageModelConfig(
    tool_definition=ToolDefinition(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generate an image using Chroma model. Images supplied by the user are "
            "not forwarded, so describe any visual references directly in the prompt."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "prompt": _prompt_property(
                    "A detailed description of the image to generate. "
                    "Be specific and descriptive.",
                ),
                "negative_prompt": {
                    "type": "string",
                    "description": 'Things to avoid in the image (e.g., "blurry, low quality")',
                },
                "width": {"type": "number", "description": "Image width in pixels", "default": 1280},
                "height": {"type": "number", "description": "Image height in pixels", "default": 1280},
                "num_inference_steps": {
                    "type": "number",
                    "description": "Number of inference steps (higher = better quality but slower)",
                    "default": 50,
                },
                "guidance_scale": {
                    "type": "number",
                    "description": "How closely to follow the prompt (7-15 recommended)",
                    "default": 7.5,
                },
                "seed": {
                    "type": "number",
                    "description": "Random seed for reproducibility (optional)",
                },
            },
            "required": ["prompt"],
        },
    ),
    api_config=ImageApiConfig(
        endpoint=lambda _has_images, host: f"{normalize_base_url(host)}/generate",
        is_async=False,
        supports_edit=False,
        sends_model=True,
    ),
)

MODEL_NOVITA_QWEN = ImageModelConfig(
    tool_definition=ToolDefinition(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generate or edit an image using Qwen Image model. When the user provides "
            "images, it will automatically switch to edit mode. When editing, the "
            '"size" parameter is ignored (original image size is used).'
        ),
        input_schema={
            "type": "object",
            "properties": {
                "prompt": _prompt_property(
                    "Text description for image generation, or editing instructions "
                    "when user provides images.",
                ),
                "size": {
                    "type": "string",
                    "description": (
                        'Image resolution in format "WIDTH*HEIGHT". Available: '
                        '"1664*928" (16:9), "1472*1140" (4:3), "1328*1328" (1:1), '
                        '"1140*1472" (3:4), "928*1664" (9:16). Ignored in edit mode.'
                    ),
                    "default": "1328*1328",
                },
                "seed": {
                    "type": "number",
                    "description": "Random seed for reproducibility, or -1 for random generation.",
                    "default": -1,
                },
                "output_format": {
                    "type": "string",
                    "description": 'Output image format. "png", "webp" or "jpeg".',
                    "enum": ["jpeg", "png", "webp"],
                    "default": "jpeg",
                },
            },
            "required": ["prompt"],
        },
    ),
    api_config=ImageApiConfig(
        endpoint=lambda has_images, host: (
            f"{normalize_base_url(host)}/v3/async/qwen-image-edit"
            if has_images
            else f"{normalize_base_url(host)}/v3/async/qwen-image-txt2img"
        ),
        is_async=True,
        supports_edit=True,
        image_input_field="image",
    ),
)

MODEL_NOVITA_HUNYUAN = ImageModelConfig(
    tool_definition=ToolDefinition(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generate an image using Hunyuan Image 3 model. Images provided by the user "
            "are not sent to the API, so incorporate any visual details into the prompt text."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "prompt": _prompt_property(
                    "A detailed description of the image to generate. "
                    "Be specific and descriptive.",
                ),
                "size": {
                    "type": "string",
                    "description": 'Image size in format "WIDTH*HEIGHT" (e.g., "1024*1024").',
                    "default": "1024*1024",
                },
                "seed": {
                    "type": "number",
                    "description": "Random seed for reproducibility. -1 for random.",
                    "default": -1,
                },
            },
            "required": ["prompt"],
        },
    ),
    api_config=ImageApiConfig(
        endpoint=lambda _has_images, host: f"{normalize_base_url(host)}/v3/async/hunyuan-image-3",
        is_async=True,
        supports_edit=False,
    ),
)

MODEL_NOVITA_SEEDREAM = ImageModelConfig(
    tool_definition=ToolDefinition(
        name=IMAGE_TOOL_NAME,
        description=(
            "Generate or edit images using Seedream 4.0 model. Any images attached by "
            "the user are automatically forwarded for editing or reference."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "prompt": _prompt_property(
                    "Detailed text description for image generation. "
                    "Recommended: under 600 words in English.",
                ),
                "size": {
                    "type": "string",
                    "description": 'Use "1K", "2K", "4K" or "WIDTHxHEIGHT" (e.g., "2048x2048").',
                    "default": "2048x2048",
                },
                "sequential_image_generation": {
                    "type": "string",
                    "description": '"auto" for batch generation, "disabled" for a single image.',
                    "enum": ["auto", "disabled"],
                    "default": "disabled",
                },
                "max_images": {
                    "type": "number",
                    "description": "Maximum number of images to generate (1-15).",
                    "default": 15,
                },
                "watermark": {
                    "type": "boolean",
                    "description": "Add watermark to bottom-right corner.",
                    "default": True,
                },
            },
            "required": ["prompt"],
        },
    ),
    api_config=ImageApiConfig(
        endpoint=lambda _has_images, host: f"{normalize_base_url(host)}/v3/seedream-4.0",
        is_async=False,
        supports_edit=True,
        image_input_field="images",
    ),
)

IMAGE_MODEL_REGISTRY: dict[str, ImageModelConfig] = {
    "chutes-chroma": MODEL_CHUTES_CHROMA,
    "chutes-flux": MODEL_CHUTES_CHROMA,
    "novita-qwen": MODEL_NOVITA_QWEN,
    "novita-hunyuan": MODEL_NOVITA_HUNYUAN,
    "novita-hunyuan-image-3": MODEL_NOVITA_HUNYUAN,
    "novita-seedream": MODEL_NOVITA_SEEDREAM,
    "novita-seedream-4": MODEL_NOVITA_SEEDREAM,
    "novita-seedream-4-0": MODEL_NOVITA_SEEDREAM,
}

# Substring of the model name -> preset, checked in order.
_MODEL_PATTERNS = (
    ("chroma", MODEL_CHUTES_CHROMA),
    ("qwen", MODEL_NOVITA_QWEN),
    ("hunyuan", MODEL_NOVITA_HUNYUAN),
    ("seedream", MODEL_NOVITA_SEEDREAM),
    ("flux", MODEL_CHUTES_CHROMA),
)


def get_image_model_by_key(key: str) -> ImageModelConfig | None:
    return IMAGE_MODEL_REGISTRY.get(key.lower())


def get_default_image_model(model: str, provider: str | None = None) -> ImageModelConfig:
    """Pick a preset for ``model``, falling back to Chroma."""
    model_lower = model.lower()
    provider_lower = (provider or "").lower()

    exact_key = f"{provider_lower}-{model_lower}" if provider_lower else model_lower
    if exact := get_image_model_by_key(exact_key):
        return exact

    for pattern, config in _MODEL_PATTERNS:
        if pattern in model_lower:
            return config
    return MODEL_CHUTES_CHROMA


def convert_claude_tool_to_openai(tool: ToolDefinition) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.input_schema,
        },
    }
