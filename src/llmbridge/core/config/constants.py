"""Constant definitions for llmbridge."""

# Conversation window
DEFAULT_CONTEXT_SIZE = 120

# Default hosts
OPENAI_DEFAULT_HOST = "https://api.openai.com"
ANTHROPIC_DEFAULT_HOST = "https://api.anthropic.com"
OPENROUTER_DEFAULT_HOST = "https://openrouter.ai/api"
CHUTES_IMAGE_DEFAULT_HOST = "https://image.chutes.ai"
NOVITA_DEFAULT_HOST = "https://api.novita.ai"

# Anthropic
ANTHROPIC_VERSION = "2023-06-01"
VERTEX_ANTHROPIC_VERSION = "vertex-2023-10-16"
ANTHROPIC_DEFAULT_MAX_TOKENS = 4096
ANTHROPIC_MIN_THINKING_BUDGET = 1024
VERTEX_CLAUDE_DEFAULT_THINKING_BUDGET = 2000

# Gemini
GEMINI_DEFAULT_TEMPERATURE = 0.4
GEMINI_DEFAULT_THINKING_LEVEL = "high"
VERTEX_GEMINI_MIN_THINKING_BUDGET = 2000

# OpenAI
DEFAULT_REASONING_EFFORT = "medium"
OPENAI_IMAGE_DETAIL = "low"

# Shown when a model answers with images only
IMAGE_ONLY_PLACEHOLDERS = {
    "en": "(The model returned an image without any text.)",
    "ja": "（モデルはテキストなしで画像のみを返しました）",
}
DEFAULT_LOCALE = "en"

# Stands in for empty text blocks, which Anthropic rejects
EMPTY_MESSAGE_PLACEHOLDER = "[EMPTY MESSAGE]"

# Image generation
IMAGE_TOOL_NAME = "generate_image"
IMAGE_POLL_INTERVAL_SECONDS = 2.0
IMAGE_POLL_TIMEOUT_SECONDS = 180.0
