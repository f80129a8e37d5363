from __future__ import annotations

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any

import pytest
from google.genai import errors as genai_errors
from google.genai import types

from llmbridge.core.config.bot_settings import GeminiSettings
from llmbridge.core.config.constants import IMAGE_ONLY_PLACEHOLDERS
from llmbridge.core.config.user_config import ProviderKind
from llmbridge.core.exceptions import UpstreamHttpError
from llmbridge.services.llm.providers.gemini import (
    GEMINI_ERROR_PREFIX,
    GeminiApiBot,
    build_gemini_tools,
)

from ._fakes import EventRecorder, collect, send_params


def _chunk(*parts: types.Part, grounding: types.GroundingMetadata | None = None) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(role="model", parts=list(parts)),
                grounding_metadata=grounding,
            ),
        ],
    )


class _FakeModels:
    def __init__(self, chunks: list[types.GenerateContentResponse], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def generate_content_stream(self, **kwargs: Any) -> AsyncIterator[types.GenerateContentResponse]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error

        async def _stream() -> AsyncIterator[types.GenerateContentResponse]:
            for chunk in self.chunks:
                yield chunk

        return _stream()


def _fake_client(models: _FakeModels) -> Any:
    return SimpleNamespace(aio=SimpleNamespace(models=models))


def _settings(**overrides: object) -> GeminiSettings:
    values: dict[str, object] = {
        "provider": ProviderKind.GOOGLE,
        "model": "gemini-2.5-flash",
        "api_key": "g-key",
    }
    values.update(overrides)
    return GeminiSettings(**values)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_streams_text_and_hides_thoughts() -> None:
    models = _FakeModels(
        [
            _chunk(types.Part(text="secret plan", thought=True)),
            _chunk(types.Part(text="Hel")),
            _chunk(types.Part(text="lo")),
        ],
    )
    recorder = EventRecorder()
    bot = GeminiApiBot(_settings(system_message="Be kind."), client=_fake_client(models))

    await bot.do_send_message(send_params("Hi", recorder))

    texts = [update.text for update in recorder.updates]
    assert texts[-2:] == ["Hel", "Hello"]
    assert all(update.thinking is None for update in recorder.updates)
    assert recorder.types[-1] == "DONE"
    assert bot._turns == [
        {"role": "user", "parts": [{"text": "Hi"}]},
        {"role": "model", "parts": [{"text": "Hello"}]},
    ]
    config = models.calls[0]["config"]
    assert config.system_instruction == "Be kind."
    assert config.temperature == 0.4


@pytest.mark.asyncio
async def test_request_contents_carry_history_and_inline_images(png_image) -> None:
    models = _FakeModels([_chunk(types.Part(text="ok"))])
    bot = GeminiApiBot(_settings(), client=_fake_client(models))
    bot.commit_exchange(
        {"role": "user", "parts": [{"text": "earlier"}]},
        {"role": "model", "parts": [{"text": "reply"}]},
    )

    await bot.do_send_message(send_params("look", EventRecorder(), images=[png_image]))

    contents = models.calls[0]["contents"]
    assert contents[:2] == [
        {"role": "user", "parts": [{"text": "earlier"}]},
        {"role": "model", "parts": [{"text": "reply"}]},
    ]
    assert contents[2]["parts"][0] == {
        "inline_data": {"data": png_image.data, "mime_type": "image/png"},
    }
    assert contents[2]["parts"][1] == {"text": "look"}


@pytest.mark.asyncio
async def test_inline_image_and_grounding_in_final_chunk() -> None:
    grounding = types.GroundingMetadata(
        grounding_chunks=[
            types.GroundingChunk(web=types.GroundingChunkWeb(uri="https://example.com", title="Example")),
        ],
    )
    models = _FakeModels(
        [
            _chunk(types.Part(text="Here")),
            _chunk(
                types.Part(inline_data=types.Blob(data=b"img", mime_type="image/png")),
                grounding=grounding,
            ),
        ],
    )
    recorder = EventRecorder()
    bot = GeminiApiBot(_settings(), client=_fake_client(models))

    await bot.do_send_message(send_params("Hi", recorder))

    final = recorder.updates[-1]
    assert final.text == "Here\n\n![image](data:image/png;base64,aW1n)"
    assert final.reference_urls is not None
    assert final.reference_urls[0].url == "https://example.com"
    assert bot._turns[-1] == {"role": "model", "parts": [{"text": "Here"}]}


@pytest.mark.asyncio
async def test_empty_answer_shows_placeholder() -> None:
    models = _FakeModels([])
    recorder = EventRecorder()
    bot = GeminiApiBot(_settings(locale="ja"), client=_fake_client(models))

    await bot.do_send_message(send_params("Hi", recorder))

    assert recorder.updates[-1].text == IMAGE_ONLY_PLACEHOLDERS["ja"]


@pytest.mark.asyncio
async def test_function_calls_become_tool_call_events() -> None:
    models = _FakeModels(
        [
            _chunk(
                types.Part(
                    function_call=types.FunctionCall(id="fc1", name="generate_image", args={"prompt": "cat"}),
                ),
            ),
        ],
    )
    recorder = EventRecorder()
    bot = GeminiApiBot(_settings(), client=_fake_client(models))
    await bot.set_tools(
        [
            {
                "name": "generate_image",
                "description": "Make an image",
                "input_schema": {"type": "object", "properties": {"prompt": {"type": "string"}}},
            },
        ],
    )

    await bot.do_send_message(send_params("draw", recorder))

    assert recorder.tool_calls[0].name == "generate_image"
    assert recorder.tool_calls[0].arguments == {"prompt": "cat"}
    assert recorder.types[-1] == "DONE"
    tools = models.calls[0]["config"].tools
    assert tools[0].function_declarations[0].name == "generate_image"


@pytest.mark.asyncio
async def test_api_errors_become_upstream_errors() -> None:
    error = genai_errors.ClientError(
        429,
        {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}},
    )
    bot = GeminiApiBot(_settings(), client=_fake_client(_FakeModels([], error=error)))

    with pytest.raises(UpstreamHttpError) as excinfo:
        await collect(bot, "Hi")

    assert excinfo.value.status_code == 429
    assert excinfo.value.message.startswith(GEMINI_ERROR_PREFIX)
    assert "Resource exhausted" in excinfo.value.message
    assert bot._turns == []


def test_thinking_config_uses_level_for_gemini_3_and_budget_otherwise() -> None:
    gemini_3 = GeminiApiBot(
        _settings(model="gemini-3-pro-preview", thinking_mode=True),
        client=_fake_client(_FakeModels([])),
    )
    gemini_25 = GeminiApiBot(
        _settings(thinking_mode=True, thinking_budget=512),
        client=_fake_client(_FakeModels([])),
    )

    level_config = gemini_3.build_config().thinking_config
    budget_config = gemini_25.build_config().thinking_config

    assert level_config is not None
    assert str(level_config.thinking_level).upper().endswith("HIGH")
    assert budget_config is not None
    assert budget_config.thinking_budget == 512


def test_web_access_adds_google_search_once() -> None:
    tools = build_gemini_tools([{"google_search": {}}], web_access=True)

    assert len(tools) == 1
    assert tools[0].google_search is not None
    assert build_gemini_tools([], web_access=False) == []


def test_history_uses_gemini_contents() -> None:
    bot = GeminiApiBot(_settings(), client=_fake_client(_FakeModels([])))
    bot.commit_exchange(
        {"role": "user", "parts": [{"text": "q"}]},
        {"role": "model", "parts": [{"text": "a"}]},
    )

    history = bot.get_conversation_history()
    assert history is not None
    assert [(m.author, m.text) for m in history.messages] == [("user", "q"), ("assistant", "a")]

    bot.set_conversation_history(history)
    assert bot._turns[1] == {"role": "model", "parts": [{"text": "a"}]}
