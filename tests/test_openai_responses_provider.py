from __future__ import annotations

import pytest

from llmbridge.bots.history import chat_turns_to_history
from llmbridge.core.config.bot_settings import ResponsesSettings
from llmbridge.core.config.user_config import ProviderKind
from llmbridge.core.exceptions import ProviderSpecificError
from llmbridge.services.llm.providers.openai_responses import (
    OpenAIResponsesBot,
    extract_completed_image,
    sanitize_responses_input,
    to_responses_function_tool,
)
from llmbridge.services.llm.responses_stream import (
    FunctionCallItem,
    ResponsesStreamHandler,
    handle_responses_event,
)

from ._fakes import EventRecorder, RecordingTransport, collect, send_params, sse_frame, sse_response


def _settings(**overrides: object) -> ResponsesSettings:
    values: dict[str, object] = {
        "provider": ProviderKind.OPENAI_RESPONSES,
        "model": "gpt-5",
        "api_key": "sk-resp",
        "host": "https://api.openai.com",
    }
    values.update(overrides)
    return ResponsesSettings(**values)  # type: ignore[arg-type]


class _Recorder(ResponsesStreamHandler):
    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def on_text_delta(self, text: str) -> None:
        self.calls.append(("text_delta", text))

    def on_reasoning_delta(self, text: str) -> None:
        self.calls.append(("reasoning_delta", text))

    def on_image_done(self, b64: str) -> None:
        self.calls.append(("image_done", b64))

    def on_function_call(self, call: FunctionCallItem) -> None:
        self.calls.append(("function_call", call))

    def on_error(self, message: str, raw: object) -> None:
        self.calls.append(("error", message))


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"type": "response.output_text.delta", "delta": "hi"}, ("text_delta", "hi")),
        ({"type": "response.refusal.delta", "delta": "no"}, ("text_delta", "no")),
        ({"type": "response.reasoning_summary_text.delta", "delta": "why"}, ("reasoning_delta", "why")),
        ({"type": "response.image_generation_call.done", "b64_json": "QUJD"}, ("image_done", "QUJD")),
        ({"type": "error", "error": {"message": "bad"}}, ("error", "bad")),
        (
            {"type": "response.failed", "response": {"error": {"message": "failed hard"}}},
            ("error", "failed hard"),
        ),
    ],
)
def test_dispatcher_routes_events(data: dict[str, object], expected: tuple[str, object]) -> None:
    handler = _Recorder()

    handle_responses_event(data, None, handler)

    assert handler.calls == [expected]


def test_dispatcher_falls_back_to_sse_event_name_and_ignores_pending_calls() -> None:
    handler = _Recorder()

    handle_responses_event({"delta": "x"}, "response.output_text.delta", handler)
    handle_responses_event(
        {"type": "response.output_item.done", "item": {"type": "function_call", "status": "in_progress"}},
        None,
        handler,
    )

    assert handler.calls == [("text_delta", "x")]


def test_sanitize_forces_part_types_by_role() -> None:
    items = [
        {"role": "user", "content": [{"type": "text", "text": "hi"}, {"type": "input_image", "image_url": "data:x"}]},
        {"role": "assistant", "content": "plain answer"},
        {"role": "assistant", "content": [{"type": "input_text", "text": "wrong type"}]},
    ]

    assert sanitize_responses_input(items) == [
        {
            "role": "user",
            "content": [
                {"type": "input_text", "text": "hi"},
                {"type": "input_image", "image_url": "data:x"},
            ],
        },
        {"role": "assistant", "content": [{"type": "output_text", "text": "plain answer"}]},
        {"role": "assistant", "content": [{"type": "output_text", "text": "wrong type"}]},
    ]


def test_function_tools_are_flattened() -> None:
    chat_tool = {"type": "function", "function": {"name": "f", "parameters": {"type": "object"}}}
    claude_tool = {"name": "g", "description": "d", "input_schema": {"type": "object"}}

    assert to_responses_function_tool(chat_tool) == {
        "type": "function",
        "name": "f",
        "parameters": {"type": "object"},
    }
    assert to_responses_function_tool(claude_tool) == {
        "type": "function",
        "name": "g",
        "description": "d",
        "parameters": {"type": "object"},
    }


def test_extract_completed_image() -> None:
    response = {
        "output": [
            {"type": "message"},
            {
                "type": "image_generation_call",
                "result": "QUJD",
                "output_format": "webp",
                "revised_prompt": "a cat",
            },
        ],
    }

    assert extract_completed_image(response) == ("QUJD", "image/webp", "a cat")
    assert extract_completed_image({"output": []}) is None


@pytest.mark.asyncio
async def test_streams_text_reasoning_and_commits_text_only() -> None:
    frames = [
        {"type": "response.reasoning_summary_text.delta", "delta": "plan"},
        {"type": "response.output_text.delta", "delta": "Hel"},
        {"type": "response.output_text.delta", "delta": "lo"},
        {"type": "response.completed", "response": {"output": []}},
        {"type": "response.output_text.delta", "delta": "ignored"},
    ]
    transport = RecordingTransport([sse_response(frames)])
    recorder = EventRecorder()
    async with transport.client() as client:
        bot = OpenAIResponsesBot(
            _settings(system_message="Sys", thinking_mode=True, reasoning_effort="low"),
            http_client=client,
        )
        await bot.do_send_message(send_params("Hi", recorder))

    assert [update.text for update in recorder.updates] == ["", "Hel", "Hello"]
    assert recorder.updates[0].thinking == "plan"
    assert recorder.types[-1] == "DONE"
    assert bot._turns[-1] == {"role": "assistant", "content": "Hello"}

    request = transport.requests[0]
    body = transport.json_body()
    assert str(request.url) == "https://api.openai.com/v1/responses"
    assert body["instructions"] == "Sys"
    assert body["reasoning"] == {"effort": "low"}
    assert body["input"] == [{"role": "user", "content": [{"type": "input_text", "text": "Hi"}]}]


@pytest.mark.asyncio
async def test_history_is_resent_with_output_text_parts() -> None:
    transport = RecordingTransport(
        [
            sse_response([{"type": "response.output_text.delta", "delta": "first"}, "[DONE]"]),
            sse_response(["[DONE]"]),
        ],
    )
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(), http_client=client)
        await bot.do_send_message(send_params("one", EventRecorder()))
        await bot.do_send_message(send_params("two", EventRecorder()))

    assert transport.json_body()["input"] == [
        {"role": "user", "content": [{"type": "input_text", "text": "one"}]},
        {"role": "assistant", "content": [{"type": "output_text", "text": "first"}]},
        {"role": "user", "content": [{"type": "input_text", "text": "two"}]},
    ]


@pytest.mark.asyncio
async def test_imported_history_is_sent_as_responses_items() -> None:
    transport = RecordingTransport([sse_response(["[DONE]"])])
    history = chat_turns_to_history(
        [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "reply"}],
    )
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(), http_client=client)
        bot.set_conversation_history(history)
        await bot.do_send_message(send_params("now", EventRecorder()))

    assert transport.json_body()["input"] == [
        {"role": "user", "content": [{"type": "input_text", "text": "earlier"}]},
        {"role": "assistant", "content": [{"type": "output_text", "text": "reply"}]},
        {"role": "user", "content": [{"type": "input_text", "text": "now"}]},
    ]
    exported = bot.get_conversation_history()
    assert exported is not None
    assert [(message.author, message.text) for message in exported.messages][:2] == [
        ("user", "earlier"),
        ("assistant", "reply"),
    ]

@pytest.mark.asyncio
async def test_generated_image_is_displayed_but_not_stored() -> None:
    frames = [
        sse_frame({"delta": "Here"}, event="response.output_text.delta"),
        {
            "type": "response.completed",
            "response": {
                "output": [{"type": "image_generation_call", "result": "QUJD", "revised_prompt": "cat"}],
            },
        },
    ]
    transport = RecordingTransport([sse_response(frames)])
    recorder = EventRecorder()
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(), http_client=client)
        await bot.do_send_message(send_params("draw", recorder))

    final = recorder.updates[-1].text
    assert final.startswith("Here\n\n![image](data:image/png;base64,QUJD)")
    assert final.endswith("_Revised prompt:_\ncat")
    assert bot._turns[-1] == {"role": "assistant", "content": "Here"}


@pytest.mark.asyncio
async def test_function_call_items_become_tool_calls() -> None:
    frames = [
        {
            "type": "response.output_item.done",
            "item": {
                "type": "function_call",
                "status": "completed",
                "id": "fc_1",
                "call_id": "call_1",
                "name": "generate_image",
                "arguments": '{"prompt": "cat"}',
            },
        },
        "[DONE]",
    ]
    transport = RecordingTransport([sse_response(frames)])
    recorder = EventRecorder()
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(), http_client=client)
        await bot.set_tools([{"type": "function", "function": {"name": "generate_image"}}])
        await bot.do_send_message(send_params("draw", recorder))

    assert recorder.types == ["TOOL_CALL", "DONE"]
    assert recorder.tool_calls[0].id == "call_1"
    assert recorder.tool_calls[0].arguments == {"prompt": "cat"}
    assert transport.json_body()["tools"] == [{"type": "function", "name": "generate_image"}]


@pytest.mark.asyncio
async def test_web_access_requests_web_search_tool() -> None:
    transport = RecordingTransport([sse_response(["[DONE]"])])
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(web_access=True), http_client=client)
        await bot.do_send_message(send_params("news?", EventRecorder()))

    assert transport.json_body()["tools"] == [{"type": "web_search_preview"}]


@pytest.mark.asyncio
async def test_stream_error_event_raises() -> None:
    transport = RecordingTransport([sse_response([{"type": "error", "error": {"message": "server melted"}}])])
    async with transport.client() as client:
        bot = OpenAIResponsesBot(_settings(), http_client=client)
        with pytest.raises(ProviderSpecificError, match="server melted"):
            await collect(bot, "Hi")

    assert bot._turns == []
