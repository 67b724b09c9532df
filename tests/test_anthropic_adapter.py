"""Tests for the Anthropic Messages API adapter."""

from __future__ import annotations

import typing as typ

import pytest
from _transport_helpers import (
    RecordingTransport,
    anthropic_message_payload,
    anthropic_stream_events,
    collect,
    sse_json,
)

from polyllm.adapters.anthropic import (
    AnthropicOptions,
    AnthropicService,
    build_chat_request,
    parse_chat_response,
)
from polyllm.domain import (
    CallOptions,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    EmbedRequest,
    FinishReason,
    FunctionCall,
    FunctionCallMode,
    FunctionDeclaration,
    ModelConfig,
    Role,
    ServiceOptions,
)
from polyllm.errors import (
    ConfigError,
    ResponseShapeError,
    TransportError,
    ValidationError,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc


def _service(service_options: ServiceOptions) -> AnthropicService:
    return AnthropicService(
        "ak-test", AnthropicOptions(), service_options=service_options
    )


def test_empty_api_key_is_rejected() -> None:
    """Construction without a credential fails immediately."""
    with pytest.raises(ConfigError, match="Anthropic API key not set"):
        AnthropicService("")


def test_stop_sequences_map_exactly(chat_request: ChatRequest) -> None:
    """stop_sequences are sent verbatim under the same name."""
    config = ModelConfig(max_tokens=100, stop_sequences=("\n\nHuman:", "END"))

    body = build_chat_request(chat_request, config, model="claude-3-5-haiku-latest")

    assert body["stop_sequences"] == ["\n\nHuman:", "END"], (
        "Expected stop sequences to map one-to-one."
    )


def test_newline_stop_sequence_populates_only_stop_sequences(
    chat_request: ChatRequest,
) -> None:
    """A single newline stop lands in stop_sequences and nowhere else."""
    config = ModelConfig(max_tokens=100, stop_sequences=("\n",))

    body = build_chat_request(chat_request, config, model="claude-3-5-haiku-latest")

    assert body["stop_sequences"] == ["\n"], "Expected the newline stop verbatim."
    assert "stop" not in body, "Expected no other stop-sequence field."
    assert "end_sequences" not in body, "Expected end sequences to be dropped."


def test_system_turns_are_hoisted(chat_request: ChatRequest) -> None:
    """System prompts move to the top-level system field."""
    body = build_chat_request(chat_request, ModelConfig(max_tokens=10), model="m")

    assert body["system"] == "You are terse.", "Expected the system prompt hoisted."
    assert body["messages"] == [{"role": "user", "content": "Say hello."}], (
        "Expected only user and assistant turns in messages."
    )


def test_unsupported_penalties_are_dropped(chat_request: ChatRequest) -> None:
    """Presence and frequency penalties have no Anthropic equivalent."""
    config = ModelConfig(
        max_tokens=10,
        presence_penalty=0.5,
        frequency_penalty=0.5,
        end_sequences=("x",),
        top_k=5,
    )

    body = build_chat_request(chat_request, config, model="m")

    assert "presence_penalty" not in body, "Expected presence_penalty dropped."
    assert "frequency_penalty" not in body, "Expected frequency_penalty dropped."
    assert body["top_k"] == 5, "Expected top_k to be forwarded."


def test_multiple_completions_are_rejected(chat_request: ChatRequest) -> None:
    """Anthropic produces one completion per request."""
    with pytest.raises(ValidationError, match="n must be 1"):
        build_chat_request(chat_request, ModelConfig(max_tokens=10, n=2), model="m")


def test_function_calling_uses_tool_blocks() -> None:
    """Tool calls and results become tool_use and tool_result blocks."""
    request = ChatRequest(
        messages=(
            ChatMessage(role=Role.USER, content="Weather?"),
            ChatMessage(
                role=Role.ASSISTANT,
                content="Checking.",
                function_calls=(
                    FunctionCall(
                        id="toolu_1", name="get_weather", arguments='{"city": "Oslo"}'
                    ),
                ),
            ),
            ChatMessage(role=Role.FUNCTION, content="-2C", function_id="toolu_1"),
        ),
        functions=(FunctionDeclaration(name="get_weather", description="Weather."),),
        function_call=FunctionCallMode.REQUIRED,
    )

    body = build_chat_request(request, ModelConfig(max_tokens=10), model="m")

    messages = typ.cast("list[dict[str, object]]", body["messages"])
    assert messages[1]["content"] == [
        {"type": "text", "text": "Checking."},
        {
            "type": "tool_use",
            "id": "toolu_1",
            "name": "get_weather",
            "input": {"city": "Oslo"},
        },
    ], "Expected JSON arguments to be decoded into tool input."
    assert messages[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "toolu_1", "content": "-2C"}
        ],
    }, "Expected function results as tool_result blocks."
    assert body["tool_choice"] == {"type": "any"}, "Expected required to map to any."
    assert body["tools"] == [
        {
            "name": "get_weather",
            "description": "Weather.",
            "input_schema": {"type": "object"},
        }
    ], "Expected a default object schema."


def test_invalid_function_arguments_are_rejected() -> None:
    """Tool-call arguments must decode to a JSON object."""
    request = ChatRequest(
        messages=(
            ChatMessage(role=Role.USER, content="Hi"),
            ChatMessage(
                role=Role.ASSISTANT,
                content=None,
                function_calls=(FunctionCall(id="t", name="f", arguments="[1]"),),
            ),
        ),
        functions=(FunctionDeclaration(name="f", description="F."),),
    )

    with pytest.raises(ValidationError, match="JSON object"):
        build_chat_request(request, ModelConfig(max_tokens=10), model="m")


def test_parse_chat_response_collects_text_and_tool_use() -> None:
    """Text blocks join; tool_use blocks become function calls."""
    payload = {
        "id": "msg_1",
        "content": [
            {"type": "text", "text": "Let me check."},
            {
                "type": "tool_use",
                "id": "toolu_1",
                "name": "get_weather",
                "input": {"city": "Oslo"},
            },
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 20, "output_tokens": 10},
    }

    response = parse_chat_response(payload)

    (result,) = response.results
    assert result.content == "Let me check.", "Expected the text block content."
    assert result.finish_reason is FinishReason.FUNCTION_CALL, (
        "Expected tool_use to map to function_call."
    )
    assert result.function_calls == (
        FunctionCall(id="toolu_1", name="get_weather", arguments={"city": "Oslo"}),
    ), "Expected structured tool input to be kept."
    assert response.model_usage is not None, "Expected usage to be parsed."
    assert response.model_usage.total_tokens == 30, (
        "Expected the total to be derived from input and output tokens."
    )


@pytest.mark.parametrize(
    ("stop_reason", "expected"),
    [
        ("end_turn", FinishReason.STOP),
        ("stop_sequence", FinishReason.STOP),
        ("max_tokens", FinishReason.LENGTH),
        ("refusal", FinishReason.CONTENT_FILTER),
    ],
)
def test_stop_reasons_map_to_closed_set(
    stop_reason: str,
    expected: FinishReason,
) -> None:
    """Backend stop reasons map onto the shared finish reasons."""
    payload = anthropic_message_payload(stop_reason=stop_reason)

    (result,) = parse_chat_response(payload).results

    assert result.finish_reason is expected, f"Expected {stop_reason} -> {expected}."


def test_unknown_stop_reason_is_rejected() -> None:
    """Unmapped stop reasons are a shape error rather than a guess."""
    with pytest.raises(ResponseShapeError, match="unknown stop_reason"):
        parse_chat_response(anthropic_message_payload(stop_reason="sleepy"))


@pytest.mark.asyncio
async def test_chat_sends_versioned_request(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Requests carry the API key header and the pinned API version."""
    recording_transport.queue_payload(anthropic_message_payload("Hello."))

    response = await _service(service_options).chat(chat_request)

    (call,) = recording_transport.calls
    headers = call.endpoint.build_headers()
    assert call.endpoint.url == "https://api.anthropic.com/v1/messages", (
        "Expected the messages URL."
    )
    assert headers["x-api-key"] == "ak-test", "Expected the raw key header."
    assert headers["anthropic-version"] == "2023-06-01", "Expected the API version."
    assert "Authorization" not in headers, "Expected no bearer header."
    assert call.body["max_tokens"] == 1000, "Expected the adapter default."
    assert call.body["temperature"] == 0.0, "Expected the adapter default."
    assert isinstance(response, ChatResponse), "Expected a single response."
    assert response.results[0].content == "Hello.", "Expected the reply text."


@pytest.mark.asyncio
async def test_embed_is_unsupported(
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Anthropic has no embedding endpoint."""
    service = _service(service_options)

    assert service.get_embed_model_info() is None, "Expected no embedding model."
    with pytest.raises(ValidationError, match="does not support embeddings"):
        await service.embed(EmbedRequest(texts=("x",)))
    assert recording_transport.calls == [], "Expected no network call."


@pytest.mark.asyncio
async def test_streamed_chat_concatenates_to_full_content(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Text deltas concatenate; the final element carries reason and usage."""
    recording_transport.queue_stream(anthropic_stream_events(["Hel", "lo."]))

    stream = await _service(service_options).chat(
        chat_request, CallOptions(stream=True)
    )
    items = await collect(typ.cast("cabc.AsyncIterator[ChatResponse]", stream))

    text = "".join(item.results[0].content or "" for item in items)
    assert text == "Hello.", "Expected deltas to concatenate to the full text."
    final = items[-1]
    assert final.results[0].finish_reason is FinishReason.STOP, (
        "Expected the final element to carry the stop reason."
    )
    assert final.remote_id == "msg_123", "Expected the message id."
    assert final.model_usage is not None, "Expected usage on the final element."
    assert (final.model_usage.prompt_tokens, final.model_usage.completion_tokens) == (
        12,
        6,
    ), "Expected message_delta output tokens to replace the initial count."
    assert recording_transport.closed_streams == 1, (
        "Expected message_stop to close the transport stream."
    )


@pytest.mark.asyncio
async def test_closing_the_stream_early_closes_the_transport_stream(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """aclose() on a partly read stream closes the transport stream at once."""
    recording_transport.queue_stream(anthropic_stream_events(["Hel", "lo."]))
    stream = typ.cast(
        "cabc.AsyncGenerator[ChatResponse, None]",
        await _service(service_options).chat(chat_request, CallOptions(stream=True)),
    )

    first = await anext(stream)
    await stream.aclose()

    assert first.results[0].content == "Hel", "Expected the first delta."
    assert recording_transport.closed_streams == 1, (
        "Expected aclose() to close the transport stream."
    )


@pytest.mark.asyncio
async def test_streamed_tool_use_is_assembled(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """input_json_delta fragments form the tool call arguments."""
    recording_transport.queue_stream(
        sse_json(
            {"type": "message_start", "message": {"id": "msg_2", "usage": {}}},
            {
                "type": "content_block_start",
                "index": 0,
                "content_block": {"type": "tool_use", "id": "toolu_1", "name": "f"},
            },
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "input_json_delta", "partial_json": '{"a"'},
            },
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "input_json_delta", "partial_json": ": 1}"},
            },
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
        )
    )

    stream = await _service(service_options).chat(
        chat_request, CallOptions(stream=True)
    )
    (final,) = await collect(typ.cast("cabc.AsyncIterator[ChatResponse]", stream))

    assert final.results[0].function_calls == (
        FunctionCall(id="toolu_1", name="f", arguments='{"a": 1}'),
    ), "Expected JSON fragments to be joined."
    assert final.results[0].finish_reason is FinishReason.FUNCTION_CALL, (
        "Expected the function_call finish reason."
    )
    assert final.model_usage is None, "Expected no usage when none was reported."


@pytest.mark.asyncio
async def test_stream_error_event_raises_transport_error(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Error events in the stream surface as TransportError."""
    recording_transport.queue_stream(
        sse_json(
            {
                "type": "error",
                "error": {"type": "overloaded_error", "message": "Overloaded"},
            }
        )
    )

    stream = await _service(service_options).chat(
        chat_request, CallOptions(stream=True)
    )

    with pytest.raises(TransportError, match="Stream reported an error: Overloaded"):
        await collect(typ.cast("cabc.AsyncIterator[ChatResponse]", stream))
    assert recording_transport.closed_streams == 1, (
        "Expected the failed stream to close the transport stream."
    )
