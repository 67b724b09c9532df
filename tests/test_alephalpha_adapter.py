"""Tests for the Aleph Alpha adapter."""

from __future__ import annotations

import pytest
from _transport_helpers import RecordingTransport, aleph_alpha_completion_payload

from polyllm.adapters.alephalpha import (
    AlephAlphaModel,
    AlephAlphaOptions,
    AlephAlphaService,
    EmbedRepresentation,
    Hosting,
    build_chat_request,
    build_embed_request,
    parse_chat_response,
    render_prompt,
)
from polyllm.domain import (
    CallOptions,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    EmbedRequest,
    FinishReason,
    FunctionDeclaration,
    ModelConfig,
    Role,
    ServiceOptions,
)
from polyllm.errors import ConfigError, ResponseShapeError, ValidationError


def _service(
    service_options: ServiceOptions,
    options: AlephAlphaOptions | None = None,
) -> AlephAlphaService:
    return AlephAlphaService("aa-test", options, service_options=service_options)


def test_empty_api_key_is_rejected() -> None:
    """Construction without a credential fails immediately."""
    with pytest.raises(ConfigError, match="AlephAlpha API key not set"):
        AlephAlphaService("")


def test_defaults_follow_luminous_limits() -> None:
    """Defaults select luminous-supreme and stay within its context."""
    service = AlephAlphaService("aa-test")

    config = service.get_model_config()
    assert service.get_model_info().name == AlephAlphaModel.LUMINOUS_SUPREME, (
        "Expected luminous-supreme by default."
    )
    assert config.max_tokens == 300, "Expected the default max_tokens."
    assert config.temperature == 0.45, "Expected the default temperature."
    assert not service.get_features().functions, "Expected no function calling."
    assert not service.get_features().streaming, "Expected no streaming."


def test_max_tokens_is_clamped_to_context_window() -> None:
    """Defaults above the 2048-token window are clamped."""
    service = AlephAlphaService("aa-test", AlephAlphaOptions(max_tokens=5000))

    assert service.get_model_config().max_tokens == 2048, (
        "Expected max_tokens to be clamped to the model's context window."
    )


def test_render_prompt_labels_turns(chat_request: ChatRequest) -> None:
    """Turns are labelled and the prompt ends with an open assistant turn."""
    assert render_prompt(chat_request) == (
        "System: You are terse.\n\nUser: Say hello.\n\nAssistant:"
    ), "Expected a labelled transcript."


def test_build_chat_request_renames_fields(chat_request: ChatRequest) -> None:
    """Generic tunables use Aleph Alpha field names."""
    config = ModelConfig(
        max_tokens=50,
        temperature=0.2,
        top_k=3,
        top_p=0.9,
        stop_sequences=("User:",),
        end_sequences=("ignored",),
    )
    options = AlephAlphaOptions(
        hosting=Hosting.ALEPH_ALPHA,
        use_multiplicative_frequency_penalty=True,
        completion_bias_exclusion=("bad",),
    )

    body = build_chat_request(
        chat_request, config, model="luminous-base", options=options
    )

    assert body["maximum_tokens"] == 50, "Expected max_tokens -> maximum_tokens."
    assert "max_tokens" not in body, "Expected no generic max_tokens field."
    assert body["stop_sequences"] == ["User:"], "Expected stop sequences verbatim."
    assert "end_sequences" not in body, "Expected end_sequences to be dropped."
    assert body["hosting"] == "aleph-alpha", "Expected the hosting constraint."
    assert body["use_multiplicative_frequency_penalty"] is True, (
        "Expected vendor penalty flags in snake case."
    )
    assert body["completion_bias_exclusion"] == ["bad"], "Expected bias lists."
    assert body["disable_optimizations"] is True, "Expected the vendor default."


def test_function_declarations_are_rejected(chat_request: ChatRequest) -> None:
    """Aleph Alpha has no function calling."""
    request = ChatRequest(
        messages=chat_request.messages,
        functions=(FunctionDeclaration(name="f", description="F."),),
    )

    with pytest.raises(ValidationError, match="does not support function calling"):
        build_chat_request(request, ModelConfig(), model="luminous-base")


def test_parse_chat_response_maps_completions() -> None:
    """Completions keep their order and map finish reasons and usage."""
    payload = {
        "completions": [
            {"completion": " Hi", "finish_reason": "maximum_tokens"},
            {"completion": " Hey", "finish_reason": "end_of_text"},
        ],
        "num_tokens_prompt_total": 10,
        "num_tokens_generated": 4,
    }

    response = parse_chat_response(payload)

    assert [r.content for r in response.results] == [" Hi", " Hey"], (
        "Expected completions in order."
    )
    assert [r.finish_reason for r in response.results] == [
        FinishReason.LENGTH,
        FinishReason.STOP,
    ], "Expected maximum_tokens -> length and end_of_text -> stop."
    assert response.model_usage is not None, "Expected usage to be parsed."
    assert response.model_usage.total_tokens == 14, "Expected derived totals."


def test_parse_chat_response_without_usage_fields() -> None:
    """Responses without token counts carry no usage."""
    payload = {"completions": [{"completion": "x", "finish_reason": "end_of_text"}]}

    assert parse_chat_response(payload).model_usage is None, (
        "Expected absent usage rather than zeros."
    )


def test_parse_chat_response_rejects_missing_completions() -> None:
    """Payloads without completions are shape errors."""
    with pytest.raises(ResponseShapeError, match="completions"):
        parse_chat_response({"model_version": "x"})


@pytest.mark.parametrize(
    "completion",
    [
        {"finish_reason": "end_of_text"},
        {"completion": None, "finish_reason": "end_of_text"},
    ],
)
def test_parse_chat_response_rejects_missing_completion_text(
    completion: dict[str, object],
) -> None:
    """A completion entry without its text is a shape error, not empty content."""
    with pytest.raises(ResponseShapeError, match="'completion'"):
        parse_chat_response({"completions": [completion]})


def test_embed_request_includes_representation() -> None:
    """Embedding bodies carry the representation and optional controls."""
    options = AlephAlphaOptions(
        representation=EmbedRepresentation.QUERY, compress_to_size=128
    )

    body = build_embed_request(["find me"], model="luminous-explore", options=options)

    assert body == {
        "model": "luminous-explore",
        "prompt": "find me",
        "representation": "query",
        "compress_to_size": 128,
    }, "Expected a single prompt with the configured representation."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "texts",
    [("first", "second"), ("x" * 600,), ()],
    ids=["two-texts", "600-chars", "no-text"],
)
async def test_embed_limits_fail_without_network(
    texts: tuple[str, ...],
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Input beyond one text of 512 characters is rejected before any call."""
    with pytest.raises(ValidationError, match="embeddings"):
        await _service(service_options).embed(EmbedRequest(texts=texts))

    assert recording_transport.calls == [], "Expected no network call."


@pytest.mark.asyncio
async def test_embed_accepts_text_at_limit(
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """A single 512-character text is embedded."""
    recording_transport.queue_payload(
        {"model_version": "2023-04", "embedding": [0.5, -0.5]}
    )

    response = await _service(service_options).embed(EmbedRequest(texts=("y" * 512,)))

    (call,) = recording_transport.calls
    assert call.endpoint.url == "https://api.aleph-alpha.com/semantic_embed", (
        "Expected the semantic_embed URL."
    )
    assert response.embeddings == ((0.5, -0.5),), "Expected one vector."


@pytest.mark.asyncio
async def test_streaming_is_rejected(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Streaming requests fail before any network call."""
    with pytest.raises(ValidationError, match="does not support streaming"):
        await _service(service_options).chat(chat_request, CallOptions(stream=True))
    assert recording_transport.calls == [], "Expected no network call."


@pytest.mark.asyncio
async def test_function_turns_are_rejected(
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Function results cannot be rendered into a completion prompt."""
    request = ChatRequest(
        messages=(ChatMessage(role=Role.FUNCTION, content="42", function_id="c1"),)
    )

    with pytest.raises(ValidationError, match="function calling"):
        await _service(service_options).chat(request)
    assert recording_transport.calls == [], "Expected no network call."


@pytest.mark.asyncio
async def test_chat_posts_completion(
    chat_request: ChatRequest,
    recording_transport: RecordingTransport,
    service_options: ServiceOptions,
) -> None:
    """Chat calls post the rendered prompt to the complete endpoint."""
    recording_transport.queue_payload(aleph_alpha_completion_payload(" Hello."))

    response = await _service(service_options).chat(chat_request)

    (call,) = recording_transport.calls
    assert call.endpoint.url == "https://api.aleph-alpha.com/complete", (
        "Expected the complete URL."
    )
    assert call.endpoint.build_headers()["Authorization"] == "Bearer aa-test", (
        "Expected bearer authentication."
    )
    assert call.body["maximum_tokens"] == 300, "Expected the default budget."
    assert isinstance(response, ChatResponse), "Expected a single response."
    assert response.results[0].content == " Hello.", "Expected the completion text."
    assert response.results[0].finish_reason is FinishReason.STOP, (
        "Expected end_of_text to map to stop."
    )
