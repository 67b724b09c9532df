"""Anthropic Messages API adapter.

System turns are hoisted into the top-level ``system`` field, function turns
become ``tool_result`` blocks and assistant function calls become
``tool_use`` blocks. Anthropic has no embedding endpoint.

Unsupported tunables: ``presence_penalty``, ``frequency_penalty`` and
``end_sequences`` are dropped; ``n > 1`` is rejected.
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import enum
import json
import typing as typ

from polyllm.core import AdapterCore
from polyllm.domain import (
    ChatResponse,
    ChatResponseResult,
    Features,
    FinishReason,
    FunctionCall,
    FunctionCallMode,
    ModelConfig,
    ModelInfo,
    Role,
)
from polyllm.errors import (
    ConfigError,
    ResponseShapeError,
    TransportError,
    ValidationError,
)
from polyllm.payload import (
    build_token_usage,
    decode_json_event,
    is_non_negative_int,
    optional_str,
    require_field,
    require_list,
    require_mapping,
    require_str,
)
from polyllm.registry import ModelCatalog
from polyllm.transport import Endpoint

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from polyllm.domain import (
        CallOptions,
        ChatMessage,
        ChatRequest,
        EmbedRequest,
        EmbedResponse,
        FunctionCallDirective,
        JsonMapping,
        ProviderModelInfo,
        ServiceOptions,
        TokenUsage,
    )
    from polyllm.ports import ServerSentEvent

ANTHROPIC_API_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
_NAME = "Anthropic"
_UNSUPPORTED_SETTINGS = ("presence_penalty", "frequency_penalty", "end_sequences")


class AnthropicModel(enum.StrEnum):
    """Anthropic generation models."""

    CLAUDE_SONNET_4 = "claude-sonnet-4-20250514"
    CLAUDE_OPUS_4 = "claude-opus-4-20250514"
    CLAUDE_35_SONNET = "claude-3-5-sonnet-latest"
    CLAUDE_35_HAIKU = "claude-3-5-haiku-latest"
    CLAUDE_3_HAIKU = "claude-3-haiku-20240307"


ANTHROPIC_MODELS = ModelCatalog(
    (
        ModelInfo(
            name=AnthropicModel.CLAUDE_SONNET_4,
            currency="usd",
            prompt_token_cost_per_1m=3.0,
            completion_token_cost_per_1m=15.0,
            max_context_tokens=200000,
            aliases=("claude-sonnet-4-0",),
        ),
        ModelInfo(
            name=AnthropicModel.CLAUDE_OPUS_4,
            currency="usd",
            prompt_token_cost_per_1m=15.0,
            completion_token_cost_per_1m=75.0,
            max_context_tokens=200000,
            aliases=("claude-opus-4-0",),
        ),
        ModelInfo(
            name=AnthropicModel.CLAUDE_35_SONNET,
            currency="usd",
            prompt_token_cost_per_1m=3.0,
            completion_token_cost_per_1m=15.0,
            max_context_tokens=200000,
            aliases=("claude-3-5-sonnet-20241022",),
        ),
        ModelInfo(
            name=AnthropicModel.CLAUDE_35_HAIKU,
            currency="usd",
            prompt_token_cost_per_1m=0.8,
            completion_token_cost_per_1m=4.0,
            max_context_tokens=200000,
            aliases=("claude-3-5-haiku-20241022",),
        ),
        ModelInfo(
            name=AnthropicModel.CLAUDE_3_HAIKU,
            currency="usd",
            prompt_token_cost_per_1m=0.25,
            completion_token_cost_per_1m=1.25,
            max_context_tokens=200000,
        ),
    )
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.FUNCTION_CALL,
    "refusal": FinishReason.CONTENT_FILTER,
}


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class AnthropicOptions:
    """Model selection and default tunables for the Anthropic adapter."""

    model: AnthropicModel | str = AnthropicModel.CLAUDE_35_SONNET
    max_tokens: int = 1000
    temperature: float = 0.0
    top_p: float = 1.0
    top_k: int | None = None
    stop_sequences: tuple[str, ...] | None = None
    stream: bool = False
    user_id: str | None = None

    def model_config(self) -> ModelConfig:
        """Return these defaults as a normalized :class:`ModelConfig`."""
        return ModelConfig(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            stop_sequences=self.stop_sequences,
            stream=self.stream,
        )


def _tool_input(arguments: str | JsonMapping | None) -> object:
    """Return tool-call arguments as the JSON object Anthropic expects."""
    if arguments is None:
        return {}
    if not isinstance(arguments, str):
        return dict(arguments)
    try:
        decoded = json.loads(arguments) if arguments.strip() else {}
    except ValueError as exc:
        msg = "Function call arguments must be a JSON object."
        raise ValidationError(msg) from exc
    if not isinstance(decoded, dict):
        msg = "Function call arguments must be a JSON object."
        raise ValidationError(msg)
    return decoded


def _assistant_content(message: ChatMessage) -> object:
    if not message.function_calls:
        return message.content or ""
    blocks: list[dict[str, object]] = []
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    blocks.extend(
        {
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": _tool_input(call.arguments),
        }
        for call in message.function_calls
    )
    return blocks


def _message_to_wire(message: ChatMessage) -> dict[str, object]:
    if message.role is Role.FUNCTION:
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": message.function_id,
                    "content": message.content,
                }
            ],
        }
    if message.role is Role.ASSISTANT:
        return {"role": "assistant", "content": _assistant_content(message)}
    return {"role": "user", "content": message.content}


def _tool_choice(directive: FunctionCallDirective) -> dict[str, object]:
    match directive:
        case FunctionCallMode.NONE:
            return {"type": "none"}
        case FunctionCallMode.AUTO:
            return {"type": "auto"}
        case FunctionCallMode.REQUIRED:
            return {"type": "any"}
        case _:
            return {"type": "tool", "name": directive.name}


def build_chat_request(
    request: ChatRequest,
    config: ModelConfig,
    *,
    model: str,
    stream: bool = False,
    user_id: str | None = None,
) -> dict[str, object]:
    """Build a Messages API request body.

    Parameters
    ----------
    request : ChatRequest
        Normalized chat request.
    config : ModelConfig
        Effective tunables with defaults applied.
    model : str
        Model name sent on the wire.
    stream : bool, optional
        Request a server-sent event stream.
    user_id : str | None, optional
        Opaque end-user identifier placed in ``metadata``.

    Returns
    -------
    dict[str, object]
        JSON-serializable request body.

    Raises
    ------
    ValidationError
        If ``n`` asks for more than one completion, ``max_tokens`` is unset,
        or the conversation has no user or assistant turns.
    """
    if config.n is not None and config.n > 1:
        msg = "Anthropic returns a single completion per request; n must be 1."
        raise ValidationError(msg)
    if config.max_tokens is None:
        msg = "Anthropic requires max_tokens."
        raise ValidationError(msg)

    system = [m.content for m in request.messages if m.role is Role.SYSTEM]
    turns = [
        _message_to_wire(message)
        for message in request.messages
        if message.role is not Role.SYSTEM
    ]
    if not turns:
        msg = "Anthropic requires at least one user or assistant message."
        raise ValidationError(msg)

    body: dict[str, object] = {"model": model, "max_tokens": config.max_tokens}
    if system:
        body["system"] = "\n".join(typ.cast("list[str]", system))
    body["messages"] = turns
    if config.stop_sequences:
        body["stop_sequences"] = list(config.stop_sequences)
    optional_fields = {
        "temperature": config.temperature,
        "top_p": config.top_p,
        "top_k": config.top_k,
    }
    body.update(
        {key: value for key, value in optional_fields.items() if value is not None}
    )
    if request.functions:
        body["tools"] = [
            {
                "name": function.name,
                "description": function.description,
                "input_schema": function.parameters or {"type": "object"},
            }
            for function in request.functions
        ]
    if request.function_call is not None:
        body["tool_choice"] = _tool_choice(request.function_call)
    if user_id is not None:
        body["metadata"] = {"user_id": user_id}
    if stream:
        body["stream"] = True
    return body


def _finish_reason(value: object, context: str) -> FinishReason:
    if not isinstance(value, str) or value not in _FINISH_REASONS:
        msg = f"Invalid {context}: unknown stop_reason {value!r}."
        raise ResponseShapeError(msg)
    return _FINISH_REASONS[value]


def _parse_usage(payload: JsonMapping, context: str) -> TokenUsage | None:
    usage = payload.get("usage")
    if usage is None:
        return None
    usage_mapping = require_mapping(usage, context)
    return build_token_usage(
        usage_mapping.get("input_tokens"),
        usage_mapping.get("output_tokens"),
        context=context,
    )


def parse_chat_response(
    payload: object,
    *,
    session_id: str | None = None,
) -> ChatResponse:
    """Validate and normalize a Messages API response body.

    Text blocks are concatenated in order; ``tool_use`` blocks become
    function calls with their structured input kept as a mapping.
    """
    context = "Anthropic message payload"
    body = require_mapping(payload, context)
    blocks = require_list(body, "content", context)

    text_parts: list[str] = []
    calls: list[FunctionCall] = []
    for raw_block in blocks:
        block = require_mapping(raw_block, context)
        block_type = require_str(block, "type", context)
        if block_type == "text":
            text_parts.append(require_str(block, "text", context))
        elif block_type == "tool_use":
            calls.append(
                FunctionCall(
                    id=require_str(block, "id", context),
                    name=require_str(block, "name", context),
                    arguments=require_mapping(
                        require_field(block, "input", context), context
                    ),
                )
            )

    result = ChatResponseResult(
        content="".join(text_parts),
        function_calls=tuple(calls),
        finish_reason=_finish_reason(body.get("stop_reason"), context),
    )
    return ChatResponse(
        results=(result,),
        remote_id=require_str(body, "id", context),
        session_id=session_id,
        model_usage=_parse_usage(body, context),
    )


@dc.dataclass(slots=True)
class _ToolUseBuffer:
    id: str
    name: str
    partial_json: list[str] = dc.field(default_factory=list)

    def to_function_call(self) -> FunctionCall:
        return FunctionCall(
            id=self.id,
            name=self.name,
            arguments="".join(self.partial_json) or "{}",
        )


@dc.dataclass(slots=True)
class _StreamState:
    remote_id: str | None = None
    prompt_tokens: object = None
    completion_tokens: object = None
    finish_reason: FinishReason | None = None
    tool_uses: dict[int, _ToolUseBuffer] = dc.field(default_factory=dict)
    calls: list[FunctionCall] = dc.field(default_factory=list)

    def usage(self, context: str) -> TokenUsage | None:
        return build_token_usage(
            self.prompt_tokens, self.completion_tokens, context=context
        )


def _block_index(event: JsonMapping, context: str) -> int:
    index = require_field(event, "index", context)
    if not is_non_negative_int(index):
        msg = f"Invalid {context}: content block index must be an integer."
        raise ResponseShapeError(msg)
    return typ.cast("int", index)


def _raise_stream_error(event: JsonMapping, endpoint: Endpoint) -> typ.NoReturn:
    error = event.get("error")
    message = (
        error.get("message") if isinstance(error, dict) else None
    ) or "unknown error"
    msg = f"Stream reported an error: {message}"
    raise TransportError(
        msg,
        backend=endpoint.backend,
        url=endpoint.url,
    )


def _handle_block_event(
    state: _StreamState,
    event_type: str,
    event: JsonMapping,
    context: str,
) -> str | None:
    """Apply a content-block event and return any text delta it carries."""
    if event_type == "content_block_start":
        block = require_mapping(require_field(event, "content_block", context), context)
        if block.get("type") == "tool_use":
            state.tool_uses[_block_index(event, context)] = _ToolUseBuffer(
                id=require_str(block, "id", context),
                name=require_str(block, "name", context),
            )
        return None
    if event_type == "content_block_delta":
        delta = require_mapping(require_field(event, "delta", context), context)
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return require_str(delta, "text", context)
        if delta_type == "input_json_delta":
            buffer = state.tool_uses.get(_block_index(event, context))
            if buffer is None:
                msg = f"Invalid {context}: input delta for unknown tool block."
                raise ResponseShapeError(msg)
            buffer.partial_json.append(require_str(delta, "partial_json", context))
        return None
    # content_block_stop
    buffer = state.tool_uses.pop(_block_index(event, context), None)
    if buffer is not None:
        state.calls.append(buffer.to_function_call())
    return None


async def parse_chat_stream(
    events: cabc.AsyncGenerator[ServerSentEvent, None],
    *,
    endpoint: Endpoint,
    session_id: str | None = None,
) -> cabc.AsyncIterator[ChatResponse]:
    """Translate Messages API stream events into partial responses.

    Text deltas are yielded as they arrive. Tool calls, the stop reason and
    usage are delivered in the final element, produced once the stream
    reports ``message_stop``.

    Raises
    ------
    ResponseShapeError
        If an event is malformed or the stream ends without a stop reason.
    TransportError
        If the stream carries an ``error`` event.
    """
    context = "Anthropic stream event"
    state = _StreamState()
    async with contextlib.aclosing(events):
        async for sse in events:
            event = decode_json_event(sse.data, context)
            event_type = require_str(event, "type", context)
            match event_type:
                case "error":
                    _raise_stream_error(event, endpoint)
                case "message_start":
                    message = require_mapping(
                        require_field(event, "message", context), context
                    )
                    state.remote_id = optional_str(message, "id", context)
                    usage = require_mapping(message.get("usage") or {}, context)
                    state.prompt_tokens = usage.get("input_tokens")
                    state.completion_tokens = usage.get("output_tokens")
                case (
                    "content_block_start" | "content_block_delta" | "content_block_stop"
                ):
                    text = _handle_block_event(state, event_type, event, context)
                    if text:
                        yield ChatResponse(
                            results=(ChatResponseResult(content=text),),
                            remote_id=state.remote_id,
                            session_id=session_id,
                        )
                case "message_delta":
                    delta = require_mapping(
                        require_field(event, "delta", context), context
                    )
                    stop_reason = delta.get("stop_reason")
                    if stop_reason is not None:
                        state.finish_reason = _finish_reason(stop_reason, context)
                    usage = require_mapping(event.get("usage") or {}, context)
                    if usage.get("output_tokens") is not None:
                        state.completion_tokens = usage["output_tokens"]
                case "message_stop":
                    break
                case _:
                    # ping and future event types carry nothing to normalize
                    continue

    if state.finish_reason is None:
        msg = f"Invalid {context}: stream ended without a stop reason."
        raise ResponseShapeError(msg)
    final = ChatResponseResult(
        content="",
        function_calls=tuple(state.calls),
        finish_reason=state.finish_reason,
    )
    yield ChatResponse(
        results=(final,),
        remote_id=state.remote_id,
        session_id=session_id,
        model_usage=state.usage(context),
    )


class AnthropicService:
    """Anthropic backend implementing :class:`~polyllm.ports.AIService`.

    Parameters
    ----------
    api_key : str
        Anthropic API key. Must be non-empty.
    options : AnthropicOptions | None, optional
        Model selection and default tunables.
    api_url : str, optional
        Base URL of the Messages API.
    service_options : ServiceOptions | None, optional
        Debug, rate-limiter, transport and tracer hooks.

    Raises
    ------
    ConfigError
        If the API key is empty or the selected model is unknown.
    """

    def __init__(
        self,
        api_key: str,
        options: AnthropicOptions | None = None,
        *,
        api_url: str = ANTHROPIC_API_URL,
        service_options: ServiceOptions | None = None,
    ) -> None:
        if not api_key:
            msg = "Anthropic API key not set."
            raise ConfigError(msg)
        self._api_key = api_key
        self._api_url = api_url
        self._settings = options or AnthropicOptions()
        self._core = AdapterCore(
            name=_NAME,
            catalog=ANTHROPIC_MODELS,
            model=self._settings.model,
            default_config=self._settings.model_config(),
            features=Features(functions=True, streaming=True),
            options=service_options,
        )

    def get_name(self) -> str:
        return self._core.name

    def get_model_info(self) -> ProviderModelInfo:
        return self._core.model_info()

    def get_embed_model_info(self) -> ModelInfo | None:
        return None

    def get_model_config(self) -> ModelConfig:
        return self._core.model_config()

    def get_features(self) -> Features:
        return self._core.features

    def set_options(self, options: ServiceOptions) -> None:
        self._core.set_options(options)

    def _endpoint(self) -> Endpoint:
        return Endpoint(
            backend=_NAME,
            base_url=self._api_url,
            path="messages",
            credential=self._api_key,
            auth_header="x-api-key",
            auth_scheme="",
            headers=(("anthropic-version", ANTHROPIC_VERSION),),
        )

    async def chat(
        self,
        request: ChatRequest,
        options: CallOptions | None = None,
    ) -> ChatResponse | cabc.AsyncIterator[ChatResponse]:
        """Perform a Messages API call, streamed when requested."""
        self._core.validate_chat(request)
        config = self._core.effective_config(request.model_config)
        stream = self._core.wants_stream(config, options)
        model = self._core.chat_model(request.model_info)
        body = build_chat_request(
            request,
            config,
            model=model,
            stream=stream,
            user_id=self._settings.user_id,
        )
        self._core.log_dropped(config, _UNSUPPORTED_SETTINGS)
        endpoint = self._endpoint()
        session_id = options.session_id if options is not None else None

        if stream:

            def open_stream(
                service_options: ServiceOptions,
            ) -> cabc.AsyncIterator[ChatResponse]:
                self._core.log_request(service_options, endpoint, body)
                transport = self._core.transport(service_options)
                return parse_chat_stream(
                    transport.stream_request(endpoint, body),
                    endpoint=endpoint,
                    session_id=session_id,
                )

            return await self._core.run_stream("chat", model, open_stream, options)

        async def call(service_options: ServiceOptions) -> ChatResponse:
            self._core.log_request(service_options, endpoint, body)
            transport = self._core.transport(service_options)
            payload = await transport.perform_request(endpoint, body)
            self._core.log_response(service_options, payload)
            return parse_chat_response(payload, session_id=session_id)

        return await self._core.run("chat", model, call, options)

    async def embed(
        self,
        request: EmbedRequest,
        options: CallOptions | None = None,
    ) -> EmbedResponse:
        """Reject the call; Anthropic offers no embedding endpoint.

        Raises
        ------
        ValidationError
            Always.
        """
        _ = (request, options)
        msg = f"{_NAME} does not support embeddings."
        raise ValidationError(msg)


__all__ = [
    "ANTHROPIC_API_URL",
    "ANTHROPIC_MODELS",
    "ANTHROPIC_VERSION",
    "AnthropicModel",
    "AnthropicOptions",
    "AnthropicService",
    "build_chat_request",
    "parse_chat_response",
    "parse_chat_stream",
]
