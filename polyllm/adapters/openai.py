"""OpenAI Chat Completions and Embeddings adapter.

Translates normalized requests into the ``/v1/chat/completions`` and
``/v1/embeddings`` wire formats and validates responses at the adapter
boundary. Any OpenAI-compatible host can be targeted by overriding the base
URL.

Unsupported tunables: ``top_k`` and ``end_sequences`` are dropped.
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
    EmbedResponse,
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
    require_vector,
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
        FunctionCallDirective,
        JsonMapping,
        ProviderModelInfo,
        ServiceOptions,
        TokenUsage,
    )
    from polyllm.ports import ServerSentEvent

OPENAI_API_URL = "https://api.openai.com/v1"
_NAME = "OpenAI"
_MAX_STOP_SEQUENCES = 4
_UNSUPPORTED_SETTINGS = ("top_k", "end_sequences")
_STREAM_DONE = "[DONE]"


class OpenAIModel(enum.StrEnum):
    """OpenAI chat models."""

    GPT4O = "gpt-4o"
    GPT4O_MINI = "gpt-4o-mini"
    GPT4_TURBO = "gpt-4-turbo"
    GPT35_TURBO = "gpt-3.5-turbo"


class OpenAIEmbedModel(enum.StrEnum):
    """OpenAI embedding models."""

    TEXT_EMBEDDING_3_SMALL = "text-embedding-3-small"
    TEXT_EMBEDDING_3_LARGE = "text-embedding-3-large"
    TEXT_EMBEDDING_ADA_002 = "text-embedding-ada-002"


OPENAI_MODELS = ModelCatalog(
    (
        ModelInfo(
            name=OpenAIModel.GPT4O,
            currency="usd",
            prompt_token_cost_per_1m=2.5,
            completion_token_cost_per_1m=10.0,
            max_context_tokens=128000,
            aliases=("gpt-4o-2024-08-06",),
        ),
        ModelInfo(
            name=OpenAIModel.GPT4O_MINI,
            currency="usd",
            prompt_token_cost_per_1m=0.15,
            completion_token_cost_per_1m=0.6,
            max_context_tokens=128000,
            aliases=("gpt-4o-mini-2024-07-18",),
        ),
        ModelInfo(
            name=OpenAIModel.GPT4_TURBO,
            currency="usd",
            prompt_token_cost_per_1m=10.0,
            completion_token_cost_per_1m=30.0,
            max_context_tokens=128000,
            aliases=("gpt-4-turbo-2024-04-09",),
        ),
        ModelInfo(
            name=OpenAIModel.GPT35_TURBO,
            currency="usd",
            prompt_token_cost_per_1m=0.5,
            completion_token_cost_per_1m=1.5,
            max_context_tokens=16385,
            aliases=("gpt-3.5-turbo-0125",),
        ),
    )
)

OPENAI_EMBED_MODELS = ModelCatalog(
    (
        ModelInfo(
            name=OpenAIEmbedModel.TEXT_EMBEDDING_3_SMALL,
            currency="usd",
            prompt_token_cost_per_1m=0.02,
            completion_token_cost_per_1m=0.0,
            max_context_tokens=8191,
        ),
        ModelInfo(
            name=OpenAIEmbedModel.TEXT_EMBEDDING_3_LARGE,
            currency="usd",
            prompt_token_cost_per_1m=0.13,
            completion_token_cost_per_1m=0.0,
            max_context_tokens=8191,
        ),
        ModelInfo(
            name=OpenAIEmbedModel.TEXT_EMBEDDING_ADA_002,
            currency="usd",
            prompt_token_cost_per_1m=0.1,
            completion_token_cost_per_1m=0.0,
            max_context_tokens=8191,
        ),
    )
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.FUNCTION_CALL,
    "function_call": FinishReason.FUNCTION_CALL,
    "content_filter": FinishReason.CONTENT_FILTER,
}


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class OpenAIOptions:
    """Model selection and default tunables for the OpenAI adapter.

    Attributes
    ----------
    model : OpenAIModel | str
        Chat model, by name or alias.
    embed_model : OpenAIEmbedModel | str
        Embedding model, by name or alias.
    user : str | None
        End-user identifier forwarded for abuse monitoring.
    """

    model: OpenAIModel | str = OpenAIModel.GPT4O_MINI
    embed_model: OpenAIEmbedModel | str = OpenAIEmbedModel.TEXT_EMBEDDING_3_SMALL
    max_tokens: int = 500
    temperature: float = 0.1
    top_p: float = 0.9
    presence_penalty: float | None = None
    frequency_penalty: float | None = 0.5
    stop_sequences: tuple[str, ...] | None = None
    n: int | None = None
    stream: bool = False
    user: str | None = None

    def model_config(self) -> ModelConfig:
        """Return these defaults as a normalized :class:`ModelConfig`."""
        return ModelConfig(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            stop_sequences=self.stop_sequences,
            n=self.n,
            stream=self.stream,
        )


def _arguments_to_wire(arguments: str | JsonMapping | None) -> str:
    if arguments is None:
        return "{}"
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


def _message_to_wire(message: ChatMessage) -> dict[str, object]:
    if message.role is Role.FUNCTION:
        return {
            "role": "tool",
            "tool_call_id": message.function_id,
            "content": message.content,
        }
    wire: dict[str, object] = {"role": str(message.role), "content": message.content}
    if message.name is not None and message.role is not Role.SYSTEM:
        wire["name"] = message.name
    if message.function_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": _arguments_to_wire(call.arguments),
                },
            }
            for call in message.function_calls
        ]
    return wire


def _tool_choice(directive: FunctionCallDirective) -> object:
    if isinstance(directive, FunctionCallMode):
        return str(directive)
    return {"type": "function", "function": {"name": directive.name}}


def build_chat_request(
    request: ChatRequest,
    config: ModelConfig,
    *,
    model: str,
    stream: bool = False,
    user: str | None = None,
) -> dict[str, object]:
    """Build a Chat Completions request body.

    Parameters
    ----------
    request : ChatRequest
        Normalized chat request.
    config : ModelConfig
        Effective tunables with defaults applied.
    model : str
        Model name sent on the wire.
    stream : bool, optional
        Request a server-sent event stream with usage reporting.
    user : str | None, optional
        End-user identifier.

    Returns
    -------
    dict[str, object]
        JSON-serializable request body. Fields without a value are omitted.

    Raises
    ------
    ValidationError
        If more stop sequences are supplied than the API accepts.
    """
    if config.stop_sequences and len(config.stop_sequences) > _MAX_STOP_SEQUENCES:
        msg = f"OpenAI accepts at most {_MAX_STOP_SEQUENCES} stop sequences."
        raise ValidationError(msg)

    body: dict[str, object] = {
        "model": model,
        "messages": [_message_to_wire(message) for message in request.messages],
    }
    if request.functions:
        body["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": function.name,
                    "description": function.description,
                    **(
                        {"parameters": function.parameters}
                        if function.parameters is not None
                        else {}
                    ),
                },
            }
            for function in request.functions
        ]
    if request.function_call is not None:
        body["tool_choice"] = _tool_choice(request.function_call)

    optional_fields = {
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "top_p": config.top_p,
        "n": config.n,
        "presence_penalty": config.presence_penalty,
        "frequency_penalty": config.frequency_penalty,
    }
    body.update(
        {key: value for key, value in optional_fields.items() if value is not None}
    )
    if config.stop_sequences:
        body["stop"] = list(config.stop_sequences)
    if stream:
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}
    if user is not None:
        body["user"] = user
    return body


def _finish_reason(value: object, context: str) -> FinishReason:
    if not isinstance(value, str) or value not in _FINISH_REASONS:
        msg = f"Invalid {context}: unknown finish_reason {value!r}."
        raise ResponseShapeError(msg)
    return _FINISH_REASONS[value]


def _parse_tool_calls(message: JsonMapping, context: str) -> tuple[FunctionCall, ...]:
    raw_calls = message.get("tool_calls")
    if raw_calls is None:
        return ()
    if not isinstance(raw_calls, list):
        msg = f"Invalid {context}: tool_calls must be a list."
        raise ResponseShapeError(msg)
    calls: list[FunctionCall] = []
    for raw_call in raw_calls:
        call = require_mapping(raw_call, context)
        function = require_mapping(require_field(call, "function", context), context)
        calls.append(
            FunctionCall(
                id=require_str(call, "id", context),
                name=require_str(function, "name", context),
                arguments=optional_str(function, "arguments", context),
            )
        )
    return tuple(calls)


def _choice_index(choice: JsonMapping, default: int, context: str) -> int:
    index = choice.get("index", default)
    if not is_non_negative_int(index):
        msg = f"Invalid {context}: choice index must be a non-negative integer."
        raise ResponseShapeError(msg)
    return typ.cast("int", index)


def _parse_usage(payload: JsonMapping, context: str) -> TokenUsage | None:
    usage = payload.get("usage")
    if usage is None:
        return None
    usage_mapping = require_mapping(usage, context)
    return build_token_usage(
        usage_mapping.get("prompt_tokens"),
        usage_mapping.get("completion_tokens"),
        usage_mapping.get("total_tokens"),
        context=context,
    )


def parse_chat_response(
    payload: object,
    *,
    session_id: str | None = None,
) -> ChatResponse:
    """Validate and normalize a Chat Completions response body.

    Raises
    ------
    ResponseShapeError
        If required fields are missing or carry the wrong types.
    """
    context = "OpenAI chat completion payload"
    body = require_mapping(payload, context)
    choices = require_list(body, "choices", context)
    if not choices:
        msg = f"Invalid {context}: choices must not be empty."
        raise ResponseShapeError(msg)

    results: list[ChatResponseResult] = []
    for position, raw_choice in enumerate(choices):
        choice = require_mapping(raw_choice, context)
        message = require_mapping(require_field(choice, "message", context), context)
        results.append(
            ChatResponseResult(
                id=str(_choice_index(choice, position, context)),
                content=optional_str(message, "content", context),
                function_calls=_parse_tool_calls(message, context),
                finish_reason=_finish_reason(choice.get("finish_reason"), context),
            )
        )
    return ChatResponse(
        results=tuple(results),
        remote_id=optional_str(body, "id", context),
        session_id=session_id,
        model_usage=_parse_usage(body, context),
    )


@dc.dataclass(slots=True)
class _ToolCallBuffer:
    """Accumulates one streamed tool call across deltas."""

    id: str = ""
    name: str = ""
    arguments: list[str] = dc.field(default_factory=list)

    def to_function_call(self) -> FunctionCall:
        return FunctionCall(
            id=self.id, name=self.name, arguments="".join(self.arguments)
        )


@dc.dataclass(slots=True)
class _StreamState:
    remote_id: str | None = None
    usage: TokenUsage | None = None
    finish: dict[int, FinishReason] = dc.field(default_factory=dict)
    tool_calls: dict[int, dict[int, _ToolCallBuffer]] = dc.field(default_factory=dict)

    def absorb_tool_calls(self, index: int, delta: JsonMapping, context: str) -> None:
        raw_calls = delta.get("tool_calls")
        if raw_calls is None:
            return
        if not isinstance(raw_calls, list):
            msg = f"Invalid {context}: tool_calls must be a list."
            raise ResponseShapeError(msg)
        buffers = self.tool_calls.setdefault(index, {})
        for position, raw_call in enumerate(raw_calls):
            call = require_mapping(raw_call, context)
            call_index = _choice_index(call, position, context)
            buffer = buffers.setdefault(call_index, _ToolCallBuffer())
            buffer.id = optional_str(call, "id", context) or buffer.id
            function = require_mapping(call.get("function") or {}, context)
            buffer.name = optional_str(function, "name", context) or buffer.name
            fragment = optional_str(function, "arguments", context)
            if fragment:
                buffer.arguments.append(fragment)

    def final_results(self) -> tuple[ChatResponseResult, ...]:
        return tuple(
            ChatResponseResult(
                id=str(index),
                content="",
                function_calls=tuple(
                    buffer.to_function_call()
                    for _, buffer in sorted(self.tool_calls.get(index, {}).items())
                ),
                finish_reason=reason,
            )
            for index, reason in sorted(self.finish.items())
        )


def _raise_stream_error(chunk: JsonMapping, endpoint: Endpoint) -> None:
    error = chunk.get("error")
    if error is None:
        return
    message = (
        error.get("message") if isinstance(error, dict) else None
    ) or str(error)
    msg = f"Stream reported an error: {message}"
    raise TransportError(
        msg,
        backend=endpoint.backend,
        url=endpoint.url,
    )


async def parse_chat_stream(
    events: cabc.AsyncGenerator[ServerSentEvent, None],
    *,
    endpoint: Endpoint,
    session_id: str | None = None,
) -> cabc.AsyncIterator[ChatResponse]:
    """Translate Chat Completions stream chunks into partial responses.

    Text deltas are yielded as they arrive. Tool calls are assembled across
    chunks and delivered, with finish reasons and usage, in the final
    element.

    Raises
    ------
    ResponseShapeError
        If a chunk is malformed or the stream ends without a finish reason.
    TransportError
        If the stream carries an error object.
    """
    context = "OpenAI chat completion chunk"
    state = _StreamState()
    async with contextlib.aclosing(events):
        async for event in events:
            if event.data.strip() == _STREAM_DONE:
                break
            chunk = decode_json_event(event.data, context)
            _raise_stream_error(chunk, endpoint)
            state.remote_id = state.remote_id or optional_str(chunk, "id", context)
            state.usage = _parse_usage(chunk, context) or state.usage

            deltas: list[ChatResponseResult] = []
            for position, raw_choice in enumerate(chunk.get("choices") or []):
                choice = require_mapping(raw_choice, context)
                index = _choice_index(choice, position, context)
                delta = require_mapping(choice.get("delta") or {}, context)
                state.absorb_tool_calls(index, delta, context)
                finish_reason = choice.get("finish_reason")
                if finish_reason is not None:
                    state.finish[index] = _finish_reason(finish_reason, context)
                content = optional_str(delta, "content", context)
                if content:
                    deltas.append(ChatResponseResult(id=str(index), content=content))
            if deltas:
                yield ChatResponse(
                    results=tuple(deltas),
                    remote_id=state.remote_id,
                    session_id=session_id,
                )

    if not state.finish:
        msg = f"Invalid {context}: stream ended without a finish reason."
        raise ResponseShapeError(msg)
    yield ChatResponse(
        results=state.final_results(),
        remote_id=state.remote_id,
        session_id=session_id,
        model_usage=state.usage,
    )


def build_embed_request(texts: cabc.Sequence[str], *, model: str) -> dict[str, object]:
    """Build an Embeddings request body.

    Raises
    ------
    ValidationError
        If no texts are supplied or any text is empty.
    """
    if not texts:
        msg = "OpenAI embeddings require at least one text."
        raise ValidationError(msg)
    if any(not text for text in texts):
        msg = "OpenAI embeddings do not accept empty strings."
        raise ValidationError(msg)
    return {"model": model, "input": list(texts)}


def parse_embed_response(
    payload: object,
    *,
    expected_count: int,
    session_id: str | None = None,
) -> EmbedResponse:
    """Validate an Embeddings response and order vectors by input index."""
    context = "OpenAI embeddings payload"
    body = require_mapping(payload, context)
    data = require_list(body, "data", context)
    if len(data) != expected_count:
        msg = (
            f"Invalid {context}: expected {expected_count} embeddings, "
            f"received {len(data)}."
        )
        raise ResponseShapeError(msg)

    indexed: dict[int, tuple[float, ...]] = {}
    for position, raw_item in enumerate(data):
        item = require_mapping(raw_item, context)
        index = _choice_index(item, position, context)
        embedding = require_field(item, "embedding", context)
        indexed[index] = require_vector(embedding, context)
    if sorted(indexed) != list(range(expected_count)):
        msg = f"Invalid {context}: embedding indexes do not match the inputs."
        raise ResponseShapeError(msg)
    return EmbedResponse(
        embeddings=tuple(indexed[index] for index in range(expected_count)),
        session_id=session_id,
        model_usage=_parse_usage(body, context),
    )


class OpenAIService:
    """OpenAI backend implementing :class:`~polyllm.ports.AIService`.

    Parameters
    ----------
    api_key : str
        OpenAI API key. Must be non-empty.
    options : OpenAIOptions | None, optional
        Model selection and default tunables.
    api_url : str, optional
        Base URL of an OpenAI-compatible API.
    service_options : ServiceOptions | None, optional
        Debug, rate-limiter, transport and tracer hooks.

    Raises
    ------
    ConfigError
        If the API key is empty or a selected model is unknown.
    """

    def __init__(
        self,
        api_key: str,
        options: OpenAIOptions | None = None,
        *,
        api_url: str = OPENAI_API_URL,
        service_options: ServiceOptions | None = None,
    ) -> None:
        if not api_key:
            msg = "OpenAI API key not set."
            raise ConfigError(msg)
        self._api_key = api_key
        self._api_url = api_url
        self._settings = options or OpenAIOptions()
        self._core = AdapterCore(
            name=_NAME,
            catalog=OPENAI_MODELS,
            model=self._settings.model,
            embed_model=self._settings.embed_model,
            embed_catalog=OPENAI_EMBED_MODELS,
            default_config=self._settings.model_config(),
            features=Features(functions=True, streaming=True),
            options=service_options,
        )

    def get_name(self) -> str:
        return self._core.name

    def get_model_info(self) -> ProviderModelInfo:
        return self._core.model_info()

    def get_embed_model_info(self) -> ModelInfo | None:
        return self._core.embed_model_info()

    def get_model_config(self) -> ModelConfig:
        return self._core.model_config()

    def get_features(self) -> Features:
        return self._core.features

    def set_options(self, options: ServiceOptions) -> None:
        self._core.set_options(options)

    def _endpoint(self, path: str) -> Endpoint:
        return Endpoint(
            backend=_NAME,
            base_url=self._api_url,
            path=path,
            credential=self._api_key,
        )

    async def chat(
        self,
        request: ChatRequest,
        options: CallOptions | None = None,
    ) -> ChatResponse | cabc.AsyncIterator[ChatResponse]:
        """Perform a chat completion, streamed when requested."""
        self._core.validate_chat(request)
        config = self._core.effective_config(request.model_config)
        stream = self._core.wants_stream(config, options)
        model = self._core.chat_model(request.model_info)
        body = build_chat_request(
            request, config, model=model, stream=stream, user=self._settings.user
        )
        self._core.log_dropped(config, _UNSUPPORTED_SETTINGS)
        endpoint = self._endpoint("chat/completions")
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
        """Embed every text in one request."""
        model = self._core.embed_model(request.embed_model_info)
        body = build_embed_request(request.texts, model=model)
        endpoint = self._endpoint("embeddings")
        session_id = options.session_id if options is not None else None

        async def call(service_options: ServiceOptions) -> EmbedResponse:
            self._core.log_request(service_options, endpoint, body)
            transport = self._core.transport(service_options)
            payload = await transport.perform_request(endpoint, body)
            self._core.log_response(service_options, payload)
            return parse_embed_response(
                payload, expected_count=len(request.texts), session_id=session_id
            )

        return await self._core.run("embed", model, call, options)


__all__ = [
    "OPENAI_API_URL",
    "OPENAI_EMBED_MODELS",
    "OPENAI_MODELS",
    "OpenAIEmbedModel",
    "OpenAIModel",
    "OpenAIOptions",
    "OpenAIService",
    "build_chat_request",
    "build_embed_request",
    "parse_chat_response",
    "parse_chat_stream",
    "parse_embed_response",
]
