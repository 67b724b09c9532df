"""Provider-agnostic request and response models.

Every backend adapter translates these normalized shapes to and from its own
wire format. All models are immutable and created per call; nothing here is
cached or shared between calls except :class:`ModelInfo`, which is static.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ

from polyllm.errors import ValidationError

if typ.TYPE_CHECKING:
    from opentelemetry.trace import Tracer

    from polyllm.ports import RateLimiter, Transport

type JsonMapping = cabc.Mapping[str, object]


class Role(enum.StrEnum):
    """Conversation roles accepted in a chat prompt."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class FinishReason(enum.StrEnum):
    """Closed set of reasons a generation can stop."""

    STOP = "stop"
    LENGTH = "length"
    FUNCTION_CALL = "function_call"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class FunctionCallMode(enum.StrEnum):
    """Function-calling directives shared by all backends."""

    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ModelInfo:
    """Static cost and capability metadata for one named model.

    Attributes
    ----------
    name : str
        Canonical model identifier sent on the wire.
    currency : str | None
        ISO currency code the cost figures are expressed in.
    prompt_token_cost_per_1m : float | None
        Cost of one million prompt tokens.
    completion_token_cost_per_1m : float | None
        Cost of one million completion tokens.
    max_context_tokens : int | None
        Largest number of tokens the model accepts or produces.
    aliases : tuple[str, ...]
        Alternative identifiers that resolve to this model.
    """

    name: str
    currency: str | None = None
    prompt_token_cost_per_1m: float | None = None
    completion_token_cost_per_1m: float | None = None
    max_context_tokens: int | None = None
    aliases: tuple[str, ...] = ()


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ProviderModelInfo(ModelInfo):
    """Model metadata tagged with the name of the backend serving it."""

    provider: str


@dc.dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting reported by a backend for one call."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dc.dataclass(frozen=True, slots=True)
class Features:
    """Capability flags a caller must check before using optional features."""

    functions: bool
    streaming: bool


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ModelConfig:
    """Unified generation tunables.

    Every field is optional; ``None`` means "not set". Adapters fill unset
    fields from their own defaults before translating, and map only the
    subset their backend supports.
    """

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: tuple[str, ...] | None = None
    end_sequences: tuple[str, ...] | None = None
    stream: bool | None = None
    n: int | None = None

    def merged_with(self, overrides: ModelConfig | None) -> ModelConfig:
        """Return a copy where every field set in ``overrides`` wins."""
        if overrides is None:
            return self
        changes = {
            field.name: getattr(overrides, field.name)
            for field in dc.fields(overrides)
            if getattr(overrides, field.name) is not None
        }
        return dc.replace(self, **changes)


@dc.dataclass(frozen=True, slots=True)
class FunctionDeclaration:
    """A function the model may call, described by a JSON schema."""

    name: str
    description: str
    parameters: JsonMapping | None = None


@dc.dataclass(frozen=True, slots=True)
class NamedFunctionCall:
    """Directive forcing the model to call one specific function."""

    name: str


type FunctionCallDirective = FunctionCallMode | NamedFunctionCall


@dc.dataclass(frozen=True, slots=True)
class FunctionCall:
    """A function invocation requested by the model.

    ``arguments`` is kept as the backend produced it: a JSON string for
    OpenAI-style backends, a mapping for backends that return structured
    input.
    """

    id: str
    name: str
    arguments: str | JsonMapping | None = None


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ChatMessage:
    """One conversation turn.

    Raises
    ------
    ValidationError
        If the fields do not fit the role: only assistant turns may carry
        function calls or omit content, and function turns must reference
        the call they answer through ``function_id``.
    """

    role: Role
    content: str | None
    name: str | None = None
    function_calls: tuple[FunctionCall, ...] = ()
    function_id: str | None = None

    def __post_init__(self) -> None:
        try:
            role = Role(self.role)
        except ValueError as exc:
            msg = f"Unknown chat role: {self.role!r}."
            raise ValidationError(msg) from exc
        object.__setattr__(self, "role", role)
        object.__setattr__(self, "function_calls", tuple(self.function_calls))
        if self.content is None and role is not Role.ASSISTANT:
            msg = f"Chat messages with role {role!r} require content."
            raise ValidationError(msg)
        if self.function_calls and role is not Role.ASSISTANT:
            msg = "Only assistant messages may carry function calls."
            raise ValidationError(msg)
        if role is Role.FUNCTION and not self.function_id:
            msg = "Function messages require the id of the call they answer."
            raise ValidationError(msg)
        if role is not Role.FUNCTION and self.function_id is not None:
            msg = "Only function messages may set function_id."
            raise ValidationError(msg)


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ChatRequest:
    """Normalized chat request.

    Attributes
    ----------
    messages : tuple[ChatMessage, ...]
        Conversation in order. The order is preserved verbatim by every
        request builder.
    functions : tuple[FunctionDeclaration, ...]
        Functions the model may call.
    function_call : FunctionCallDirective | None
        How the model should choose between text and function calls.
    model_config : ModelConfig | None
        Per-call overrides layered on top of adapter defaults.
    model_info : ProviderModelInfo | None
        Explicit model to use for this call instead of the adapter default.
    """

    messages: tuple[ChatMessage, ...]
    functions: tuple[FunctionDeclaration, ...] = ()
    function_call: FunctionCallDirective | None = None
    model_config: ModelConfig | None = None
    model_info: ProviderModelInfo | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "functions", tuple(self.functions))
        if not self.messages:
            msg = "Chat requests require at least one message."
            raise ValidationError(msg)
        if isinstance(self.function_call, str):
            try:
                mode = FunctionCallMode(self.function_call)
            except ValueError as exc:
                msg = f"Unknown function_call directive: {self.function_call!r}."
                raise ValidationError(msg) from exc
            object.__setattr__(self, "function_call", mode)


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ChatResponseResult:
    """One completion within a chat response."""

    content: str | None
    name: str | None = None
    id: str | None = None
    function_calls: tuple[FunctionCall, ...] = ()
    finish_reason: FinishReason | None = None


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ChatResponse:
    """Normalized chat response, or one partial response of a stream."""

    results: tuple[ChatResponseResult, ...]
    session_id: str | None = None
    remote_id: str | None = None
    model_usage: TokenUsage | None = None
    embed_model_usage: TokenUsage | None = None


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class EmbedRequest:
    """Texts to embed, optionally with an explicit embedding model."""

    texts: tuple[str, ...]
    embed_model_info: ProviderModelInfo | None = None

    def __post_init__(self) -> None:
        texts = (self.texts,) if isinstance(self.texts, str) else tuple(self.texts)
        object.__setattr__(self, "texts", texts)


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class EmbedResponse:
    """Embedding vectors positionally aligned with the request texts."""

    embeddings: tuple[tuple[float, ...], ...]
    remote_id: str | None = None
    session_id: str | None = None
    model_usage: TokenUsage | None = None


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class CallOptions:
    """Per-call options.

    ``stream`` overrides the configured streaming preference, ``session_id``
    is echoed onto the response and ``trace_id`` is attached to the tracing
    span.
    """

    stream: bool | None = None
    session_id: str | None = None
    trace_id: str | None = None


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class ServiceOptions:
    """Adapter-wide options, replaced wholesale by ``set_options``.

    Attributes
    ----------
    debug : bool
        Log native request and response bodies.
    rate_limiter : RateLimiter | None
        Gate every call must pass before the network request starts.
    transport : Transport | None
        Transport override; the httpx transport is used when unset.
    tracer : Tracer | None
        OpenTelemetry tracer receiving one span per call.
    """

    debug: bool = False
    rate_limiter: RateLimiter | None = None
    transport: Transport | None = None
    tracer: Tracer | None = None


__all__ = [
    "CallOptions",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseResult",
    "EmbedRequest",
    "EmbedResponse",
    "Features",
    "FinishReason",
    "FunctionCall",
    "FunctionCallDirective",
    "FunctionCallMode",
    "FunctionDeclaration",
    "JsonMapping",
    "ModelConfig",
    "ModelInfo",
    "NamedFunctionCall",
    "ProviderModelInfo",
    "Role",
    "ServiceOptions",
    "TokenUsage",
]
