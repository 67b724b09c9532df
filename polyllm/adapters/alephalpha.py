"""Aleph Alpha ``complete`` and ``semantic_embed`` adapter.

Aleph Alpha completes a single prompt string, so chat requests are rendered
into a transcript that ends with an open ``Assistant:`` turn. The backend
has no function calling and no streaming, and its semantic embedding
endpoint accepts exactly one text of at most 512 characters.

Unsupported tunables: ``end_sequences`` is dropped. Vendor-specific
controls (hosting, penalty variants, completion bias, embedding
representation) are taken from :class:`AlephAlphaOptions`.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from polyllm.core import AdapterCore
from polyllm.domain import (
    ChatResponse,
    ChatResponseResult,
    EmbedResponse,
    Features,
    FinishReason,
    ModelConfig,
    ModelInfo,
    Role,
)
from polyllm.errors import ConfigError, ResponseShapeError, ValidationError
from polyllm.payload import (
    build_token_usage,
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
        ChatRequest,
        EmbedRequest,
        JsonMapping,
        ProviderModelInfo,
        ServiceOptions,
        TokenUsage,
    )

ALEPH_ALPHA_API_URL = "https://api.aleph-alpha.com"
_NAME = "AlephAlpha"
_UNSUPPORTED_SETTINGS = ("end_sequences",)
MAX_EMBED_TEXTS = 1
MAX_EMBED_CHARS = 512


class AlephAlphaModel(enum.StrEnum):
    """Luminous generation models."""

    LUMINOUS_SUPREME_CONTROL = "luminous-supreme-control"
    LUMINOUS_SUPREME = "luminous-supreme"
    LUMINOUS_EXTENDED = "luminous-extended"
    LUMINOUS_BASE = "luminous-base"


class AlephAlphaEmbedModel(enum.StrEnum):
    """Luminous semantic embedding models."""

    LUMINOUS_EXPLORE = "luminous-explore"


class EmbedRepresentation(enum.StrEnum):
    """How a semantic embedding will be compared."""

    SYMMETRIC = "symmetric"
    DOCUMENT = "document"
    QUERY = "query"


class Hosting(enum.StrEnum):
    """Hosting constraints; unset lets the API pick any datacentre."""

    ALEPH_ALPHA = "aleph-alpha"


def _luminous(name: str, eur_per_1m: float) -> ModelInfo:
    return ModelInfo(
        name=name,
        currency="eur",
        prompt_token_cost_per_1m=eur_per_1m,
        completion_token_cost_per_1m=eur_per_1m,
        max_context_tokens=2048,
    )


ALEPH_ALPHA_MODELS = ModelCatalog(
    (
        _luminous(AlephAlphaModel.LUMINOUS_SUPREME_CONTROL, 43.75),
        _luminous(AlephAlphaModel.LUMINOUS_SUPREME, 35.0),
        _luminous(AlephAlphaModel.LUMINOUS_EXTENDED, 9.0),
        _luminous(AlephAlphaModel.LUMINOUS_BASE, 6.0),
    )
)

ALEPH_ALPHA_EMBED_MODELS = ModelCatalog(
    (_luminous(AlephAlphaEmbedModel.LUMINOUS_EXPLORE, 15.0),)
)

_FINISH_REASONS: dict[str, FinishReason] = {
    "end_of_text": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "stop_sequence_reached": FinishReason.STOP,
    "maximum_tokens": FinishReason.LENGTH,
}

_ROLE_LABELS: dict[Role, str] = {
    Role.SYSTEM: "System",
    Role.USER: "User",
    Role.ASSISTANT: "Assistant",
}


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class AlephAlphaOptions:
    """Model selection and tunables for the Aleph Alpha adapter.

    The generic tunables (``max_tokens`` through ``n``) become the adapter's
    default :class:`ModelConfig` and can be overridden per call. Everything
    else is vendor-specific and sent as configured here.
    """

    model: AlephAlphaModel | str = AlephAlphaModel.LUMINOUS_SUPREME
    embed_model: AlephAlphaEmbedModel | str = AlephAlphaEmbedModel.LUMINOUS_EXPLORE
    hosting: Hosting | None = None

    max_tokens: int = 300
    temperature: float = 0.45
    top_k: int = 0
    top_p: float = 1.0
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: tuple[str, ...] | None = None
    n: int | None = None

    minimum_tokens: int | None = None
    echo: bool | None = None
    sequence_penalty: float | None = None
    sequence_penalty_min_length: int | None = None
    repetition_penalties_include_completion: bool | None = None
    use_multiplicative_presence_penalty: bool | None = None
    use_multiplicative_frequency_penalty: bool | None = None
    use_multiplicative_sequence_penalty: bool | None = None
    penalty_bias: str | None = None
    penalty_exceptions: tuple[str, ...] | None = None
    penalty_exceptions_include_stop_sequences: bool | None = None
    best_of: int | None = None
    logit_bias: cabc.Mapping[str, float] | None = None
    log_probs: int | None = None
    tokens: bool | None = None
    raw_completion: bool | None = None
    disable_optimizations: bool | None = True
    completion_bias_inclusion: tuple[str, ...] | None = None
    completion_bias_inclusion_first_token_only: bool | None = None
    completion_bias_exclusion: tuple[str, ...] | None = None
    completion_bias_exclusion_first_token_only: bool | None = None
    contextual_control_threshold: float | None = None
    control_log_additive: bool | None = None

    representation: EmbedRepresentation = EmbedRepresentation.DOCUMENT
    compress_to_size: int | None = None
    normalize: bool | None = None

    @classmethod
    def creative(cls) -> AlephAlphaOptions:
        """Return defaults tuned for more varied generations."""
        return cls(temperature=0.9)

    def model_config(self) -> ModelConfig:
        """Return the generic tunables as a :class:`ModelConfig`."""
        return ModelConfig(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_k=self.top_k,
            top_p=self.top_p,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            stop_sequences=self.stop_sequences,
            n=self.n,
            stream=False,
        )

    def vendor_fields(self) -> dict[str, object]:
        """Return the vendor-specific completion fields that are set."""
        fields = {
            "hosting": self.hosting,
            "minimum_tokens": self.minimum_tokens,
            "echo": self.echo,
            "sequence_penalty": self.sequence_penalty,
            "sequence_penalty_min_length": self.sequence_penalty_min_length,
            "repetition_penalties_include_completion": (
                self.repetition_penalties_include_completion
            ),
            "use_multiplicative_presence_penalty": (
                self.use_multiplicative_presence_penalty
            ),
            "use_multiplicative_frequency_penalty": (
                self.use_multiplicative_frequency_penalty
            ),
            "use_multiplicative_sequence_penalty": (
                self.use_multiplicative_sequence_penalty
            ),
            "penalty_bias": self.penalty_bias,
            "penalty_exceptions": _as_list(self.penalty_exceptions),
            "penalty_exceptions_include_stop_sequences": (
                self.penalty_exceptions_include_stop_sequences
            ),
            "best_of": self.best_of,
            "logit_bias": dict(self.logit_bias) if self.logit_bias else None,
            "log_probs": self.log_probs,
            "tokens": self.tokens,
            "raw_completion": self.raw_completion,
            "disable_optimizations": self.disable_optimizations,
            "completion_bias_inclusion": _as_list(self.completion_bias_inclusion),
            "completion_bias_inclusion_first_token_only": (
                self.completion_bias_inclusion_first_token_only
            ),
            "completion_bias_exclusion": _as_list(self.completion_bias_exclusion),
            "completion_bias_exclusion_first_token_only": (
                self.completion_bias_exclusion_first_token_only
            ),
            "contextual_control_threshold": self.contextual_control_threshold,
            "control_log_additive": self.control_log_additive,
        }
        return {key: value for key, value in fields.items() if value is not None}


def _as_list(values: tuple[str, ...] | None) -> list[str] | None:
    return list(values) if values is not None else None


def render_prompt(request: ChatRequest) -> str:
    """Render a chat transcript as one completion prompt.

    Each turn becomes ``"<Role>: <content>"``, turns are separated by a blank
    line and the prompt ends with an open ``Assistant:`` turn.

    Raises
    ------
    ValidationError
        If the conversation contains function turns.
    """
    lines: list[str] = []
    for message in request.messages:
        label = _ROLE_LABELS.get(message.role)
        if label is None:
            msg = f"{_NAME} does not support {message.role} messages."
            raise ValidationError(msg)
        lines.append(f"{label}: {message.content or ''}")
    lines.append("Assistant:")
    return "\n\n".join(lines)


def build_chat_request(
    request: ChatRequest,
    config: ModelConfig,
    *,
    model: str,
    options: AlephAlphaOptions | None = None,
) -> dict[str, object]:
    """Build a ``complete`` request body.

    Parameters
    ----------
    request : ChatRequest
        Normalized chat request without function calling.
    config : ModelConfig
        Effective generic tunables.
    model : str
        Model name sent on the wire.
    options : AlephAlphaOptions | None, optional
        Source of the vendor-specific fields.

    Returns
    -------
    dict[str, object]
        JSON-serializable request body.
    """
    if request.functions:
        msg = f"{_NAME} does not support function calling."
        raise ValidationError(msg)
    settings = options or AlephAlphaOptions()
    body: dict[str, object] = {
        "model": model,
        "prompt": render_prompt(request),
    }
    generic = {
        "maximum_tokens": config.max_tokens,
        "temperature": config.temperature,
        "top_k": config.top_k,
        "top_p": config.top_p,
        "presence_penalty": config.presence_penalty,
        "frequency_penalty": config.frequency_penalty,
        "n": config.n,
    }
    body.update({key: value for key, value in generic.items() if value is not None})
    if config.stop_sequences:
        body["stop_sequences"] = list(config.stop_sequences)
    body.update(settings.vendor_fields())
    return body


def _finish_reason(value: object, context: str) -> FinishReason:
    if not isinstance(value, str) or value not in _FINISH_REASONS:
        msg = f"Invalid {context}: unknown finish_reason {value!r}."
        raise ResponseShapeError(msg)
    return _FINISH_REASONS[value]


def _parse_usage(
    body: JsonMapping,
    context: str,
    *,
    completion_field: str | None,
) -> TokenUsage | None:
    completion = body.get(completion_field) if completion_field else None
    return build_token_usage(
        body.get("num_tokens_prompt_total"),
        completion,
        context=context,
    )


def parse_chat_response(
    payload: object,
    *,
    session_id: str | None = None,
) -> ChatResponse:
    """Validate and normalize a ``complete`` response body.

    Completions keep their order; each result id is its position.
    """
    context = "AlephAlpha completion payload"
    body = require_mapping(payload, context)
    completions = require_list(body, "completions", context)
    if not completions:
        msg = f"Invalid {context}: completions must not be empty."
        raise ResponseShapeError(msg)

    results: list[ChatResponseResult] = []
    for position, raw_completion in enumerate(completions):
        completion = require_mapping(raw_completion, context)
        results.append(
            ChatResponseResult(
                id=str(position),
                content=require_str(completion, "completion", context),
                finish_reason=_finish_reason(
                    completion.get("finish_reason"), context
                ),
            )
        )
    return ChatResponse(
        results=tuple(results),
        session_id=session_id,
        model_usage=_parse_usage(
            body, context, completion_field="num_tokens_generated"
        ),
    )


def validate_embed_texts(texts: cabc.Sequence[str]) -> str:
    """Return the single text to embed.

    Raises
    ------
    ValidationError
        If there is not exactly one text, or it exceeds
        :data:`MAX_EMBED_CHARS` characters. Texts are never truncated.
    """
    if not texts:
        msg = f"{_NAME} embeddings require a text."
        raise ValidationError(msg)
    if len(texts) > MAX_EMBED_TEXTS:
        msg = f"{_NAME} limits embeddings input to {MAX_EMBED_TEXTS} string."
        raise ValidationError(msg)
    text = texts[0]
    if len(text) > MAX_EMBED_CHARS:
        msg = f"{_NAME} limits embeddings input to {MAX_EMBED_CHARS} characters."
        raise ValidationError(msg)
    return text


def build_embed_request(
    texts: cabc.Sequence[str],
    *,
    model: str,
    options: AlephAlphaOptions | None = None,
) -> dict[str, object]:
    """Build a ``semantic_embed`` request body after validating the input."""
    settings = options or AlephAlphaOptions()
    body: dict[str, object] = {
        "model": model,
        "prompt": validate_embed_texts(texts),
        "representation": str(settings.representation),
    }
    optional_fields = {
        "hosting": settings.hosting,
        "compress_to_size": settings.compress_to_size,
        "normalize": settings.normalize,
        "contextual_control_threshold": settings.contextual_control_threshold,
        "control_log_additive": settings.control_log_additive,
    }
    body.update(
        {key: value for key, value in optional_fields.items() if value is not None}
    )
    return body


def parse_embed_response(
    payload: object,
    *,
    session_id: str | None = None,
) -> EmbedResponse:
    """Validate a ``semantic_embed`` response carrying one vector."""
    context = "AlephAlpha embedding payload"
    body = require_mapping(payload, context)
    vector = require_vector(require_field(body, "embedding", context), context)
    return EmbedResponse(
        embeddings=(vector,),
        session_id=session_id,
        model_usage=_parse_usage(body, context, completion_field=None),
    )


class AlephAlphaService:
    """Aleph Alpha backend implementing :class:`~polyllm.ports.AIService`.

    Parameters
    ----------
    api_key : str
        Aleph Alpha API token. Must be non-empty.
    options : AlephAlphaOptions | None, optional
        Model selection, generic defaults and vendor-specific tunables.
    api_url : str, optional
        Base URL of the Aleph Alpha API.
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
        options: AlephAlphaOptions | None = None,
        *,
        api_url: str = ALEPH_ALPHA_API_URL,
        service_options: ServiceOptions | None = None,
    ) -> None:
        if not api_key:
            msg = "AlephAlpha API key not set."
            raise ConfigError(msg)
        self._api_key = api_key
        self._api_url = api_url
        self._settings = options or AlephAlphaOptions()
        self._core = AdapterCore(
            name=_NAME,
            catalog=ALEPH_ALPHA_MODELS,
            model=self._settings.model,
            embed_model=self._settings.embed_model,
            embed_catalog=ALEPH_ALPHA_EMBED_MODELS,
            default_config=self._settings.model_config(),
            features=Features(functions=False, streaming=False),
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
    ) -> ChatResponse:
        """Complete the rendered transcript.

        Raises
        ------
        ValidationError
            If the request uses function calling or asks for streaming.
        """
        self._core.validate_chat(request)
        config = self._core.effective_config(request.model_config)
        self._core.wants_stream(config, options)
        model = self._core.chat_model(request.model_info)
        body = build_chat_request(request, config, model=model, options=self._settings)
        self._core.log_dropped(config, _UNSUPPORTED_SETTINGS)
        endpoint = self._endpoint("complete")
        session_id = options.session_id if options is not None else None

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
        """Embed a single text of at most 512 characters."""
        model = self._core.embed_model(request.embed_model_info)
        body = build_embed_request(request.texts, model=model, options=self._settings)
        endpoint = self._endpoint("semantic_embed")
        session_id = options.session_id if options is not None else None

        async def call(service_options: ServiceOptions) -> EmbedResponse:
            self._core.log_request(service_options, endpoint, body)
            transport = self._core.transport(service_options)
            payload = await transport.perform_request(endpoint, body)
            self._core.log_response(service_options, payload)
            return parse_embed_response(payload, session_id=session_id)

        return await self._core.run("embed", model, call, options)


__all__ = [
    "ALEPH_ALPHA_API_URL",
    "ALEPH_ALPHA_EMBED_MODELS",
    "ALEPH_ALPHA_MODELS",
    "MAX_EMBED_CHARS",
    "MAX_EMBED_TEXTS",
    "AlephAlphaEmbedModel",
    "AlephAlphaModel",
    "AlephAlphaOptions",
    "AlephAlphaService",
    "EmbedRepresentation",
    "Hosting",
    "build_chat_request",
    "build_embed_request",
    "parse_chat_response",
    "parse_embed_response",
    "render_prompt",
    "validate_embed_texts",
]
