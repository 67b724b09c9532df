"""Shared adapter behaviour composed into every backend service.

:class:`AdapterCore` holds the state every backend needs: the model catalog
and the selected models, the backend's default tunables, capability flags,
and the options bundle with its rate-limiter, tracer and transport hooks.
Backend services own one core each and delegate to it; they never subclass
it.

Examples
--------
>>> core = AdapterCore(
...     name="Example",
...     catalog=ModelCatalog((ModelInfo(name="fast-model", max_context_tokens=2048),)),
...     model="fast-model",
...     default_config=ModelConfig(max_tokens=4096),
...     features=Features(functions=False, streaming=False),
... )
>>> core.model_config().max_tokens
2048
"""

from __future__ import annotations

import contextlib
import dataclasses as dc
import json
import typing as typ

from opentelemetry.trace import SpanKind, Status, StatusCode

from polyllm.domain import (
    ChatResponse,
    EmbedResponse,
    ModelConfig,
    ProviderModelInfo,
    Role,
    ServiceOptions,
)
from polyllm.errors import ConfigError, ValidationError
from polyllm.logging import get_logger, log_debug, log_info
from polyllm.transport import HttpxTransport

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from opentelemetry.trace import Span, Tracer

    from polyllm.domain import (
        CallOptions,
        ChatRequest,
        Features,
        JsonMapping,
        ModelInfo,
        TokenUsage,
    )
    from polyllm.ports import Transport
    from polyllm.registry import ModelCatalog
    from polyllm.transport import Endpoint

logger = get_logger(__name__)


def _with_provider(info: ModelInfo, provider: str) -> ProviderModelInfo:
    fields = {field.name: getattr(info, field.name) for field in dc.fields(info)}
    fields["provider"] = provider
    return ProviderModelInfo(**fields)


def _usage_of(result: object) -> TokenUsage | None:
    if isinstance(result, (ChatResponse, EmbedResponse)):
        return result.model_usage
    return None


def _record_usage(span: Span | None, result: object) -> None:
    usage = _usage_of(result)
    if span is None or usage is None:
        return
    span.set_attribute("gen_ai.usage.input_tokens", usage.prompt_tokens)
    span.set_attribute("gen_ai.usage.output_tokens", usage.completion_tokens)


def _fail_span(span: Span | None, exc: Exception) -> None:
    if span is None:
        return
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))
    span.set_attribute("error.type", type(exc).__name__)


def _resolve_embed_model(
    name: str, catalog: ModelCatalog | None, model: str | None
) -> ModelInfo | None:
    if model is None:
        return None
    if catalog is None:
        msg = f"{name} has no embedding models; cannot select {model!r}."
        raise ConfigError(msg)
    return catalog.resolve(model)


class AdapterCore:
    """Reusable model-selection, configuration and call plumbing.

    Parameters
    ----------
    name : str
        Backend identifier reported by ``get_name``.
    catalog : ModelCatalog
        Generation models the backend supports.
    model : str
        Selected generation model name or alias.
    embed_model : str | None, optional
        Selected embedding model name or alias, ``None`` when the backend
        cannot embed.
    embed_catalog : ModelCatalog | None, optional
        Embedding models the backend supports.
    default_config : ModelConfig
        Backend defaults applied before translation.
    features : Features
        Capability flags.
    options : ServiceOptions | None, optional
        Initial options bundle.

    Raises
    ------
    ConfigError
        If ``model`` is not in ``catalog`` or ``embed_model`` is not in
        ``embed_catalog``.
    """

    def __init__(
        self,
        *,
        name: str,
        catalog: ModelCatalog,
        model: str,
        embed_model: str | None = None,
        embed_catalog: ModelCatalog | None = None,
        default_config: ModelConfig,
        features: Features,
        options: ServiceOptions | None = None,
    ) -> None:
        self._name = name
        self._catalog = catalog
        self._model = catalog.resolve(model)
        self._embed_model = _resolve_embed_model(name, embed_catalog, embed_model)
        self._default_config = default_config
        self._features = features
        self._options = options or ServiceOptions()
        self._default_transport: Transport | None = None

    @property
    def name(self) -> str:
        """Return the backend identifier."""
        return self._name

    @property
    def features(self) -> Features:
        """Return the backend capability flags."""
        return self._features

    @property
    def options(self) -> ServiceOptions:
        """Return the options bundle current at the time of the call."""
        return self._options

    def set_options(self, options: ServiceOptions) -> None:
        """Replace the options bundle for calls started afterwards."""
        self._options = options

    def model_info(self) -> ProviderModelInfo:
        """Return the selected generation model tagged with the backend."""
        return _with_provider(self._model, self._name)

    def embed_model_info(self) -> ModelInfo | None:
        """Return the selected embedding model, if any."""
        return self._embed_model

    def model_config(self) -> ModelConfig:
        """Return defaults with ``max_tokens`` capped at the model's limit."""
        config = self._default_config
        limit = self._model.max_context_tokens
        if limit is not None and config.max_tokens is not None:
            return dc.replace(config, max_tokens=min(config.max_tokens, limit))
        return config

    def effective_config(self, overrides: ModelConfig | None) -> ModelConfig:
        """Layer per-call overrides on top of the model defaults."""
        return self.model_config().merged_with(overrides)

    def chat_model(self, override: ProviderModelInfo | None = None) -> str:
        """Return the generation model name to send for one call."""
        return override.name if override is not None else self._model.name

    def embed_model(self, override: ProviderModelInfo | None = None) -> str:
        """Return the embedding model name to send for one call.

        Raises
        ------
        ValidationError
            If the backend has no embedding model and none was supplied.
        """
        if override is not None:
            return override.name
        if self._embed_model is None:
            msg = f"{self._name} does not support embeddings."
            raise ValidationError(msg)
        return self._embed_model.name

    def wants_stream(
        self,
        config: ModelConfig,
        call_options: CallOptions | None,
    ) -> bool:
        """Decide whether a call streams, rejecting unsupported streaming."""
        requested = (
            call_options.stream
            if call_options is not None and call_options.stream is not None
            else bool(config.stream)
        )
        if requested and not self._features.streaming:
            msg = f"{self._name} does not support streaming."
            raise ValidationError(msg)
        return requested

    def validate_chat(self, request: ChatRequest) -> None:
        """Reject function-calling input the backend cannot honour."""
        uses_functions = bool(request.functions) or any(
            message.role is Role.FUNCTION or message.function_calls
            for message in request.messages
        )
        if uses_functions and not self._features.functions:
            msg = f"{self._name} does not support function calling."
            raise ValidationError(msg)
        if request.function_call is not None and not request.functions:
            msg = "A function_call directive requires function declarations."
            raise ValidationError(msg)

    def transport(self, options: ServiceOptions) -> Transport:
        """Return the transport configured in ``options`` or the default."""
        if options.transport is not None:
            return options.transport
        if self._default_transport is None:
            self._default_transport = HttpxTransport()
        return self._default_transport

    def log_request(
        self,
        options: ServiceOptions,
        endpoint: Endpoint,
        body: JsonMapping,
    ) -> None:
        """Log a native request body when debugging is enabled."""
        if options.debug:
            log_info(
                logger,
                "%s request to %s: %s",
                self._name,
                endpoint.url,
                json.dumps(body, sort_keys=True),
            )

    def log_response(self, options: ServiceOptions, payload: JsonMapping) -> None:
        """Log a native response body when debugging is enabled."""
        if options.debug:
            log_info(
                logger,
                "%s response: %s",
                self._name,
                json.dumps(payload, sort_keys=True),
            )

    def log_dropped(self, config: ModelConfig, fields: cabc.Iterable[str]) -> None:
        """Log tunables that were set but are not supported by the backend."""
        dropped = [name for name in fields if getattr(config, name) is not None]
        if dropped:
            log_debug(
                logger,
                "%s ignores unsupported settings: %s",
                self._name,
                ", ".join(dropped),
            )

    def _span_attributes(
        self,
        operation: str,
        model: str | None,
        call_options: CallOptions | None,
    ) -> dict[str, str]:
        attributes = {
            "gen_ai.system": self._name,
            "gen_ai.operation.name": operation,
        }
        if model is not None:
            attributes["gen_ai.request.model"] = model
        if call_options is not None and call_options.session_id is not None:
            attributes["session.id"] = call_options.session_id
        if call_options is not None and call_options.trace_id is not None:
            attributes["polyllm.trace_id"] = call_options.trace_id
        return attributes

    @contextlib.contextmanager
    def _traced(
        self,
        tracer: Tracer | None,
        operation: str,
        attributes: dict[str, str],
    ) -> cabc.Iterator[Span | None]:
        if tracer is None:
            yield None
            return
        with tracer.start_as_current_span(
            f"{self._name}.{operation}",
            kind=SpanKind.CLIENT,
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                _fail_span(span, exc)
                raise
            span.set_status(Status(StatusCode.OK))

    async def run[T](
        self,
        operation: str,
        model: str | None,
        call: cabc.Callable[[ServiceOptions], cabc.Awaitable[T]],
        call_options: CallOptions | None = None,
    ) -> T:
        """Execute one backend call through the rate limiter and tracer.

        Parameters
        ----------
        operation : str
            Operation name, ``"chat"`` or ``"embed"``.
        model : str | None
            Model the call targets, for tracing.
        call : Callable[[ServiceOptions], Awaitable[T]]
            Backend call receiving the options snapshot taken at call start.
        call_options : CallOptions | None, optional
            Per-call options attached to the span.

        Returns
        -------
        T
            Whatever ``call`` returns.
        """
        options = self._options
        attributes = self._span_attributes(operation, model, call_options)

        async def invoke() -> T:
            with self._traced(options.tracer, operation, attributes) as span:
                result = await call(options)
                _record_usage(span, result)
                return result

        if options.rate_limiter is None:
            return await invoke()
        return typ.cast("T", await options.rate_limiter(invoke))

    async def run_stream[T](
        self,
        operation: str,
        model: str | None,
        open_stream: cabc.Callable[[ServiceOptions], cabc.AsyncIterator[T]],
        call_options: CallOptions | None = None,
    ) -> cabc.AsyncIterator[T]:
        """Pass the rate limiter and return a traced lazy stream.

        The gate is passed before this coroutine returns; the network
        request starts on first iteration of the returned iterator.
        """
        options = self._options
        attributes = self._span_attributes(operation, model, call_options)

        async def gate() -> cabc.AsyncIterator[T]:
            return self._traced_stream(options, operation, attributes, open_stream)

        if options.rate_limiter is None:
            return await gate()
        return typ.cast("cabc.AsyncIterator[T]", await options.rate_limiter(gate))

    async def _traced_stream[T](
        self,
        options: ServiceOptions,
        operation: str,
        attributes: dict[str, str],
        open_stream: cabc.Callable[[ServiceOptions], cabc.AsyncIterator[T]],
    ) -> cabc.AsyncIterator[T]:
        span = (
            options.tracer.start_span(
                f"{self._name}.{operation}",
                kind=SpanKind.CLIENT,
                attributes=attributes,
            )
            if options.tracer is not None
            else None
        )
        try:
            stream = open_stream(options)
            async with contextlib.aclosing(stream):
                async for item in stream:
                    _record_usage(span, item)
                    yield item
        except Exception as exc:
            _fail_span(span, exc)
            raise
        else:
            if span is not None:
                span.set_status(Status(StatusCode.OK))
        finally:
            if span is not None:
                span.end()


__all__ = ["AdapterCore"]
