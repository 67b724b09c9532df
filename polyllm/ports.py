"""Port contracts for backend adapters and their collaborators.

This module defines the service contract every backend adapter satisfies,
the transport primitive adapters call through, and the rate-limiter hook
signature.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    from polyllm.domain import (
        CallOptions,
        ChatRequest,
        ChatResponse,
        EmbedRequest,
        EmbedResponse,
        Features,
        JsonMapping,
        ModelConfig,
        ModelInfo,
        ProviderModelInfo,
        ServiceOptions,
    )
    from polyllm.transport import Endpoint

#: Gate wrapping call start: receives a zero-argument coroutine factory.
type RateLimiter = cabc.Callable[
    [cabc.Callable[[], cabc.Awaitable[typ.Any]]], cabc.Awaitable[typ.Any]
]


@dc.dataclass(frozen=True, slots=True)
class ServerSentEvent:
    """One event read from a ``text/event-stream`` response."""

    data: str
    event: str | None = None


class Transport(typ.Protocol):
    """Transport primitive performing authenticated JSON calls."""

    async def perform_request(
        self,
        endpoint: Endpoint,
        body: JsonMapping,
    ) -> JsonMapping:
        """Send ``body`` to ``endpoint`` and return the decoded JSON response.

        Parameters
        ----------
        endpoint : Endpoint
            Target URL, credential and headers.
        body : JsonMapping
            Native request body.

        Returns
        -------
        JsonMapping
            Decoded response body.

        Raises
        ------
        TransportError
            On network failure, non-2xx status or a body that is not a JSON
            object.
        """
        ...

    def stream_request(
        self,
        endpoint: Endpoint,
        body: JsonMapping,
    ) -> cabc.AsyncGenerator[ServerSentEvent, None]:
        """Send ``body`` and iterate over the server-sent events returned.

        The request is issued on first iteration; closing the iterator
        closes the underlying connection.
        """
        ...


class AIService(typ.Protocol):
    """Service contract implemented by every backend adapter.

    Methods
    -------
    get_name()
        Stable backend identifier.
    get_model_info()
        Selected generation model tagged with the provider name.
    get_embed_model_info()
        Selected embedding model, or ``None`` without embed capability.
    get_model_config()
        Effective default tunables for the selected model.
    get_features()
        Capability flags for function calling and streaming.
    chat(request, options)
        Perform a chat completion, optionally streamed.
    embed(request, options)
        Embed a list of texts.
    set_options(options)
        Replace the adapter options for subsequent calls.
    """

    def get_name(self) -> str:
        """Return the backend identifier."""
        ...

    def get_model_info(self) -> ProviderModelInfo:
        """Return the selected generation model tagged with the provider."""
        ...

    def get_embed_model_info(self) -> ModelInfo | None:
        """Return the selected embedding model, if the backend has one."""
        ...

    def get_model_config(self) -> ModelConfig:
        """Return the default tunables for the selected model."""
        ...

    def get_features(self) -> Features:
        """Return capability flags for this backend."""
        ...

    async def chat(
        self,
        request: ChatRequest,
        options: CallOptions | None = None,
    ) -> ChatResponse | cabc.AsyncIterator[ChatResponse]:
        """Perform a chat completion.

        Parameters
        ----------
        request : ChatRequest
            Normalized chat request.
        options : CallOptions | None, optional
            Per-call options such as streaming and session identifiers.

        Returns
        -------
        ChatResponse | AsyncIterator[ChatResponse]
            A single response, or a finite single-pass stream of partial
            responses when streaming was requested. The final streamed
            element carries the terminal finish reason.

        Raises
        ------
        ConfigError
            If the backend credential is missing.
        ValidationError
            If the request violates a backend constraint.
        TransportError
            If the remote call fails.
        """
        ...

    async def embed(
        self,
        request: EmbedRequest,
        options: CallOptions | None = None,
    ) -> EmbedResponse:
        """Embed texts, returning vectors aligned with the inputs."""
        ...

    def set_options(self, options: ServiceOptions) -> None:
        """Replace the options bundle for calls started afterwards."""
        ...


__all__ = ["AIService", "RateLimiter", "ServerSentEvent", "Transport"]
