"""HTTP transport for backend adapters.

:class:`HttpxTransport` is the default implementation of the
:class:`~polyllm.ports.Transport` protocol. It performs authenticated JSON
POST requests and reads ``text/event-stream`` responses for streaming calls.
Retries are left to the caller or to a custom transport.
"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses as dc
import json
import typing as typ

import httpx

from polyllm.errors import TransportError
from polyllm.logging import get_logger, log_error
from polyllm.ports import ServerSentEvent

if typ.TYPE_CHECKING:
    from polyllm.domain import JsonMapping

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


@dc.dataclass(frozen=True, slots=True, kw_only=True)
class Endpoint:
    """Where and how to send one backend request.

    Attributes
    ----------
    backend : str
        Adapter name, used for error context.
    base_url : str
        Scheme and host, optionally with a path prefix.
    path : str
        Path of the operation relative to ``base_url``.
    credential : str
        API key.
    auth_header : str
        Header carrying the credential.
    auth_scheme : str
        Prefix placed before the credential, empty for raw keys.
    headers : tuple[tuple[str, str], ...]
        Additional headers such as API version pins.
    """

    backend: str
    base_url: str
    path: str
    credential: str
    auth_header: str = "Authorization"
    auth_scheme: str = "Bearer"
    headers: tuple[tuple[str, str], ...] = ()

    @property
    def url(self) -> str:
        """Return the fully qualified request URL."""
        return f"{self.base_url.rstrip('/')}/{self.path.lstrip('/')}"

    def build_headers(self, *, stream: bool = False) -> dict[str, str]:
        """Return the complete header set for a request."""
        credential = (
            f"{self.auth_scheme} {self.credential}"
            if self.auth_scheme
            else self.credential
        )
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
            self.auth_header: credential,
        }
        headers.update(self.headers)
        return headers


def _transport_error(
    endpoint: Endpoint,
    message: str,
    status_code: int | None = None,
) -> TransportError:
    return TransportError(
        message,
        backend=endpoint.backend,
        url=endpoint.url,
        status_code=status_code,
    )


def _decode_json_object(endpoint: Endpoint, content: bytes) -> JsonMapping:
    """Decode a response body that must be a JSON object."""
    try:
        payload = json.loads(content)
    except ValueError as exc:
        msg = "Response body is not valid JSON."
        raise _transport_error(endpoint, msg) from exc
    if not isinstance(payload, dict):
        msg = "Response body is not a JSON object."
        raise _transport_error(endpoint, msg)
    return typ.cast("JsonMapping", payload)


def _error_detail(content: bytes) -> str:
    """Extract a short failure description from an error body."""
    text = content.decode("utf-8", errors="replace").strip()
    return text[:500] if text else "empty response body"


async def parse_server_sent_events(
    lines: cabc.AsyncIterable[str],
) -> cabc.AsyncGenerator[ServerSentEvent, None]:
    """Group ``text/event-stream`` lines into events.

    Comment lines are skipped and multi-line ``data`` fields are joined with
    newlines, following the HTML living standard.
    """
    event: str | None = None
    data: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r")
        if not line:
            if data:
                yield ServerSentEvent(data="\n".join(data), event=event)
            event = None
            data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield ServerSentEvent(data="\n".join(data), event=event)


class HttpxTransport:
    """Transport backed by :class:`httpx.AsyncClient`.

    Parameters
    ----------
    client : httpx.AsyncClient | None, optional
        Shared client. When omitted a client is created per request and
        closed afterwards.
    timeout : float, optional
        Request timeout in seconds for per-request clients.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._timeout = timeout

    @contextlib.asynccontextmanager
    async def _client_scope(self) -> cabc.AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def perform_request(
        self,
        endpoint: Endpoint,
        body: JsonMapping,
    ) -> JsonMapping:
        """POST ``body`` as JSON and return the decoded JSON object."""
        async with self._client_scope() as client:
            try:
                response = await client.post(
                    endpoint.url,
                    headers=endpoint.build_headers(),
                    json=body,
                )
            except httpx.HTTPError as exc:
                log_error(
                    logger,
                    "%s request to %s failed: %s",
                    endpoint.backend,
                    endpoint.url,
                    exc,
                )
                msg = str(exc) or type(exc).__name__
                raise _transport_error(endpoint, msg) from exc

        if response.is_error:
            detail = _error_detail(response.content)
            log_error(
                logger,
                "%s request to %s returned HTTP %s",
                endpoint.backend,
                endpoint.url,
                response.status_code,
            )
            raise _transport_error(endpoint, detail, response.status_code)
        return _decode_json_object(endpoint, response.content)

    async def stream_request(
        self,
        endpoint: Endpoint,
        body: JsonMapping,
    ) -> cabc.AsyncGenerator[ServerSentEvent, None]:
        """POST ``body`` as JSON and yield server-sent events."""
        async with self._client_scope() as client:
            try:
                async with client.stream(
                    "POST",
                    endpoint.url,
                    headers=endpoint.build_headers(stream=True),
                    json=body,
                ) as response:
                    if response.is_error:
                        content = await response.aread()
                        log_error(
                            logger,
                            "%s stream to %s returned HTTP %s",
                            endpoint.backend,
                            endpoint.url,
                            response.status_code,
                        )
                        raise _transport_error(
                            endpoint, _error_detail(content), response.status_code
                        )
                    events = parse_server_sent_events(response.aiter_lines())
                    async with contextlib.aclosing(events):
                        async for event in events:
                            yield event
            except httpx.HTTPError as exc:
                log_error(
                    logger,
                    "%s stream to %s failed: %s",
                    endpoint.backend,
                    endpoint.url,
                    exc,
                )
                msg = str(exc) or type(exc).__name__
                raise _transport_error(endpoint, msg) from exc


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "Endpoint",
    "HttpxTransport",
    "parse_server_sent_events",
]
