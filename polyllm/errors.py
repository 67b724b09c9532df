"""Exception taxonomy shared by every backend adapter.

Adapters raise these errors directly to the caller. Nothing in the package
logs and swallows them; transport failures are re-raised with backend and
endpoint context so that a failed call can be traced to its origin.

Examples
--------
Distinguish caller mistakes from remote failures:

>>> try:
...     await service.embed(EmbedRequest(texts=("a", "b")))
... except ValidationError:
...     ...  # fix the request
... except TransportError as exc:
...     exc.status_code
"""

from __future__ import annotations


class LLMServiceError(Exception):
    """Base class for all errors raised by polyllm."""


class ConfigError(LLMServiceError):
    """Raised when an adapter is misconfigured.

    Missing credentials and unknown model identifiers are fatal to the adapter
    instance and are never retried.
    """


class ValidationError(LLMServiceError, ValueError):
    """Raised when a request violates a backend-specific constraint.

    Always raised before any network call is attempted.
    """


class TransportError(LLMServiceError):
    """Raised when the remote call fails or returns an unreadable body.

    Parameters
    ----------
    message : str
        Human-readable failure description.
    backend : str
        Name of the backend adapter that issued the request.
    url : str
        Fully qualified request URL.
    status_code : int | None, optional
        HTTP status code when the server responded.
    """

    def __init__(
        self,
        message: str,
        *,
        backend: str,
        url: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.url = url
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return f"{self.backend} {self.url}: {base}"
        return f"{self.backend} {self.url} ({self.status_code}): {base}"


class ResponseShapeError(LLMServiceError, ValueError):
    """Raised when a backend payload is missing fields the parser requires."""


__all__ = [
    "ConfigError",
    "LLMServiceError",
    "ResponseShapeError",
    "TransportError",
    "ValidationError",
]
