"""Construct a backend service by provider name.

Credentials and base URLs are taken from keyword arguments, falling back to
the process environment:

- ``OPENAI_API_KEY`` and ``OPENAI_BASE_URL`` for :data:`Provider.OPENAI`;
- ``ANTHROPIC_API_KEY`` for :data:`Provider.ANTHROPIC`;
- ``ALEPH_ALPHA_API_KEY`` for :data:`Provider.ALEPH_ALPHA`.

Examples
--------
>>> service = create_service("openai", api_key="sk-test")
>>> service.get_name()
'OpenAI'
"""

from __future__ import annotations

import enum
import os
import typing as typ

from polyllm.adapters.alephalpha import (
    ALEPH_ALPHA_API_URL,
    AlephAlphaOptions,
    AlephAlphaService,
)
from polyllm.adapters.anthropic import (
    ANTHROPIC_API_URL,
    AnthropicOptions,
    AnthropicService,
)
from polyllm.adapters.openai import OPENAI_API_URL, OpenAIOptions, OpenAIService
from polyllm.errors import ConfigError
from polyllm.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from polyllm.domain import ServiceOptions
    from polyllm.ports import AIService

logger = get_logger(__name__)

OPENAI_API_KEY_ENV = "OPENAI_API_KEY"
OPENAI_BASE_URL_ENV = "OPENAI_BASE_URL"
ANTHROPIC_API_KEY_ENV = "ANTHROPIC_API_KEY"
ALEPH_ALPHA_API_KEY_ENV = "ALEPH_ALPHA_API_KEY"

type AdapterOptions = OpenAIOptions | AnthropicOptions | AlephAlphaOptions


class Provider(enum.StrEnum):
    """Supported backends."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    ALEPH_ALPHA = "alephalpha"


_ALIASES: dict[str, Provider] = {
    "aleph-alpha": Provider.ALEPH_ALPHA,
    "aleph_alpha": Provider.ALEPH_ALPHA,
    "claude": Provider.ANTHROPIC,
}


def parse_provider(value: str | Provider) -> Provider:
    """Return the provider named by ``value``, case-insensitively.

    Raises
    ------
    ConfigError
        If ``value`` names no supported provider.
    """
    if isinstance(value, Provider):
        return value
    normalised = value.strip().lower()
    if normalised in _ALIASES:
        return _ALIASES[normalised]
    try:
        return Provider(normalised)
    except ValueError as exc:
        valid = ", ".join(provider.value for provider in Provider)
        msg = f"Unknown provider {value!r}; expected one of: {valid}."
        raise ConfigError(msg) from exc


def _check_options(
    provider: Provider,
    options: AdapterOptions | None,
    expected: type[AdapterOptions],
) -> None:
    if options is not None and not isinstance(options, expected):
        msg = (
            f"{provider.value} expects {expected.__name__}, "
            f"got {type(options).__name__}."
        )
        raise ConfigError(msg)


def create_service(
    provider: str | Provider,
    *,
    api_key: str | None = None,
    api_url: str | None = None,
    options: AdapterOptions | None = None,
    service_options: ServiceOptions | None = None,
    environ: cabc.Mapping[str, str] | None = None,
) -> AIService:
    """Create the adapter for ``provider``.

    Parameters
    ----------
    provider : str | Provider
        Backend name, for example ``"openai"``.
    api_key : str | None, optional
        Credential; read from the provider's environment variable when
        omitted.
    api_url : str | None, optional
        Base URL override. For OpenAI, ``OPENAI_BASE_URL`` is consulted
        when omitted.
    options : AdapterOptions | None, optional
        Backend-specific options; must match the provider.
    service_options : ServiceOptions | None, optional
        Debug, rate-limiter, transport and tracer hooks.
    environ : Mapping[str, str] | None, optional
        Environment to read from instead of :data:`os.environ`.

    Returns
    -------
    AIService
        A ready-to-use backend service.

    Raises
    ------
    ConfigError
        If the provider is unknown, the options do not match it, or no
        credential is available.
    """
    env = os.environ if environ is None else environ
    selected = parse_provider(provider)
    log_debug(logger, "Creating %s service.", selected.value)

    match selected:
        case Provider.OPENAI:
            _check_options(selected, options, OpenAIOptions)
            return OpenAIService(
                api_key if api_key is not None else env.get(OPENAI_API_KEY_ENV, ""),
                typ.cast("OpenAIOptions | None", options),
                api_url=api_url or env.get(OPENAI_BASE_URL_ENV) or OPENAI_API_URL,
                service_options=service_options,
            )
        case Provider.ANTHROPIC:
            _check_options(selected, options, AnthropicOptions)
            return AnthropicService(
                api_key
                if api_key is not None
                else env.get(ANTHROPIC_API_KEY_ENV, ""),
                typ.cast("AnthropicOptions | None", options),
                api_url=api_url or ANTHROPIC_API_URL,
                service_options=service_options,
            )
        case Provider.ALEPH_ALPHA:
            _check_options(selected, options, AlephAlphaOptions)
            return AlephAlphaService(
                api_key
                if api_key is not None
                else env.get(ALEPH_ALPHA_API_KEY_ENV, ""),
                typ.cast("AlephAlphaOptions | None", options),
                api_url=api_url or ALEPH_ALPHA_API_URL,
                service_options=service_options,
            )


__all__ = [
    "ALEPH_ALPHA_API_KEY_ENV",
    "ANTHROPIC_API_KEY_ENV",
    "OPENAI_API_KEY_ENV",
    "OPENAI_BASE_URL_ENV",
    "AdapterOptions",
    "Provider",
    "create_service",
    "parse_provider",
]
