"""Backend adapters translating the normalized contract to vendor APIs."""

from __future__ import annotations

from .alephalpha import AlephAlphaOptions, AlephAlphaService
from .anthropic import AnthropicOptions, AnthropicService
from .openai import OpenAIOptions, OpenAIService

__all__: list[str] = [
    "AlephAlphaOptions",
    "AlephAlphaService",
    "AnthropicOptions",
    "AnthropicService",
    "OpenAIOptions",
    "OpenAIService",
]
