"""Provider-agnostic adapter layer for large language model APIs."""

from __future__ import annotations

from .adapters import (
    AlephAlphaOptions,
    AlephAlphaService,
    AnthropicOptions,
    AnthropicService,
    OpenAIOptions,
    OpenAIService,
)
from .domain import (
    CallOptions,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatResponseResult,
    EmbedRequest,
    EmbedResponse,
    Features,
    FinishReason,
    FunctionCall,
    FunctionCallMode,
    FunctionDeclaration,
    ModelConfig,
    ModelInfo,
    NamedFunctionCall,
    ProviderModelInfo,
    Role,
    ServiceOptions,
    TokenUsage,
)
from .errors import (
    ConfigError,
    LLMServiceError,
    ResponseShapeError,
    TransportError,
    ValidationError,
)
from .factory import Provider, create_service
from .ports import AIService, RateLimiter, ServerSentEvent, Transport
from .registry import ModelCatalog, estimate_cost
from .transport import Endpoint, HttpxTransport

__all__: list[str] = [
    "AIService",
    "AlephAlphaOptions",
    "AlephAlphaService",
    "AnthropicOptions",
    "AnthropicService",
    "CallOptions",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatResponseResult",
    "ConfigError",
    "EmbedRequest",
    "EmbedResponse",
    "Endpoint",
    "Features",
    "FinishReason",
    "FunctionCall",
    "FunctionCallMode",
    "FunctionDeclaration",
    "HttpxTransport",
    "LLMServiceError",
    "ModelCatalog",
    "ModelConfig",
    "ModelInfo",
    "NamedFunctionCall",
    "OpenAIOptions",
    "OpenAIService",
    "Provider",
    "ProviderModelInfo",
    "RateLimiter",
    "ResponseShapeError",
    "Role",
    "ServerSentEvent",
    "ServiceOptions",
    "TokenUsage",
    "Transport",
    "TransportError",
    "ValidationError",
    "create_service",
    "estimate_cost",
]
