"""Provider HTTP clients and the services that pair them with quota state."""

from bonsai.providers.base import CompletionResult, ProviderClient
from bonsai.providers.deepseek import DeepSeekClient, DeepSeekService
from bonsai.providers.google_ai import GoogleAIClient, GoogleAIService
from bonsai.providers.openrouter import OpenRouterClient, OpenRouterService
from bonsai.providers.vertex_ai import VertexAIClient, VertexAIService

__all__ = [
    "CompletionResult",
    "DeepSeekClient",
    "DeepSeekService",
    "GoogleAIClient",
    "GoogleAIService",
    "OpenRouterClient",
    "OpenRouterService",
    "ProviderClient",
    "VertexAIClient",
    "VertexAIService",
]
