"""Language-model provider registry."""

from .providers import (
    AnthropicProvider,
    GeminiProvider,
    GroqProvider,
    Message,
    Provider,
    ProviderRegistry,
    ProviderReply,
    build_registry,
)

__all__ = [
    "AnthropicProvider",
    "GeminiProvider",
    "GroqProvider",
    "Message",
    "Provider",
    "ProviderRegistry",
    "ProviderReply",
    "build_registry",
]
