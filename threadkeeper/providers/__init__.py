"""LLM providers and the chat-completion protocol adapter."""

from threadkeeper.providers.base import LLMProvider, LLMResponse
from threadkeeper.providers.schema import FunctionDeclaration

__all__ = ["FunctionDeclaration", "LLMProvider", "LLMResponse"]
