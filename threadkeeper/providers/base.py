"""Base LLM provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

from threadkeeper.config.schema import GenerationConfig
from threadkeeper.history.types import FunctionCallPart, History, Turn
from threadkeeper.providers.schema import FunctionDeclaration


@dataclass
class LLMResponse:
    """Response (or one streamed delta) from an LLM provider."""
    turn: Turn
    finish_reason: str | None = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return self.turn.function_calls

    @property
    def has_function_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.turn.function_calls) > 0

    @property
    def is_error(self) -> bool:
        return self.finish_reason == "error"


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations render the canonical history into their wire format and
    parse the reply back into canonical turns. They never mutate the history
    they are given.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        history: History,
        tools: list[FunctionDeclaration] | None = None,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            history: Canonical conversation history.
            tools: Optional tool declarations.
            model: Model identifier (provider-specific).
            config: Sampling and output options.

        Returns:
            LLMResponse with the model turn.
        """
        pass

    @abstractmethod
    def chat_stream(
        self,
        history: History,
        tools: list[FunctionDeclaration] | None = None,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[LLMResponse]:
        """Stream a chat completion as delta responses.

        Text arrives incrementally; function calls arrive complete, on the
        delta that carries the finish reason.
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
        pass
