"""LiteLLM provider implementation for multi-provider support."""

from typing import Any, AsyncIterator

import litellm
from litellm import acompletion
from loguru import logger

from threadkeeper.config.schema import GenerationConfig
from threadkeeper.history.types import ROLE_MODEL, History, TextPart, Turn
from threadkeeper.providers.base import LLMProvider, LLMResponse
from threadkeeper.providers.openai_adapter import (
    STATE_IDLE,
    StreamAccumulator,
    finish_reason_of,
    from_chat_completion,
    to_chat_request,
    usage_of,
)
from threadkeeper.providers.schema import FunctionDeclaration


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Every backend is addressed through the chat-completion convention, so
    the same adapter renders requests for OpenAI, Gemini, Anthropic or any
    OpenAI-compatible server.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "openai/gpt-4o-mini",
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

    def _build_kwargs(
        self,
        history: History,
        tools: list[FunctionDeclaration] | None,
        model: str | None,
        config: GenerationConfig | None,
    ) -> dict[str, Any]:
        kwargs = to_chat_request(history, model or self.default_model, config, tools)

        # litellm takes the reasoning hint as a flat parameter
        reasoning = kwargs.pop("reasoning", None)
        if reasoning:
            kwargs["reasoning_effort"] = reasoning["effort"]

        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        logger.debug(
            f"Chat request to {kwargs['model']}: {len(kwargs['messages'])} messages, "
            f"{len(kwargs.get('tools', []))} tools"
        )
        return kwargs

    async def chat(
        self,
        history: History,
        tools: list[FunctionDeclaration] | None = None,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            history: Canonical conversation history.
            tools: Optional tool declarations.
            model: Model identifier (e.g., 'openai/gpt-4o').
            config: Sampling and output options.

        Returns:
            LLMResponse with the model turn.
        """
        kwargs = self._build_kwargs(history, tools, model, config)
        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            # Return error as content for graceful handling
            return _error_response(e)

        return LLMResponse(
            turn=from_chat_completion(response),
            finish_reason=finish_reason_of(response) or "stop",
            usage=usage_of(response),
        )

    async def chat_stream(
        self,
        history: History,
        tools: list[FunctionDeclaration] | None = None,
        model: str | None = None,
        config: GenerationConfig | None = None,
    ) -> AsyncIterator[LLMResponse]:
        """Stream a chat completion via LiteLLM, yielding delta responses."""
        kwargs = self._build_kwargs(history, tools, model, config)
        accumulator = StreamAccumulator()
        try:
            try:
                stream = await acompletion(**kwargs, stream=True)
                async for chunk in stream:
                    turn = accumulator.feed(chunk)
                    finish_reason = finish_reason_of(chunk)
                    if turn.parts or finish_reason:
                        yield LLMResponse(
                            turn=turn,
                            finish_reason=finish_reason,
                            usage=usage_of(chunk),
                        )
            except Exception as e:
                yield _error_response(e)
                return

            if accumulator.state != STATE_IDLE:
                logger.warning("Stream ended without a finish reason; dropping partial tool calls")
        finally:
            accumulator.reset()

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model


def _error_response(error: Exception) -> LLMResponse:
    logger.warning(f"LLM call failed: {error}")
    return LLMResponse(
        turn=Turn(role=ROLE_MODEL, parts=[TextPart(f"Error calling LLM: {error}")]),
        finish_reason="error",
    )
