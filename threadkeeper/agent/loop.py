"""Agent loop: the core processing engine."""

import asyncio
import json
from typing import Any, Protocol

from loguru import logger

from threadkeeper.agent.autosave import autosave
from threadkeeper.agent.compactor import CompressionStrategy
from threadkeeper.agent.hooks import HookError, execute_hook
from threadkeeper.agent.tokens import cost_of_history, cost_of_tools
from threadkeeper.config.schema import Config
from threadkeeper.history.types import (
    ROLE_MODEL,
    ROLE_TOOL,
    FunctionCallPart,
    FunctionResponsePart,
    Turn,
    user_turn,
)
from threadkeeper.providers.base import LLMProvider, LLMResponse
from threadkeeper.providers.openai_adapter import join_turns
from threadkeeper.providers.schema import FunctionDeclaration, to_chat_tool
from threadkeeper.session.checkpoint import CheckpointGateway
from threadkeeper.session.manager import ChatSession


class ToolExecutor(Protocol):
    """Runs the tools the model asks for."""

    def declarations(self) -> list[FunctionDeclaration]:
        ...

    async def execute(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        ...


class AgentLoop:
    """
    The agent loop is the core processing engine.

    For each user message it:
    1. Appends the user turn to the session history
    2. Calls the LLM with the full history
    3. Executes requested tool calls and appends their results
    4. Compacts and checkpoints the history after each tool round
    5. Repeats until the model answers without tool calls, then saves once more
    """

    def __init__(
        self,
        provider: LLMProvider,
        config: Config | None = None,
        session: ChatSession | None = None,
        tools: ToolExecutor | None = None,
        store: CheckpointGateway | None = None,
        strategy: CompressionStrategy | None = None,
    ):
        self.provider = provider
        self.config = config or Config()
        self.session = session or ChatSession()
        self.tools = tools
        self.store = store
        self.strategy = strategy
        self.model = self.config.provider.model or provider.get_default_model()

    async def process(self, message: str | Turn) -> Turn:
        """Run one user message to completion and return the final model turn."""
        turn = user_turn(message) if isinstance(message, str) else message

        async with self.session.lock:
            self.session.append(turn)
            final = await self._run()
            await self._save()
        return final

    async def _save(self) -> None:
        """Compact and checkpoint the history. Caller holds the session lock."""
        if self.store is not None:
            await autosave(self.session, self.config.autosave, self.store, self.strategy)

    async def _run(self) -> Turn:
        declarations = self.tools.declarations() if self.tools else None
        response: LLMResponse | None = None

        for _ in range(self.config.agent.max_tool_iterations):
            response = await self._request(declarations)
            if response.is_error:
                # Error text is shown to the caller but kept out of the history.
                return response.turn

            self.session.append(response.turn)
            if not response.has_function_calls or self.tools is None:
                return response.turn

            results = await asyncio.gather(
                *(self._execute(call) for call in response.function_calls)
            )
            self.session.append(Turn(role=ROLE_TOOL, parts=list(results)))
            # Keep the next request within budget.
            await self._save()

        logger.warning(
            f"Reached max tool iterations ({self.config.agent.max_tool_iterations})"
        )
        return response.turn if response else Turn(role=ROLE_MODEL, parts=[])

    async def _request(self, declarations: list[FunctionDeclaration] | None) -> LLMResponse:
        history = self.session.history
        generation = self.config.generation

        estimate = cost_of_history(history)
        if declarations:
            estimate += cost_of_tools([to_chat_tool(d) for d in declarations])
        if estimate > self.config.autosave.truncate_after:
            logger.warning(
                f"Request of ~{estimate} tokens exceeds the truncation threshold "
                f"({self.config.autosave.truncate_after})"
            )
        else:
            logger.debug(f"Request estimate: {estimate} tokens, {len(history)} turns")

        if not self.config.provider.stream:
            return await self.provider.chat(history, declarations, self.model, generation)

        deltas: list[Turn] = []
        finish_reason: str | None = None
        usage: dict[str, int] = {}
        async for delta in self.provider.chat_stream(history, declarations, self.model, generation):
            if delta.is_error:
                return delta
            deltas.append(delta.turn)
            finish_reason = delta.finish_reason or finish_reason
            usage = delta.usage or usage

        return LLMResponse(turn=join_turns(deltas), finish_reason=finish_reason, usage=usage)

    async def _execute(self, call: FunctionCallPart) -> FunctionResponsePart:
        args_str = json.dumps(call.args, ensure_ascii=False)
        logger.debug(f"Executing tool: {call.name} with arguments: {args_str[:200]}")
        try:
            result = await self.tools.execute(call.name, call.args)
        except Exception as e:
            logger.error(f"Tool {call.name} failed: {e}")
            result = {"error": str(e)}

        if not isinstance(result, dict):
            result = {"output": result}

        hook = self.config.hooks.tool_call
        if hook:
            try:
                await execute_hook(hook, {
                    "toolCall": {"id": call.id, "name": call.name, "args": call.args},
                    "toolResponse": result,
                })
            except HookError as e:
                logger.warning(f"Tool call hook failed: {e}")

        return FunctionResponsePart(id=call.id, name=call.name, response=result)
