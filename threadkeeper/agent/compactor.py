"""Token-budget compaction engine for conversation history."""

import copy
import uuid
from dataclasses import dataclass, replace
from typing import Any, Protocol

from loguru import logger

from threadkeeper.agent.tokens import cost_of_turn
from threadkeeper.config.schema import CompactionSettings
from threadkeeper.history.types import (
    FunctionCallPart,
    FunctionResponsePart,
    History,
    TextPart,
    Turn,
)

ACTION_NONE = "none"
ACTION_TRUNCATED = "truncated"
ACTION_COMPRESSED = "compressed"

TRUNCATION_MARKER = "[truncated to {limit} chars. Run command again for full content]"


@dataclass
class CompactionResult:
    """Outcome of one compaction decision."""
    action: str
    history: History
    tag: str | None
    tokens_before: int
    tokens_after: int

    @property
    def changed(self) -> bool:
        return self.action != ACTION_NONE


class CompressionStrategy(Protocol):
    """Lossy rewrite applied when the history sits between the two thresholds."""

    async def compress(self, history: History, settings: CompactionSettings) -> History:
        ...


class NoCompression:
    """Default strategy: leave the history as it is."""

    async def compress(self, history: History, settings: CompactionSettings) -> History:
        return history


def new_tag() -> str:
    return str(uuid.uuid4())


def compress_turn(turn: Turn, char_limit: int) -> None:
    """Shorten long string fields of a turn in place.

    Function responses and call arguments have each over-long string value
    cut down; over-long text parts are cut the same way. Values shorter than
    the limit plus the marker are left alone.
    """
    marker = TRUNCATION_MARKER.format(limit=char_limit)
    threshold = char_limit + len(marker)

    def _shorten(mapping: dict[str, Any]) -> None:
        for key, value in mapping.items():
            if isinstance(value, str) and len(value) > threshold:
                mapping[key] = marker + value[:char_limit]

    for part in turn.parts:
        if isinstance(part, FunctionResponsePart):
            _shorten(part.response)
        elif isinstance(part, FunctionCallPart):
            _shorten(part.args)
        elif isinstance(part, TextPart) and len(part.text) > threshold:
            part.text = marker + part.text[:char_limit]


def pair_tool_parts(history: History) -> list[tuple[tuple[int, int], tuple[int, int] | None]]:
    """Match every function call to its response.

    Returns ``(call_position, response_position)`` pairs, positions being
    ``(turn_index, part_index)``. A response pairs with the nearest preceding
    unmatched call carrying the same id; calls never answered get ``None``.
    """
    open_calls: dict[str, list[tuple[int, int]]] = {}
    pairs: dict[tuple[int, int], tuple[int, int] | None] = {}

    for ti, turn in enumerate(history):
        for pi, part in enumerate(turn.parts):
            if isinstance(part, FunctionCallPart):
                open_calls.setdefault(part.id, []).append((ti, pi))
                pairs[(ti, pi)] = None
            elif isinstance(part, FunctionResponsePart):
                pending = open_calls.get(part.id)
                if pending:
                    pairs[pending.pop()] = (ti, pi)

    return list(pairs.items())


class Compactor:
    """Keeps a history within its token budget.

    Below ``compress_after`` nothing happens. Above ``truncate_after`` the
    middle of the history is dropped: the oldest turns (task setup) and the
    newest turns survive, and turns at the edge of the kept tail are
    compressed to squeeze them in. In between, the configured
    :class:`CompressionStrategy` runs.

    Not reentrant: callers serialize compaction against any other mutation
    of the same history.
    """

    def __init__(
        self,
        settings: CompactionSettings,
        strategy: CompressionStrategy | None = None,
    ):
        self.settings = settings
        self.strategy = strategy or NoCompression()

    def should_compact(self, history: History) -> bool:
        """Check if the history exceeds the compression threshold."""
        return sum(cost_of_turn(t) for t in history) > self.settings.compress_after

    async def compact(self, history: History, tag: str | None) -> CompactionResult:
        """Apply the budget to *history* and return the (possibly new) history and tag."""
        costs = [cost_of_turn(t) for t in history]
        total = sum(costs)

        if total <= self.settings.compress_after:
            return CompactionResult(ACTION_NONE, history, tag, total, total)

        if total > self.settings.truncate_after:
            if self.settings.truncate_new_tag or not tag:
                tag = new_tag()
            kept = self._truncate(history, costs)
            after = sum(cost_of_turn(t) for t in kept)
            logger.info(
                f"History truncated: {len(history)} -> {len(kept)} turns, "
                f"{total} -> {after} tokens (tag {tag})"
            )
            return CompactionResult(ACTION_TRUNCATED, kept, tag, total, after)

        if self.settings.compress_new_tag:
            tag = new_tag()
        compressed = await self.strategy.compress(history, self.settings)
        after = sum(cost_of_turn(t) for t in compressed)
        if after != total:
            logger.info(f"History compressed: {total} -> {after} tokens")
        return CompactionResult(ACTION_COMPRESSED, compressed, tag, total, after)

    def _truncate(self, history: History, costs: list[int]) -> History:
        s = self.settings
        target = s.target_tokens

        # Oldest turns carry the task setup. At least the first exchange is
        # always kept even when it alone exceeds the minimum.
        start: list[int] = []
        kept_at_start = 0
        for i, tokens in enumerate(costs):
            if kept_at_start + tokens > s.min_starting_tokens and len(start) > 1:
                break
            start.append(i)
            kept_at_start += tokens
            if kept_at_start >= s.min_starting_tokens:
                break

        budget = target - kept_at_start
        budget_compressed = budget + s.compressed_allowance

        end: list[Turn] = []
        end_indices: list[int] = []
        kept_at_end = 0
        for i in range(len(history) - 1, len(start) - 1, -1):
            if kept_at_end + costs[i] <= budget:
                end.insert(0, history[i])
                end_indices.insert(0, i)
                kept_at_end += costs[i]
                continue

            candidate = copy.deepcopy(history[i])
            compress_turn(candidate, s.char_limit)
            tokens = cost_of_turn(candidate)
            if kept_at_end + tokens > budget_compressed:
                break
            end.insert(0, candidate)
            end_indices.insert(0, i)
            kept_at_end += tokens

        kept_turns = [history[i] for i in start] + end
        kept_indices = start + end_indices
        return self._repair_pairing(history, kept_indices, kept_turns)

    @staticmethod
    def _repair_pairing(
        history: History, kept_indices: list[int], kept_turns: list[Turn],
    ) -> History:
        """Drop tool parts whose partner fell into the discarded middle.

        Calls that never had a response anywhere in the history are left
        alone; only orphans created by the truncation are removed. Turns
        emptied by the removal are dropped.
        """
        kept = set(kept_indices)
        drop: set[tuple[int, int]] = set()
        for call_pos, response_pos in pair_tool_parts(history):
            if response_pos is None:
                continue
            call_kept = call_pos[0] in kept
            response_kept = response_pos[0] in kept
            if call_kept and not response_kept:
                drop.add(call_pos)
            elif response_kept and not call_kept:
                drop.add(response_pos)

        if not drop:
            return kept_turns

        logger.debug(f"Removing {len(drop)} orphaned tool part(s) after truncation")
        result: History = []
        for index, turn in zip(kept_indices, kept_turns):
            parts = [p for pi, p in enumerate(turn.parts) if (index, pi) not in drop]
            if len(parts) == len(turn.parts):
                result.append(turn)
            elif parts:
                result.append(replace(turn, parts=parts))
        return result
