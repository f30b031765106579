"""Token accounting for conversation history.

All costs are recomputed from current content on every call. Nothing is
cached on the turns themselves, so any mutation of the history is reflected
immediately.
"""

import json
from functools import lru_cache
from typing import Any

import tiktoken
from loguru import logger

from threadkeeper.history.types import (
    FunctionCallPart,
    FunctionResponsePart,
    History,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
    part_to_dict,
)

ENCODING_NAME = "cl100k_base"

# Flat price for any binary payload, regardless of its size (image tokens
# for a typical chat screenshot on Gemini 1.5 Pro).
INLINE_DATA_TOKENS = 1066


@lru_cache(maxsize=1)
def get_encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding(ENCODING_NAME)


def count_tokens(text: str) -> int:
    """Count BPE tokens in a string. A failing tokenizer counts as zero."""
    if not text:
        return 0
    try:
        return len(get_encoding().encode(text, disallowed_special=()))
    except Exception as e:
        logger.debug(f"Tokenizer unavailable: {e}")
        return 0


def _serialize(part: Part) -> str:
    payload = part_to_dict(part)
    return json.dumps(next(iter(payload.values())), separators=(",", ":"), ensure_ascii=False)


def cost_of_part(part: Part) -> int:
    """Token cost of a single part. Unknown shapes cost nothing."""
    try:
        if isinstance(part, TextPart):
            return count_tokens(part.text)
        if isinstance(part, InlineDataPart):
            return INLINE_DATA_TOKENS
        if isinstance(part, (FunctionCallPart, FunctionResponsePart)):
            return count_tokens(_serialize(part))
    except Exception as e:
        logger.debug(f"Token count failed for {type(part).__name__}: {e}")
    return 0


def cost_of_turn(turn: Turn) -> int:
    """Role label plus every part."""
    return count_tokens(turn.role or "") + sum(cost_of_part(p) for p in turn.parts)


def cost_of_history(history: History) -> int:
    return sum(cost_of_turn(t) for t in history)


def cost_of_tools(tools: list[dict[str, Any]]) -> int:
    """Estimate tokens for rendered tool definitions."""
    return count_tokens(json.dumps(tools))
