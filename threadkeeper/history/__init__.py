"""Canonical conversation data model."""

from threadkeeper.history.types import (
    ROLE_MODEL,
    ROLE_TOOL,
    ROLE_USER,
    FunctionCallPart,
    FunctionResponsePart,
    History,
    InlineDataPart,
    Part,
    TextPart,
    Turn,
    UnknownPart,
    history_from_json,
    history_to_json,
    turn_from_dict,
    turn_to_dict,
)

__all__ = [
    "ROLE_MODEL",
    "ROLE_TOOL",
    "ROLE_USER",
    "FunctionCallPart",
    "FunctionResponsePart",
    "History",
    "InlineDataPart",
    "Part",
    "TextPart",
    "Turn",
    "UnknownPart",
    "history_from_json",
    "history_to_json",
    "turn_from_dict",
    "turn_to_dict",
]
