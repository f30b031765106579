"""Canonical conversation data model.

A history is an ordered list of :class:`Turn` objects. Each turn carries a
role and an ordered list of parts, where every part is exactly one of the
variants below. The JSON boundary uses the camelCase, Gemini-style shape::

    {"role": "model", "parts": [{"functionCall": {"id": "c1", "name": "ls", "args": {}}}]}

Anything the codec does not recognise is kept verbatim as an
:class:`UnknownPart` so that legacy or forward-compatible checkpoints survive
a load/save cycle untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

ROLE_USER = "user"
ROLE_MODEL = "model"
ROLE_TOOL = "tool"


@dataclass
class TextPart:
    text: str


@dataclass
class InlineDataPart:
    """Binary payload (usually an image), base64-encoded."""
    mime_type: str
    data: str


@dataclass
class FunctionCallPart:
    """A tool invocation issued by the model."""
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class FunctionResponsePart:
    """A tool result, correlated to a :class:`FunctionCallPart` by ``id``."""
    id: str
    name: str
    response: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnknownPart:
    raw: dict[str, Any]


Part = Union[TextPart, InlineDataPart, FunctionCallPart, FunctionResponsePart, UnknownPart]


@dataclass
class Turn:
    """One role-tagged message in the conversation history."""
    role: str
    parts: list[Part] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [p for p in self.parts if isinstance(p, FunctionCallPart)]

    @property
    def function_responses(self) -> list[FunctionResponsePart]:
        return [p for p in self.parts if isinstance(p, FunctionResponsePart)]

    @property
    def inline_data(self) -> list[InlineDataPart]:
        return [p for p in self.parts if isinstance(p, InlineDataPart)]


History = list[Turn]


def user_turn(text: str) -> Turn:
    return Turn(role=ROLE_USER, parts=[TextPart(text)])


def model_turn(text: str) -> Turn:
    return Turn(role=ROLE_MODEL, parts=[TextPart(text)])


# ── JSON codec ──────────────────────────────────────────────────


def part_from_dict(data: Any) -> Part:
    """Decode one part. Unrecognised shapes become :class:`UnknownPart`."""
    if not isinstance(data, dict):
        return UnknownPart(raw={"value": data})

    if isinstance(data.get("text"), str):
        return TextPart(text=data["text"])

    inline = data.get("inlineData")
    if isinstance(inline, dict):
        return InlineDataPart(
            mime_type=str(inline.get("mimeType", "")),
            data=str(inline.get("data", "")),
        )

    call = data.get("functionCall")
    if isinstance(call, dict):
        args = call.get("args")
        return FunctionCallPart(
            id=str(call.get("id") or ""),
            name=str(call.get("name") or ""),
            args=args if isinstance(args, dict) else {},
        )

    response = data.get("functionResponse")
    if isinstance(response, dict):
        payload = response.get("response")
        return FunctionResponsePart(
            id=str(response.get("id") or ""),
            name=str(response.get("name") or ""),
            response=payload if isinstance(payload, dict) else {},
        )

    return UnknownPart(raw=data)


def part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineDataPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}
    if isinstance(part, FunctionCallPart):
        return {"functionCall": {"id": part.id, "name": part.name, "args": part.args}}
    if isinstance(part, FunctionResponsePart):
        return {
            "functionResponse": {
                "id": part.id,
                "name": part.name,
                "response": part.response,
            }
        }
    return dict(part.raw)


def turn_from_dict(data: Any) -> Turn:
    """Decode one turn. Malformed input yields a turn with no parts."""
    if not isinstance(data, dict):
        return Turn(role=ROLE_USER, parts=[])
    role = data.get("role") or ROLE_USER
    raw_parts = data.get("parts")
    if not isinstance(raw_parts, list):
        raw_parts = []
    return Turn(role=str(role), parts=[part_from_dict(p) for p in raw_parts])


def turn_to_dict(turn: Turn) -> dict[str, Any]:
    return {"role": turn.role, "parts": [part_to_dict(p) for p in turn.parts]}


def history_from_json(data: str | list[Any]) -> History:
    """Decode a history from a JSON string or an already-parsed list."""
    if isinstance(data, str):
        data = json.loads(data)
    if not isinstance(data, list):
        raise ValueError("History JSON must be an array of turns")
    return [turn_from_dict(t) for t in data]


def history_to_json(history: History, indent: int | None = 2) -> str:
    return json.dumps(
        [turn_to_dict(t) for t in history],
        indent=indent,
        ensure_ascii=False,
    )
