"""Translation between canonical turns and the chat-completion wire format.

Outbound, a history is rendered into ``messages`` where every tool result
is preceded by the assistant message that declares the matching call.
Inbound, whole responses map directly to a model turn, while streamed
responses go through a :class:`StreamAccumulator` that stitches tool-call
fragments back together.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Iterable

from loguru import logger

from threadkeeper.config.schema import GenerationConfig
from threadkeeper.history.types import (
    ROLE_MODEL,
    FunctionCallPart,
    History,
    TextPart,
    Turn,
)
from threadkeeper.providers.capabilities import (
    is_response_format_supported,
    is_thinking_supported,
)
from threadkeeper.providers.schema import FunctionDeclaration, to_chat_tool

JSON_MIME_TYPE = "application/json"

STATE_IDLE = "idle"
STATE_ACCUMULATING = "accumulating"


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def as_dict(obj: Any) -> dict[str, Any]:
    """Normalise an SDK response object (or a plain dict) to a dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump()
    return {}


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Parse a tool-call arguments string into a mapping."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {"raw": raw}
    return value if isinstance(value, dict) else {"value": value}


# ── outbound ────────────────────────────────────────────────────


def to_chat_request(
    history: History,
    model: str,
    config: GenerationConfig | None = None,
    tools: list[FunctionDeclaration] | None = None,
) -> dict[str, Any]:
    """Build a chat-completion request body from a canonical history."""
    config = config or GenerationConfig()

    request: dict[str, Any] = {
        "model": model,
        "messages": to_chat_messages(history, config.system_instruction),
        "temperature": config.temperature or 0,
        "top_p": config.top_p or 1,
    }
    if config.max_tokens:
        request["max_tokens"] = config.max_tokens

    if tools:
        request["tools"] = [to_chat_tool(t) for t in tools]
        request["tool_choice"] = "auto"

    if config.thinking_effort and is_thinking_supported(model):
        request["reasoning"] = {"effort": config.thinking_effort}

    if config.response_mime_type == JSON_MIME_TYPE and is_response_format_supported(model):
        request["response_format"] = {"type": "json_object"}

    return request


def to_chat_messages(
    history: History, system_instruction: str | None = None,
) -> list[dict[str, Any]]:
    """Render turns as chat messages.

    A turn holding function responses becomes an assistant message declaring
    the matching calls, immediately followed by one tool message per
    response. Calls are only ever emitted next to their responses, so a
    call that is never answered does not reach the backend.
    """
    messages: list[dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})

    last_response_at: dict[str, int] = {}
    for index, turn in enumerate(history):
        for response in turn.function_responses:
            last_response_at[response.id] = index

    calls_by_id: dict[str, FunctionCallPart] = {}
    for index, turn in enumerate(history):
        calls = turn.function_calls
        responses = turn.function_responses
        for call in calls:
            calls_by_id[call.id] = call

        if responses:
            tool_calls = []
            results = []
            for response in responses:
                call = calls_by_id.get(response.id)
                if call is None:
                    logger.debug(f"No function call found for response id {response.id}")
                tool_calls.append(_tool_call(
                    response.id,
                    call.name if call else "",
                    call.args if call else {},
                ))
                results.append({
                    "role": "tool",
                    "tool_call_id": response.id,
                    "content": json.dumps(response.response, ensure_ascii=False),
                })
            messages.append({"role": "assistant", "content": None, "tool_calls": tool_calls})
            messages.extend(results)
            if turn.text:
                messages.append({"role": "user", "content": turn.text})
            continue

        if calls:
            dangling = [c.name for c in calls if last_response_at.get(c.id, -1) <= index]
            if dangling:
                logger.debug(f"Dropping unanswered function call(s): {', '.join(dangling)}")
            if turn.text:
                messages.append({"role": "assistant", "content": turn.text})
            continue

        message = _plain_message(turn)
        if message is not None:
            messages.append(message)

    return merge_assistant_messages(messages)


def _tool_call(call_id: str, name: str, args: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(args, ensure_ascii=False)},
    }


def _plain_message(turn: Turn) -> dict[str, Any] | None:
    role = "assistant" if turn.role == ROLE_MODEL else "user"
    has_text = any(isinstance(p, TextPart) for p in turn.parts)
    images = turn.inline_data

    if images and role == "user":
        content: list[dict[str, Any]] = []
        if turn.text:
            content.append({"type": "text", "text": turn.text})
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
            })
        return {"role": role, "content": content}

    if not has_text:
        return None
    return {"role": role, "content": turn.text}


def merge_assistant_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge consecutive assistant messages.

    An assistant message that declares tool calls must stay immediately
    before its tool results, so nothing is merged into it. Anything else
    absorbs the following assistant message's text and tool calls.
    """
    merged: list[dict[str, Any]] = []
    for msg in messages:
        prev = merged[-1] if merged else None
        if (
            prev is not None
            and msg["role"] == "assistant"
            and prev["role"] == "assistant"
            and not prev.get("tool_calls")
        ):
            text = (prev.get("content") or "") + (msg.get("content") or "")
            tool_calls = list(prev.get("tool_calls") or []) + list(msg.get("tool_calls") or [])
            combined: dict[str, Any] = {
                "role": "assistant",
                "content": text if text or not tool_calls else None,
            }
            if tool_calls:
                combined["tool_calls"] = tool_calls
            merged[-1] = combined
        else:
            merged.append(dict(msg))
    return merged


# ── inbound ─────────────────────────────────────────────────────


def from_chat_completion(response: Any) -> Turn:
    """Convert a whole (non-streamed) chat completion into a model turn."""
    data = as_dict(response)
    choices = data.get("choices") or []
    if not choices:
        logger.warning("Chat completion without choices; returning empty text")
        return Turn(role=ROLE_MODEL, parts=[TextPart("")])

    message = as_dict(choices[0]).get("message") or {}
    parts: list = []

    content = message.get("content")
    if isinstance(content, str) and content:
        parts.append(TextPart(content))

    for tc in message.get("tool_calls") or []:
        fn = tc.get("function") or {}
        parts.append(FunctionCallPart(
            id=tc.get("id") or new_call_id(),
            name=fn.get("name") or "",
            args=parse_arguments(fn.get("arguments")),
        ))

    if not parts:
        parts.append(TextPart(content if isinstance(content, str) else ""))
    return Turn(role=ROLE_MODEL, parts=parts)


def finish_reason_of(response: Any) -> str | None:
    choices = as_dict(response).get("choices") or []
    if not choices:
        return None
    return as_dict(choices[0]).get("finish_reason")


def usage_of(response: Any) -> dict[str, int]:
    usage = as_dict(response).get("usage") or {}
    return {
        key: usage[key]
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
        if isinstance(usage.get(key), int)
    }


@dataclass
class _PartialCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class StreamAccumulator:
    """Reassembles tool calls for one streaming response.

    Tool-call fragments arrive indexed by position: the id and name usually
    come once, the argument text arrives in pieces. Fragments are collected
    per index until the chunk carrying the finish reason, at which point
    every partial call is turned into a :class:`FunctionCallPart` and the
    accumulator is empty again.

    Create one per streaming response and call :meth:`reset` if the stream
    is abandoned.
    """

    def __init__(self):
        self._partials: dict[int, _PartialCall] = {}

    @property
    def state(self) -> str:
        return STATE_ACCUMULATING if self._partials else STATE_IDLE

    def feed(self, chunk: Any) -> Turn:
        """Consume one stream chunk, returning its text and any finished calls."""
        choices = as_dict(chunk).get("choices") or []
        if not choices:
            return Turn(role=ROLE_MODEL, parts=[])

        choice = as_dict(choices[0])
        delta = choice.get("delta") or {}
        parts: list = []

        text = delta.get("content")
        if isinstance(text, str) and text:
            parts.append(TextPart(text))

        for fragment in delta.get("tool_calls") or []:
            self._absorb(fragment)

        if choice.get("finish_reason") and self._partials:
            parts.extend(self.finalize())

        return Turn(role=ROLE_MODEL, parts=parts)

    def _absorb(self, fragment: dict[str, Any]) -> None:
        index = fragment.get("index")
        call_id = fragment.get("id")
        if index is None:
            # Some backends omit the index and send each call whole.
            index = next(
                (i for i, p in self._partials.items() if call_id and p.id == call_id),
                max(self._partials, default=-1) + 1,
            )

        partial = self._partials.setdefault(index, _PartialCall())
        if call_id:
            partial.id = call_id

        fn = fragment.get("function") or {}
        if fn.get("name"):
            partial.name = fn["name"]
        arguments = fn.get("arguments")
        if isinstance(arguments, dict):
            arguments = json.dumps(arguments)
        if arguments:
            partial.arguments += arguments

    def finalize(self) -> list[FunctionCallPart]:
        """Emit all accumulated calls in index order and clear state."""
        calls = [
            FunctionCallPart(
                id=p.id or new_call_id(),
                name=p.name,
                args=parse_arguments(p.arguments),
            )
            for _, p in sorted(self._partials.items())
        ]
        self._partials.clear()
        return calls

    def reset(self) -> None:
        """Discard partial state (cancelled or truncated stream)."""
        if self._partials:
            logger.debug(f"Discarding {len(self._partials)} partial tool call(s)")
        self._partials.clear()


def join_turns(turns: Iterable[Turn]) -> Turn:
    """Collapse streamed delta turns into one model turn.

    Text deltas are concatenated into a single leading text part; other
    parts keep their arrival order.
    """
    text: list[str] = []
    others: list = []
    for turn in turns:
        for part in turn.parts:
            if isinstance(part, TextPart):
                text.append(part.text)
            else:
                others.append(part)

    parts: list = []
    if text or not others:
        parts.append(TextPart("".join(text)))
    return Turn(role=ROLE_MODEL, parts=parts + others)
