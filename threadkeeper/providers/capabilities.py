"""Model capability checks used when building requests."""

# Models that accept a reasoning-effort hint.
_THINKING_PREFIXES = ("gemini-2.5", "gpt-4", "o1")
_THINKING_SUBSTRINGS = ("deepseek-r1", "anthropic/claude-3.7-sonnet")
_THINKING_MODELS = frozenset({
    "mistralai/codestral-2508",
    "anthropic/claude-opus-4.1",
    "moonshotai/kimi-vl-a3b-thinking",
    "qwen/qwen3-235b-a22b-thinking-2507",
    "openrouter/horizon-beta",
})

# Only these families honour response_format={"type": "json_object"}.
_JSON_MODE_FAMILIES = ("nousresearch/deephermes", "gemini", "openai/")
_JSON_MODE_EXCLUDED = ("gpt-oss",)


def is_thinking_supported(model: str) -> bool:
    """Check whether *model* accepts a reasoning-effort hint."""
    if model.startswith(_THINKING_PREFIXES):
        return True
    if any(s in model for s in _THINKING_SUBSTRINGS):
        return True
    return model in _THINKING_MODELS


def is_response_format_supported(model: str, fmt: str = "json_object") -> bool:
    """Check whether *model* supports the given structured-output format."""
    if fmt != "json_object":
        return True
    if any(s in model for s in _JSON_MODE_EXCLUDED):
        return False
    return any(s in model for s in _JSON_MODE_FAMILIES)
