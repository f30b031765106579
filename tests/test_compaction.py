"""Tests for history compaction."""

from unittest.mock import patch

import pytest

from threadkeeper.agent.compactor import (
    ACTION_COMPRESSED,
    ACTION_NONE,
    ACTION_TRUNCATED,
    TRUNCATION_MARKER,
    Compactor,
    compress_turn,
    pair_tool_parts,
)
from threadkeeper.agent.tokens import cost_of_history
from threadkeeper.config.schema import CompactionSettings
from threadkeeper.history.types import (
    FunctionCallPart,
    FunctionResponsePart,
    TextPart,
    Turn,
    UnknownPart,
)

FLAT_COST = "threadkeeper.agent.compactor.cost_of_turn"


def _text(role, text):
    return Turn(role=role, parts=[TextPart(text)])


def _call(call_id, name="run"):
    return Turn(role="model", parts=[FunctionCallPart(id=call_id, name=name, args={"cmd": name})])


def _response(call_id, name="run"):
    return Turn(role="tool", parts=[FunctionResponsePart(id=call_id, name=name, response={"ok": True})])


def _ten_turns():
    return [_text("user" if i % 2 == 0 else "model", f"t{i}") for i in range(10)]


def _assert_paired(history):
    calls = [p.id for t in history for p in t.parts if isinstance(p, FunctionCallPart)]
    responses = [p.id for t in history for p in t.parts if isinstance(p, FunctionResponsePart)]
    assert sorted(calls) == sorted(responses)


def _tool_history():
    return [
        _text("user", "setup"),   # 0
        _call("a"),               # 1
        _response("a"),           # 2
        _call("b"),               # 3
        _response("b"),           # 4
        _text("model", "done b"), # 5
        _text("user", "next"),    # 6
        _call("c"),               # 7
        _response("c"),           # 8
        _text("model", "final"),  # 9
    ]


# ── no-op ───────────────────────────────────────────────────────


class TestNoAction:
    @pytest.mark.asyncio
    async def test_below_compress_threshold_is_untouched(self):
        history = [_text("user", "hello"), _text("model", "hi")]
        compactor = Compactor(CompactionSettings(compress_after=10_000, truncate_after=20_000))

        result = await compactor.compact(history, "tag-1")

        assert result.action == ACTION_NONE
        assert result.history is history
        assert result.tag == "tag-1"
        assert result.changed is False

    @pytest.mark.asyncio
    async def test_exactly_at_threshold_is_untouched(self):
        settings = CompactionSettings(compress_after=10_000, truncate_after=20_000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        assert result.action == ACTION_NONE
        assert result.tag is None

    def test_should_compact(self):
        settings = CompactionSettings(compress_after=5000, truncate_after=9000)
        with patch(FLAT_COST, return_value=1000):
            assert Compactor(settings).should_compact(_ten_turns()) is True
            assert Compactor(settings).should_compact(_ten_turns()[:5]) is False


# ── truncation ──────────────────────────────────────────────────


class TestTruncation:
    def _settings(self, **overrides):
        values = dict(
            compress_after=5000,
            truncate_after=9000,
            truncate_by=0.5,
            min_starting_tokens=1000,
            additional_compressed=0,
        )
        values.update(overrides)
        return CompactionSettings(**values)

    @pytest.mark.asyncio
    async def test_keeps_first_turn_and_recent_tail(self):
        history = _ten_turns()
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings()).compact(history, None)

        assert result.action == ACTION_TRUNCATED
        assert [t.text for t in result.history] == ["t0", "t7", "t8", "t9"]
        assert result.tokens_before == 10_000
        assert result.tokens_after == 4000
        assert result.tokens_after <= 4500

    @pytest.mark.asyncio
    async def test_starting_window_stops_once_minimum_met(self):
        settings = self._settings(min_starting_tokens=500, truncate_by=3000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        assert [t.text for t in result.history] == ["t0", "t8", "t9"]

    @pytest.mark.asyncio
    async def test_starting_window_refuses_third_turn_past_minimum(self):
        settings = self._settings(min_starting_tokens=2500, truncate_by=4000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        assert [t.text for t in result.history] == ["t0", "t1", "t8", "t9"]

    @pytest.mark.asyncio
    async def test_starting_window_admits_second_turn_below_minimum(self):
        history = _ten_turns()
        settings = self._settings(min_starting_tokens=1500, truncate_by=4000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(history, None)
        assert [t.text for t in result.history] == ["t0", "t1", "t8", "t9"]

    @pytest.mark.asyncio
    async def test_absolute_truncate_by(self):
        settings = self._settings(truncate_by=2000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        assert [t.text for t in result.history] == ["t0", "t9"]

    @pytest.mark.asyncio
    async def test_default_truncate_by_is_point_eight(self):
        settings = self._settings(truncate_by=None)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        # target 7200: 1000 at the start, six turns at the end
        assert len(result.history) == 7

    @pytest.mark.asyncio
    async def test_compresses_turns_that_do_not_fit_verbatim(self):
        history = [_text("user", f"turn {i} " + "x " * 2000) for i in range(6)]
        settings = CompactionSettings(
            compress_after=1000,
            truncate_after=5000,
            truncate_by=0.5,
        )
        result = await Compactor(settings).compact(history, None)

        marker = TRUNCATION_MARKER.format(limit=560)
        assert result.history[0] is history[0]
        assert len(result.history) == 6
        for turn in result.history[1:]:
            assert turn.text.startswith(marker)
            assert len(turn.text) == len(marker) + 560
        # originals are not modified
        assert not history[5].text.startswith(marker)
        assert cost_of_history(result.history) <= settings.target_tokens + settings.compressed_allowance

    @pytest.mark.asyncio
    async def test_compressed_turn_over_allowance_is_excluded(self):
        history = [_text("user", "setup")]
        history += [_text("model", f"turn {i} " + "x " * 2000) for i in range(5)]
        settings = CompactionSettings(
            compress_after=1000,
            truncate_after=5000,
            truncate_by=0.5,
            additional_compressed=0,
            min_starting_tokens=0,
        )
        result = await Compactor(settings).compact(history, None)
        assert len(result.history) < len(history)
        assert cost_of_history(result.history) <= settings.target_tokens

    @pytest.mark.asyncio
    async def test_result_never_overlaps_starting_window(self):
        settings = self._settings(truncate_by=100_000, truncate_after=9000)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        texts = [t.text for t in result.history]
        assert texts == [f"t{i}" for i in range(10)]


# ── tool pairing ────────────────────────────────────────────────


class TestPairing:
    def test_pair_tool_parts(self):
        pairs = dict(pair_tool_parts(_tool_history()))
        assert pairs[(1, 0)] == (2, 0)
        assert pairs[(3, 0)] == (4, 0)
        assert pairs[(7, 0)] == (8, 0)

    def test_repeated_id_pairs_with_nearest_call(self):
        history = [_call("x"), _call("x"), _response("x")]
        pairs = dict(pair_tool_parts(history))
        assert pairs[(1, 0)] == (2, 0)
        assert pairs[(0, 0)] is None

    @pytest.mark.asyncio
    async def test_response_without_retained_call_is_removed(self):
        settings = CompactionSettings(
            compress_after=5000,
            truncate_after=9000,
            truncate_by=3000,
            min_starting_tokens=1000,
            additional_compressed=0,
        )
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_tool_history(), None)

        # tail would start at the response to "c"; its call is gone
        assert [t.text for t in result.history] == ["setup", "final"]
        _assert_paired(result.history)

    @pytest.mark.asyncio
    async def test_call_without_retained_response_is_removed(self):
        settings = CompactionSettings(
            compress_after=5000,
            truncate_after=9000,
            truncate_by=4000,
            min_starting_tokens=2000,
            additional_compressed=0,
        )
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_tool_history(), None)

        _assert_paired(result.history)
        assert result.history[0].text == "setup"
        assert all(not t.function_calls or t.function_calls[0].id != "a" for t in result.history)

    @pytest.mark.asyncio
    async def test_pairs_inside_window_survive(self):
        settings = CompactionSettings(
            compress_after=5000,
            truncate_after=9000,
            truncate_by=0.5,
            min_starting_tokens=1000,
            additional_compressed=0,
        )
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_tool_history(), None)

        _assert_paired(result.history)
        ids = [p.id for t in result.history for p in t.function_calls]
        assert ids == ["c"]

    @pytest.mark.asyncio
    async def test_never_answered_call_is_kept(self):
        history = _tool_history() + [_call("pending")]
        settings = CompactionSettings(
            compress_after=5000,
            truncate_after=9000,
            truncate_by=0.5,
            min_starting_tokens=1000,
            additional_compressed=0,
        )
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(history, None)
        assert result.history[-1].function_calls[0].id == "pending"


# ── compression helper ──────────────────────────────────────────


class TestCompressTurn:
    def test_long_response_value_is_shortened(self):
        marker = TRUNCATION_MARKER.format(limit=10)
        part = FunctionResponsePart(id="1", name="cat", response={"output": "a" * 500, "code": 0})
        turn = Turn(role="tool", parts=[part])

        compress_turn(turn, 10)

        assert part.response["output"] == marker + "a" * 10
        assert part.response["code"] == 0

    def test_long_call_args_are_shortened(self):
        marker = TRUNCATION_MARKER.format(limit=10)
        part = FunctionCallPart(id="1", name="write_file", args={"content": "b" * 500, "path": "x"})
        compress_turn(Turn(role="model", parts=[part]), 10)
        assert part.args["content"] == marker + "b" * 10
        assert part.args["path"] == "x"

    def test_value_within_threshold_is_kept(self):
        marker = TRUNCATION_MARKER.format(limit=10)
        value = "c" * (10 + len(marker))
        part = TextPart(value)
        compress_turn(Turn(role="user", parts=[part]), 10)
        assert part.text == value

    def test_long_text_is_shortened(self):
        marker = TRUNCATION_MARKER.format(limit=10)
        part = TextPart("d" * 1000)
        compress_turn(Turn(role="user", parts=[part]), 10)
        assert part.text == marker + "d" * 10

    def test_unknown_parts_are_skipped(self):
        raw = {"executableCode": {"code": "e" * 1000}}
        turn = Turn(role="model", parts=[UnknownPart(raw=raw)])
        compress_turn(turn, 10)
        assert turn.parts[0].raw == raw


# ── tags ────────────────────────────────────────────────────────


class TestTags:
    def _settings(self, **overrides):
        values = dict(compress_after=5000, truncate_after=9000, truncate_by=0.5)
        values.update(overrides)
        return CompactionSettings(**values)

    @pytest.mark.asyncio
    async def test_truncation_assigns_tag_when_missing(self):
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings()).compact(_ten_turns(), None)
        assert result.tag

    @pytest.mark.asyncio
    async def test_truncation_keeps_existing_tag(self):
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings()).compact(_ten_turns(), "keep-me")
        assert result.tag == "keep-me"

    @pytest.mark.asyncio
    async def test_truncation_forks_tag(self):
        settings = self._settings(truncate_new_tag=True)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), "old")
        assert result.tag != "old"


# ── compression band ────────────────────────────────────────────


class RecordingStrategy:
    def __init__(self):
        self.calls = 0

    async def compress(self, history, settings):
        self.calls += 1
        return history[-2:]


class TestCompressionBand:
    def _settings(self, **overrides):
        values = dict(compress_after=5000, truncate_after=20_000)
        values.update(overrides)
        return CompactionSettings(**values)

    @pytest.mark.asyncio
    async def test_default_strategy_is_noop(self):
        history = _ten_turns()
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings()).compact(history, "tag")
        assert result.action == ACTION_COMPRESSED
        assert result.history == history
        assert result.tag == "tag"

    @pytest.mark.asyncio
    async def test_compress_new_tag(self):
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings(compress_new_tag=True)).compact(_ten_turns(), "tag")
        assert result.tag != "tag"

    @pytest.mark.asyncio
    async def test_injected_strategy_runs(self):
        strategy = RecordingStrategy()
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(self._settings(), strategy).compact(_ten_turns(), None)
        assert strategy.calls == 1
        assert [t.text for t in result.history] == ["t8", "t9"]
        assert result.tokens_after == 2000

    @pytest.mark.asyncio
    async def test_misconfigured_thresholds_truncate(self):
        settings = CompactionSettings(compress_after=9000, truncate_after=5000, truncate_by=0.5)
        with patch(FLAT_COST, return_value=1000):
            result = await Compactor(settings).compact(_ten_turns(), None)
        assert result.action == ACTION_TRUNCATED


# ── malformed input ─────────────────────────────────────────────


class TestMalformed:
    @pytest.mark.asyncio
    async def test_tokenizer_failure_does_not_raise(self):
        history = [_text("user", "hi"), _text("model", "hello")]
        with patch("threadkeeper.agent.tokens.get_encoding", side_effect=RuntimeError("bpe unavailable")):
            result = await Compactor(CompactionSettings()).compact(history, None)
        assert result.action == ACTION_NONE
        assert result.history is history
        assert result.tokens_before == 0

    @pytest.mark.asyncio
    async def test_unknown_and_empty_turns_do_not_raise(self):
        history = [
            Turn(role="user", parts=[]),
            Turn(role="model", parts=[UnknownPart(raw={"thought": True})]),
        ] + [_text("user", "y " * 3000) for _ in range(4)]
        settings = CompactionSettings(compress_after=100, truncate_after=200, truncate_by=0.5)
        result = await Compactor(settings).compact(history, None)
        assert result.action == ACTION_TRUNCATED
        assert result.history
