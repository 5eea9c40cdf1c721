"""Tests for the streamed event decoder."""

from __future__ import annotations

import pytest

from conftest import stop_event, text_events, tool_events
from nimbus.core.decoder import (
    DecodedKind,
    EventStreamDecoder,
    iter_sse_events,
    parse_tool_input,
)
from nimbus.core.messages import TextBlock, ThinkingBlock, ToolCall
from nimbus.errors import ProviderError


class TestTextDecoding:
    def test_text_fragments_surface_in_order(self):
        decoder = EventStreamDecoder()
        emitted = []
        for event in text_events("Hello world"):
            emitted.extend(decoder.feed(event))

        assert [e.kind for e in emitted] == [DecodedKind.TEXT, DecodedKind.TEXT]
        assert "".join(e.text for e in emitted) == "Hello world"

        turn = decoder.result()
        assert turn.text == "Hello world"
        assert turn.content == [TextBlock("Hello world")]
        assert turn.tool_calls == []

    def test_initial_text_in_block_start(self):
        decoder = EventStreamDecoder()
        out = decoder.feed(
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": "Hi"}}
        )
        assert out[0].kind is DecodedKind.TEXT
        assert decoder.result().text == "Hi"

    def test_stop_reason_recorded(self):
        decoder = EventStreamDecoder()
        events = decoder.feed(stop_event("end_turn"))
        assert events[0].kind is DecodedKind.TURN_END
        assert events[0].stop_reason == "end_turn"
        assert decoder.result().stop_reason == "end_turn"

    def test_message_delta_without_stop_reason_is_quiet(self):
        decoder = EventStreamDecoder()
        assert decoder.feed({"type": "message_delta", "delta": {"usage": {}}}) == []
        assert decoder.result().stop_reason is None

    def test_empty_text_block_not_in_content(self):
        decoder = EventStreamDecoder()
        decoder.feed({"type": "content_block_start", "index": 0, "content_block": {"type": "text"}})
        decoder.feed({"type": "content_block_stop", "index": 0})
        assert decoder.result().content == []


class TestToolDecoding:
    def test_tool_call_reassembled_from_fragments(self):
        decoder = EventStreamDecoder()
        kinds = []
        for event in tool_events("toolu_1", "Read", {"file_path": "a.txt", "limit": 5}):
            kinds.extend(e.kind for e in decoder.feed(event))

        assert kinds == [
            DecodedKind.TOOL_START,
            DecodedKind.TOOL_DELTA,
            DecodedKind.TOOL_DELTA,
            DecodedKind.TOOL_STOP,
        ]
        turn = decoder.result()
        assert turn.tool_calls == [ToolCall("toolu_1", "Read", {"file_path": "a.txt", "limit": 5})]
        assert turn.content == turn.tool_calls

    def test_tool_stop_carries_completed_call(self):
        decoder = EventStreamDecoder()
        events = tool_events("t1", "Glob", {"pattern": "*.py"})
        for event in events[:-1]:
            decoder.feed(event)
        (stop,) = decoder.feed(events[-1])
        assert stop.kind is DecodedKind.TOOL_STOP
        assert stop.tool_call.input == {"pattern": "*.py"}

    def test_unparseable_input_becomes_empty_object(self):
        decoder = EventStreamDecoder()
        decoder.feed(
            {
                "type": "content_block_start",
                "index": 0,
                "content_block": {"type": "tool_use", "id": "t1", "name": "Bash"},
            }
        )
        decoder.feed(
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "input_json_delta", "partial_json": '{"command": "ls'},
            }
        )
        decoder.feed({"type": "content_block_stop", "index": 0})
        assert decoder.result().tool_calls == [ToolCall("t1", "Bash", {})]

    def test_no_deltas_uses_start_input(self):
        decoder = EventStreamDecoder()
        decoder.feed(
            {
                "type": "content_block_start",
                "index": 0,
                "content_block": {"type": "tool_use", "id": "t1", "name": "Wait", "input": {"seconds": 2}},
            }
        )
        decoder.feed({"type": "content_block_stop", "index": 0})
        assert decoder.result().tool_calls[0].input == {"seconds": 2}

    def test_text_and_tools_interleave_in_order(self):
        decoder = EventStreamDecoder()
        events = (
            text_events("Let me look.", index=0)
            + tool_events("t1", "ListDir", {"path": "."}, index=1)
            + tool_events("t2", "Glob", {"pattern": "*"}, index=2)
            + [stop_event("tool_use")]
        )
        turn = decoder.feed_all(events)

        assert [type(b) for b in turn.content] == [TextBlock, ToolCall, ToolCall]
        assert [c.id for c in turn.tool_calls] == ["t1", "t2"]
        assert turn.stop_reason == "tool_use"

    def test_unterminated_tool_block_closed_by_result(self):
        decoder = EventStreamDecoder()
        for event in tool_events("t1", "Read", {"file_path": "x"})[:-1]:
            decoder.feed(event)
        turn = decoder.result()
        assert turn.tool_calls == [ToolCall("t1", "Read", {"file_path": "x"})]


class TestReasoning:
    def test_thinking_surfaces_as_reasoning(self):
        decoder = EventStreamDecoder()
        decoder.feed({"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}})
        (event,) = decoder.feed(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}}
        )
        assert event.kind is DecodedKind.REASONING
        assert event.text == "hmm"

    def test_signed_thinking_kept_in_content(self):
        decoder = EventStreamDecoder()
        decoder.feed({"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}})
        decoder.feed(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "plan"}}
        )
        decoder.feed(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}}
        )
        decoder.feed({"type": "content_block_stop", "index": 0})
        turn = decoder.result()
        assert turn.reasoning == "plan"
        assert turn.content == [ThinkingBlock("plan", "sig")]

    def test_unsigned_thinking_dropped_from_content(self):
        decoder = EventStreamDecoder()
        decoder.feed(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "x"}}
        )
        turn = decoder.result()
        assert turn.reasoning == "x"
        assert turn.content == []


class TestMalformedInput:
    @pytest.mark.parametrize(
        "event",
        [
            "not a dict",
            None,
            {"type": "content_block_start", "index": 0},
            {"type": "content_block_delta", "index": 0},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": 5}},
            {"type": "content_block_stop", "index": 7},
            {"type": "ping"},
            {"no_type": True},
        ],
    )
    def test_skipped_without_raising(self, event):
        decoder = EventStreamDecoder()
        assert decoder.feed(event) == []

    def test_stream_continues_after_malformed_event(self):
        decoder = EventStreamDecoder()
        decoder.feed({"type": "content_block_delta", "index": 0})
        for event in text_events("ok"):
            decoder.feed(event)
        assert decoder.result().text == "ok"

    def test_error_event_raises(self):
        decoder = EventStreamDecoder()
        with pytest.raises(ProviderError, match="overloaded"):
            decoder.feed({"type": "error", "error": {"type": "overloaded_error", "message": "overloaded"}})


class TestParseToolInput:
    def test_object(self):
        assert parse_tool_input('{"a": 1}') == {"a": 1}

    def test_empty_uses_default(self):
        assert parse_tool_input("", {"a": 1}) == {"a": 1}
        assert parse_tool_input("  ") == {}

    def test_non_object(self):
        assert parse_tool_input("[1, 2]") == {}

    def test_invalid(self):
        assert parse_tool_input("{oops") == {}


async def _lines(*lines: str):
    for line in lines:
        yield line


class TestIterSseEvents:
    async def test_parses_data_lines(self):
        events = [
            e
            async for e in iter_sse_events(
                _lines(
                    "event: message_start",
                    'data: {"type": "message_start"}',
                    "",
                    ": keep-alive",
                    'data: {"type": "message_stop"}',
                )
            )
        ]
        assert [e["type"] for e in events] == ["message_start", "message_stop"]

    async def test_skips_done_and_garbage(self):
        events = [
            e
            async for e in iter_sse_events(
                _lines("data: [DONE]", "data: {broken", "data: 42", 'data: {"type": "ping"}')
            )
        ]
        assert events == [{"type": "ping"}]
