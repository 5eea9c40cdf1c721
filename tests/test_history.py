"""Tests for messages and bounded conversation history."""

from __future__ import annotations

import json

import pytest

from nimbus.core.messages import (
    ConversationHistory,
    Message,
    Role,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolResult,
)


def _exchange(n: int, with_tool: bool = False) -> list[Message]:
    """A user prompt and its replies; with_tool adds a tool round trip."""
    messages = [Message.user(f"prompt {n}")]
    if with_tool:
        call = ToolCall(f"t{n}", "Read", {"file_path": f"{n}.txt"})
        messages.append(Message.assistant([call]))
        messages.append(Message.tool_results([ToolResult(call.id, {"content": "x"})]))
    messages.append(Message.assistant([TextBlock(f"answer {n}")]))
    return messages


class TestMessage:
    def test_user_text_serializes_as_string(self):
        assert Message.user("hi").to_dict() == {"role": "user", "content": "hi"}

    def test_assistant_blocks(self):
        msg = Message.assistant(
            [ThinkingBlock("why", "sig"), TextBlock("ok"), ToolCall("t1", "Glob", {"pattern": "*"})]
        )
        assert msg.to_dict() == {
            "role": "assistant",
            "content": [
                {"type": "thinking", "thinking": "why", "signature": "sig"},
                {"type": "text", "text": "ok"},
                {"type": "tool_use", "id": "t1", "name": "Glob", "input": {"pattern": "*"}},
            ],
        }
        assert msg.text == "ok"
        assert [c.id for c in msg.tool_calls] == ["t1"]

    def test_tool_results_message(self):
        msg = Message.tool_results(
            [ToolResult("t1", {"files": []}), ToolResult("t2", {"error": "boom"})]
        )
        assert msg.role is Role.USER
        assert msg.has_tool_results
        assert not msg.starts_exchange

        ok, failed = msg.to_dict()["content"]
        assert ok == {"type": "tool_result", "tool_use_id": "t1", "content": '{"files": []}'}
        assert failed["is_error"] is True
        assert json.loads(failed["content"]) == {"error": "boom"}

    def test_plain_user_message_starts_exchange(self):
        assert Message.user("hello").starts_exchange
        assert not Message.assistant([TextBlock("x")]).starts_exchange


class TestToolResult:
    def test_success(self):
        result = ToolResult("t1", {"success": True})
        assert result.success
        assert not result.is_error

    def test_error(self):
        assert ToolResult("t1", {"error": "nope"}).is_error

    def test_content_serializes_non_json_values(self):
        from pathlib import Path

        block = ToolResult("t1", {"path": Path("/tmp/x")}).to_dict()
        assert json.loads(block["content"]) == {"path": "/tmp/x"}


class TestConversationHistory:
    def test_rejects_trim_target_above_limit(self):
        with pytest.raises(ValueError):
            ConversationHistory(limit=10, trim_to=20)

    def test_append_and_serialize(self):
        history = ConversationHistory()
        history.extend(_exchange(1))
        assert len(history) == 2
        assert history.to_list()[0] == {"role": "user", "content": "prompt 1"}
        assert history[1].text == "answer 1"

    def test_no_trim_at_limit(self):
        history = ConversationHistory(limit=4, trim_to=2)
        history.extend(_exchange(1) + _exchange(2))
        assert len(history) == 4

    def test_trims_to_target_past_limit(self):
        history = ConversationHistory(limit=6, trim_to=4)
        for n in range(4):
            history.extend(_exchange(n))
        assert len(history) <= 6
        assert history[0].starts_exchange
        assert history[-1].text == "answer 3"

    def test_trim_never_splits_tool_round_trip(self):
        history = ConversationHistory(limit=8, trim_to=5)
        for n in range(6):
            history.extend(_exchange(n, with_tool=True))

        assert history[0].starts_exchange
        messages = history.messages
        for i, message in enumerate(messages):
            if message.tool_calls:
                follower = messages[i + 1]
                assert follower.has_tool_results
                ids = {b.tool_use_id for b in follower.blocks if isinstance(b, ToolResult)}
                assert ids == {c.id for c in message.tool_calls}
            if message.has_tool_results:
                assert messages[i - 1].tool_calls

    def test_latest_exchange_always_kept(self):
        history = ConversationHistory(limit=3, trim_to=1)
        history.extend(_exchange(1, with_tool=True))
        assert history[0].text == "prompt 1"
        assert len(history) == 4

    def test_clear(self):
        history = ConversationHistory()
        history.extend(_exchange(1))
        history.clear()
        assert len(history) == 0
        assert history.to_list() == []
