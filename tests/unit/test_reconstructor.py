"""Unit tests for StreamReconstructor."""

import itertools

import pytest

from surfer.conversation import ChatMessage, InvocationState, TextPart
from surfer.protocol import (
    ErrorFrame,
    FinishFrame,
    ImageFrame,
    TextDelta,
    ToolCallFrame,
    ToolResultFrame,
)
from surfer.reconstructor import StreamError, StreamReconstructor
from surfer.results import ImageResult, TextResult


def _user(text="open firefox"):
    return ChatMessage(role="user", content=text, parts=[TextPart(text=text)])


class TestMessageCreation:
    def test_no_message_until_content_arrives(self):
        history = [_user()]
        rec = StreamReconstructor(history)
        rec.apply(FinishFrame())

        assert rec.message is None
        assert len(history) == 1
        assert rec.finished

    def test_text_accumulates_into_one_part(self):
        history = [_user()]
        rec = StreamReconstructor(history, message_id="m1")
        rec.apply(TextDelta("I'll "))
        rec.apply(TextDelta("open it."))

        assert len(history) == 2
        message = history[-1]
        assert message.id == "m1"
        assert message.role == "assistant"
        assert message.content == "I'll open it."
        assert message.parts == [TextPart(text="I'll open it.")]

    def test_empty_text_frame_does_not_create_message(self):
        history = []
        StreamReconstructor(history).apply(TextDelta(""))
        assert history == []

    def test_tool_call_alone_creates_message(self):
        history = [_user()]
        rec = StreamReconstructor(history)
        rec.apply(ToolCallFrame("call_1", "computer", {"action": "screenshot"}))

        assert rec.message is history[-1]
        [invocation] = rec.message.tool_invocations()
        assert invocation.state == InvocationState.PENDING
        assert invocation.args == {"action": "screenshot"}


class TestToolResults:
    def test_result_resolves_matching_invocation(self):
        history = []
        rec = StreamReconstructor(history)
        rec.apply(ToolCallFrame("call_1", "computer", {"action": "screenshot"}))
        rec.apply(ToolCallFrame("call_2", "bash", {"command": "ls"}))
        rec.apply(ToolResultFrame("call_2", TextResult(text="file.txt\n")))

        first, second = rec.message.tool_invocations()
        assert first.state == InvocationState.PENDING
        assert second.state == InvocationState.RESOLVED
        assert second.result == TextResult(text="file.txt\n")

    @pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
    def test_results_in_any_order_reach_their_own_call(self, order):
        rec = StreamReconstructor([])
        for i in range(4):
            rec.apply(ToolCallFrame(f"call_{i}", "bash", {"command": f"echo {i}"}))
        for i in order:
            rec.apply(ToolResultFrame(f"call_{i}", TextResult(text=f"out {i}")))

        invocations = rec.message.tool_invocations()
        assert [inv.tool_call_id for inv in invocations] == [f"call_{i}" for i in range(4)]
        for i, inv in enumerate(invocations):
            assert inv.state == InvocationState.RESOLVED
            assert inv.result == TextResult(text=f"out {i}")

    def test_image_result(self):
        rec = StreamReconstructor([])
        rec.apply(ToolCallFrame("call_1", "computer", {"action": "screenshot"}))
        rec.apply(ToolResultFrame("call_1", ImageResult(data="aGk=")))

        invocation = rec.invocations["call_1"]
        assert isinstance(invocation.result, ImageResult)
        assert invocation.result.raw == b"hi"

    def test_error_result_marks_invocation(self):
        rec = StreamReconstructor([])
        rec.apply(ToolCallFrame("call_1", "bash", {"command": "false"}))
        rec.apply(ToolResultFrame(
            "call_1", TextResult(text="Error executing command: x"), is_error=True,
        ))
        assert rec.invocations["call_1"].state == InvocationState.ERRORED

    def test_unknown_result_is_ignored(self):
        rec = StreamReconstructor([])
        rec.apply(ToolCallFrame("call_1", "bash", {"command": "ls"}))
        rec.apply(ToolResultFrame("call_9", TextResult(text="stray")))

        assert rec.invocations["call_1"].state == InvocationState.PENDING
        assert "call_9" not in rec.invocations

    def test_duplicate_call_id_keeps_first(self):
        rec = StreamReconstructor([])
        rec.apply(ToolCallFrame("call_1", "bash", {"command": "ls"}))
        rec.apply(ToolCallFrame("call_1", "computer", {"action": "wait"}))

        [invocation] = rec.message.tool_invocations()
        assert invocation.tool_name == "bash"

    def test_parts_keep_arrival_order(self):
        rec = StreamReconstructor([])
        rec.apply(TextDelta("Looking. "))
        rec.apply(ToolCallFrame("call_1", "computer", {"action": "screenshot"}))
        rec.apply(TextDelta("Done."))

        types = [p.type for p in rec.message.parts]
        assert types == ["text", "tool-invocation"]
        assert rec.message.content == "Looking. Done."


class TestTerminalFrames:
    def test_finish_records_reason(self):
        rec = StreamReconstructor([])
        rec.apply(FinishFrame("stop"))
        assert rec.finished
        assert rec.finish_reason == "stop"

    def test_error_frame_raises(self):
        rec = StreamReconstructor([])
        rec.apply(TextDelta("partial"))
        with pytest.raises(StreamError, match="quota"):
            rec.apply(ErrorFrame("Error: quota exceeded"))
        assert rec.message.content == "partial"

    def test_legacy_image_frame_is_ignored(self):
        history = []
        rec = StreamReconstructor(history)
        rec.apply(ImageFrame(items=[{"data": "aGk="}]))
        assert history == []


class TestTextSink:
    def test_sink_receives_full_text_and_part_lags(self):
        received = []
        rec = StreamReconstructor(
            [], message_id="m1",
            text_sink=lambda mid, text: received.append((mid, text)),
        )
        rec.apply(TextDelta("ab"))
        rec.apply(TextDelta("cd"))

        assert received == [("m1", "ab"), ("m1", "abcd")]
        assert rec.message.parts[0].text == ""
        assert rec.message.text() == "abcd"

        rec.set_revealed("abc")
        assert rec.message.parts[0].text == "abc"
