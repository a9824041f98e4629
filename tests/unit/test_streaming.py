"""Unit tests for streaming primitives."""

import pytest

from surfer.streaming import (
    ToolCall,
    ToolCallAccumulator,
    ToolCallFragment,
    ToolCallIds,
)


class TestToolCallAccumulator:
    def test_arguments_accumulated_across_fragments(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="computer", arguments_delta='{"act'))
        acc.feed(ToolCallFragment(index=0, arguments_delta='ion": "screenshot"}'))
        result = acc.finalize()

        assert result == [
            ToolCall(id="c1", name="computer", arguments='{"action": "screenshot"}')
        ]

    def test_interleaved_tool_calls_finalize_in_index_order(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=1, call_id="c2", name="bash", arguments_delta='{"command":'))
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="computer", arguments_delta='{"action":'))
        acc.feed(ToolCallFragment(index=1, arguments_delta=' "ls"}'))
        acc.feed(ToolCallFragment(index=0, arguments_delta=' "wait"}'))
        result = acc.finalize()

        assert [tc.id for tc in result] == ["c1", "c2"]
        assert result[1].parsed_arguments() == {"command": "ls"}

    def test_empty_id_fragment_keeps_earlier_id(self):
        acc = ToolCallAccumulator()
        acc.feed(ToolCallFragment(index=0, call_id="c1", name="bash"))
        acc.feed(ToolCallFragment(index=0, call_id="", name="", arguments_delta="{}"))
        assert acc.finalize()[0] == ToolCall(id="c1", name="bash", arguments="{}")

    def test_empty_accumulator(self):
        assert ToolCallAccumulator().finalize() == []


class TestParsedArguments:
    def test_blank_arguments_are_empty(self):
        assert ToolCall(name="computer").parsed_arguments() == {}

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            ToolCall(name="bash", arguments="[1, 2]").parsed_arguments()

    def test_invalid_json_rejected(self):
        with pytest.raises(ValueError):
            ToolCall(name="bash", arguments='{"command": ').parsed_arguments()


class TestToolCallIds:
    def test_keeps_provider_ids(self):
        ids = ToolCallIds()
        assert ids.assign(ToolCall(id="abc")).id == "abc"

    def test_fills_missing_ids(self):
        ids = ToolCallIds()
        assert ids.assign(ToolCall()).id == "call_1"
        assert ids.assign(ToolCall()).id == "call_2"

    def test_replaces_repeated_ids(self):
        ids = ToolCallIds()
        ids.assign(ToolCall(id="call_1"))
        again = ids.assign(ToolCall(id="call_1"))
        assert again.id == "call_2"

    def test_generated_ids_skip_taken_ones(self):
        ids = ToolCallIds()
        ids.assign(ToolCall(id="call_1"))
        assert ids.assign(ToolCall()).id == "call_2"
