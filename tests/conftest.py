import json

import pytest

from surfer.agent import Agent
from surfer.desktop import CommandResult
from surfer.executor import ToolExecutor
from surfer.provider import ModelProvider
from surfer.streaming import StreamChunk, ToolCallFragment


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that streams pre-queued responses. No network calls.

    Each queued response is a list of :class:`StreamChunk`. When the
    queue is empty the ``fallback`` response (if any) is repeated.
    """

    name = "mock"

    def __init__(self):
        self.responses: list[list[StreamChunk]] = []
        self.fallback: list[StreamChunk] | None = None
        self.call_log: list[dict] = []
        self.error: Exception | None = None

    async def stream_complete(self, model, messages, tools=None):
        self.call_log.append({
            "messages": json.loads(json.dumps(messages)),
            "tools": tools,
        })
        if self.error is not None:
            raise self.error
        if self.responses:
            chunks = self.responses.pop(0)
        elif self.fallback is not None:
            chunks = self.fallback
        else:
            raise AssertionError("MockProvider ran out of responses")
        for chunk in chunks:
            yield chunk


# ---------------------------------------------------------------------------
# Response builder helpers
# ---------------------------------------------------------------------------

def make_text_response(*deltas: str) -> list[StreamChunk]:
    """Fake streamed response with text only (no tool calls)."""
    chunks = [StreamChunk(content_delta=d) for d in deltas]
    chunks.append(StreamChunk(finish_reason="stop"))
    return chunks


def make_tool_call_response(
    name: str,
    args: dict,
    call_id: str = "call_1",
    content: str | None = None,
) -> list[StreamChunk]:
    """Fake streamed response with one tool call, arguments split in two."""
    return make_multi_tool_call_response([(name, args, call_id)], content)


def make_multi_tool_call_response(
    calls: list[tuple[str, dict, str]],
    content: str | None = None,
) -> list[StreamChunk]:
    """Fake streamed response containing multiple tool calls.

    Each item in *calls* is ``(tool_name, args_dict, call_id)``.
    """
    chunks = []
    if content:
        chunks.append(StreamChunk(content_delta=content))
    for index, (name, args, call_id) in enumerate(calls):
        raw = json.dumps(args)
        half = len(raw) // 2
        chunks.append(StreamChunk(tool_call_fragments=[
            ToolCallFragment(
                index=index, call_id=call_id, name=name,
                arguments_delta=raw[:half],
            ),
        ]))
        chunks.append(StreamChunk(tool_call_fragments=[
            ToolCallFragment(index=index, arguments_delta=raw[half:]),
        ]))
    chunks.append(StreamChunk(finish_reason="tool_calls"))
    return chunks


# ---------------------------------------------------------------------------
# Fake desktop
# ---------------------------------------------------------------------------

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class FakeDesktop:
    """Records every primitive call. Commands answer from ``commands``."""

    def __init__(self, sandbox_id: str = "abc"):
        self.sandbox_id = sandbox_id
        self.calls: list[tuple] = []
        self.commands: dict[str, CommandResult | Exception] = {}
        self.fail_on: dict[str, Exception] = {}

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    async def is_running(self):
        return True

    async def stream_url(self):
        return f"https://stream.example/{self.sandbox_id}"

    async def screenshot(self):
        self._record("screenshot")
        return PNG_BYTES

    async def move_mouse(self, x, y):
        self._record("move_mouse", x, y)

    async def left_click(self):
        self._record("left_click")

    async def right_click(self):
        self._record("right_click")

    async def middle_click(self):
        self._record("middle_click")

    async def double_click(self):
        self._record("double_click")

    async def write(self, text):
        self._record("write", text)

    async def press(self, key):
        self._record("press", key)

    async def scroll(self, direction, amount):
        self._record("scroll", direction, amount)

    async def drag(self, start, end):
        self._record("drag", start, end)

    async def run(self, command, timeout):
        self._record("run", command, timeout)
        outcome = self.commands.get(command, CommandResult(stdout=""))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def fake_desktop():
    return FakeDesktop()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_executor(fake_desktop, sleeps):
    """Factory fixture for executors bound to the fake desktop."""
    async def _sleep(seconds):
        sleeps.append(seconds)

    def _make(sandbox_id="abc", **kwargs):
        async def factory(sid):
            return fake_desktop
        return ToolExecutor(sandbox_id, factory, sleep=_sleep, **kwargs)
    return _make


@pytest.fixture
def make_agent(mock_provider):
    def _make(system_prompt="You control a desktop.", provider=None):
        return Agent(
            model="mock-model",
            provider=provider or mock_provider,
            system_prompt=system_prompt,
        )
    return _make
