import logging
from types import SimpleNamespace

import pytest

import surfer.desktop as desktop_mod
from surfer.desktop import (
    CommandResult,
    E2BDesktop,
    connect_desktop,
    desktop_url,
    kill_desktop,
)

_require_e2b = desktop_mod._require_e2b


class FakeSandbox:
    """Stands in for e2b_desktop.Sandbox; records calls by name."""

    created = []
    connected = []
    killed = []
    running = True
    stream_error = None
    kill_error = None

    def __init__(self, sandbox_id="sbx-new"):
        self.sandbox_id = sandbox_id
        self.calls = []
        self.stream = SimpleNamespace(
            start=self._start_stream,
            get_url=lambda: f"https://stream/{self.sandbox_id}",
        )
        self.commands = SimpleNamespace(run=self._run)

    @classmethod
    def create(cls, **kwargs):
        cls.created.append(kwargs)
        return cls()

    @classmethod
    def connect(cls, sandbox_id, api_key=None):
        cls.connected.append(sandbox_id)
        if sandbox_id == "gone":
            raise RuntimeError("sandbox not found")
        if sandbox_id == "missing":
            raise RuntimeError(f"Sandbox {sandbox_id} doesn't exist")
        return cls(sandbox_id)

    def _start_stream(self):
        self.calls.append("stream.start")
        if self.stream_error is not None:
            raise self.stream_error

    def _run(self, command, timeout=None):
        self.calls.append(("run", command, timeout))
        return SimpleNamespace(stdout=None, stderr="", exit_code=0)

    def kill(self):
        if self.kill_error is not None:
            raise self.kill_error
        self.killed.append(self.sandbox_id)

    def is_running(self):
        return self.running

    def screenshot(self):
        return bytearray(b"png")

    def move_mouse(self, x, y):
        self.calls.append(("move_mouse", x, y))


@pytest.fixture(autouse=True)
def fake_e2b(monkeypatch):
    FakeSandbox.created = []
    FakeSandbox.connected = []
    FakeSandbox.killed = []
    FakeSandbox.running = True
    FakeSandbox.stream_error = None
    FakeSandbox.kill_error = None
    monkeypatch.setattr(desktop_mod, "_require_e2b", lambda: FakeSandbox)
    return FakeSandbox


class TestConnectDesktop:
    @pytest.mark.asyncio
    async def test_reconnects_running_sandbox(self):
        desktop = await connect_desktop("sbx-1", api_key="k")

        assert desktop.sandbox_id == "sbx-1"
        assert FakeSandbox.connected == ["sbx-1"]
        assert FakeSandbox.created == []

    @pytest.mark.asyncio
    async def test_creates_when_unreachable(self):
        desktop = await connect_desktop("gone", api_key="k")

        assert desktop.sandbox_id == "sbx-new"
        assert FakeSandbox.created == [
            {"resolution": (1024, 768), "timeout": 300, "api_key": "k"},
        ]

    @pytest.mark.asyncio
    async def test_creates_when_stopped(self):
        FakeSandbox.running = False
        desktop = await connect_desktop("sbx-1")
        assert desktop.sandbox_id == "sbx-new"

    @pytest.mark.asyncio
    async def test_creates_without_id(self):
        await connect_desktop(None)
        assert FakeSandbox.connected == []
        assert len(FakeSandbox.created) == 1

    @pytest.mark.asyncio
    async def test_stream_already_running_is_fine(self):
        FakeSandbox.stream_error = RuntimeError("stream is already running")
        desktop = await connect_desktop("sbx-1")
        assert desktop.sandbox_id == "sbx-1"


class TestDesktopUrl:
    @pytest.mark.asyncio
    async def test_reports_stream_url_and_id(self):
        assert await desktop_url("sbx-1") == {
            "streamUrl": "https://stream/sbx-1", "id": "sbx-1",
        }

    @pytest.mark.asyncio
    async def test_replacement_sandbox_reports_new_id(self):
        info = await desktop_url("gone")
        assert info["id"] == "sbx-new"
        assert info["streamUrl"] == "https://stream/sbx-new"

    @pytest.mark.asyncio
    async def test_uses_given_connect(self, fake_desktop):
        asked = []

        async def connect(sandbox_id):
            asked.append(sandbox_id)
            return fake_desktop

        info = await desktop_url("abc", connect)

        assert asked == ["abc"]
        assert info == {"streamUrl": "https://stream.example/abc", "id": "abc"}
        assert FakeSandbox.connected == []


class TestKillDesktop:
    @pytest.mark.asyncio
    async def test_kills_sandbox(self):
        await kill_desktop("sbx-1", api_key="k")

        assert FakeSandbox.connected == ["sbx-1"]
        assert FakeSandbox.killed == ["sbx-1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sandbox_id", [None, "", "desktop"])
    async def test_placeholder_ids_are_skipped(self, sandbox_id):
        await kill_desktop(sandbox_id)
        assert FakeSandbox.connected == []

    @pytest.mark.asyncio
    async def test_missing_sandbox_counts_as_killed(self, caplog):
        with caplog.at_level(logging.INFO, logger="surfer.desktop"):
            await kill_desktop("missing")

        assert "already gone" in caplog.text
        assert FakeSandbox.killed == []

    @pytest.mark.asyncio
    async def test_other_failures_are_logged_not_raised(self, caplog):
        FakeSandbox.kill_error = RuntimeError("quota")
        with caplog.at_level(logging.ERROR, logger="surfer.desktop"):
            await kill_desktop("sbx-1")

        assert "Failed to kill sandbox sbx-1: quota" in caplog.text


class TestE2BDesktop:
    @pytest.mark.asyncio
    async def test_primitives_delegate_to_sandbox(self):
        sandbox = FakeSandbox("sbx-1")
        desktop = E2BDesktop(sandbox)

        assert await desktop.screenshot() == b"png"
        await desktop.move_mouse(3, 4)
        assert await desktop.stream_url() == "https://stream/sbx-1"
        assert sandbox.calls == [("move_mouse", 3, 4)]

    @pytest.mark.asyncio
    async def test_run_normalizes_result(self):
        sandbox = FakeSandbox("sbx-1")
        result = await E2BDesktop(sandbox).run("ls", timeout=5)

        assert result == CommandResult(stdout="", stderr="", exit_code=0)
        assert sandbox.calls == [("run", "ls", 5)]

    @pytest.mark.asyncio
    async def test_other_stream_errors_propagate(self):
        sandbox = FakeSandbox("sbx-1")
        sandbox.stream_error = RuntimeError("quota")
        with pytest.raises(RuntimeError, match="quota"):
            await E2BDesktop(sandbox).start_stream()


def test_missing_sdk_has_install_hint(monkeypatch):
    monkeypatch.setattr("importlib.util.find_spec", lambda name: None)
    with pytest.raises(ImportError, match="pip install surfer\\[e2b\\]"):
        _require_e2b()
