"""Desktop-control collaborator.

The executor only talks to the :class:`Desktop` protocol. The
:class:`E2BDesktop` adapter implements it on top of an E2B desktop
sandbox; it requires ``e2b-desktop``: ``pip install surfer[e2b]``.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

RESOLUTION = (1024, 768)
SANDBOX_TIMEOUT = 300
# Id the web client sends before it has a sandbox.
PLACEHOLDER_ID = "desktop"


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class Desktop(Protocol):
    """Primitives of a remote virtual desktop."""

    sandbox_id: str

    async def is_running(self) -> bool: ...

    async def stream_url(self) -> str | None: ...

    async def screenshot(self) -> bytes: ...

    async def move_mouse(self, x: int, y: int) -> None: ...

    async def left_click(self) -> None: ...

    async def right_click(self) -> None: ...

    async def middle_click(self) -> None: ...

    async def double_click(self) -> None: ...

    async def write(self, text: str) -> None: ...

    async def press(self, key: str) -> None: ...

    async def scroll(self, direction: str, amount: int) -> None: ...

    async def drag(self, start: tuple[int, int], end: tuple[int, int]) -> None: ...

    async def run(self, command: str, timeout: float) -> CommandResult: ...


DesktopFactory = Callable[[str], Awaitable[Desktop]]
DesktopKiller = Callable[[str], Awaitable[None]]


def _require_e2b():
    if importlib.util.find_spec("e2b_desktop") is None:
        raise ImportError(
            "e2b-desktop is required for sandbox control. "
            "Install it with: pip install surfer[e2b]"
        )
    from e2b_desktop import Sandbox
    return Sandbox


class E2BDesktop:
    """:class:`Desktop` over an E2B sandbox.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    def __init__(self, sandbox: Any):
        self._sandbox = sandbox
        self.sandbox_id = sandbox.sandbox_id

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def is_running(self) -> bool:
        return await self._call(self._sandbox.is_running)

    async def start_stream(self) -> None:
        try:
            await self._call(self._sandbox.stream.start)
        except Exception as e:
            if "already running" not in str(e):
                raise

    async def stream_url(self) -> str | None:
        return await self._call(self._sandbox.stream.get_url)

    async def screenshot(self) -> bytes:
        return bytes(await self._call(self._sandbox.screenshot))

    async def move_mouse(self, x: int, y: int) -> None:
        await self._call(self._sandbox.move_mouse, x, y)

    async def left_click(self) -> None:
        await self._call(self._sandbox.left_click)

    async def right_click(self) -> None:
        await self._call(self._sandbox.right_click)

    async def middle_click(self) -> None:
        await self._call(self._sandbox.middle_click)

    async def double_click(self) -> None:
        await self._call(self._sandbox.double_click)

    async def write(self, text: str) -> None:
        await self._call(self._sandbox.write, text)

    async def press(self, key: str) -> None:
        await self._call(self._sandbox.press, key)

    async def scroll(self, direction: str, amount: int) -> None:
        await self._call(self._sandbox.scroll, direction, amount)

    async def drag(self, start: tuple[int, int], end: tuple[int, int]) -> None:
        await self._call(self._sandbox.drag, start, end)

    async def run(self, command: str, timeout: float) -> CommandResult:
        result = await self._call(
            self._sandbox.commands.run, command, timeout=timeout
        )
        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_code=result.exit_code,
        )


async def connect_desktop(
    sandbox_id: str | None,
    api_key: str | None = None,
    resolution: tuple[int, int] = RESOLUTION,
    timeout: int = SANDBOX_TIMEOUT,
) -> E2BDesktop:
    """Reconnect to a running sandbox by id, or create a new one.

    A sandbox that cannot be reached or is no longer running is replaced
    by a fresh one; the live view stream is started either way.
    """
    Sandbox = _require_e2b()
    if sandbox_id:
        try:
            sandbox = await asyncio.to_thread(
                Sandbox.connect, sandbox_id, api_key=api_key
            )
            desktop = E2BDesktop(sandbox)
            if await desktop.is_running():
                await desktop.start_stream()
                return desktop
            logger.info(f"Sandbox {sandbox_id} is not running; creating a new one")
        except Exception as e:
            logger.warning(f"Could not connect to sandbox {sandbox_id}: {e}")

    sandbox = await asyncio.to_thread(
        Sandbox.create,
        resolution=resolution,
        timeout=timeout,
        api_key=api_key,
    )
    desktop = E2BDesktop(sandbox)
    logger.info(f"Created sandbox {desktop.sandbox_id}")
    await desktop.start_stream()
    return desktop


async def desktop_url(
    sandbox_id: str | None = None,
    connect: DesktopFactory | None = None,
) -> dict[str, str | None]:
    """Live view URL and id of the desktop for *sandbox_id*.

    The id in the answer differs from the one asked for when the sandbox
    had to be replaced.
    """
    desktop = await (connect or connect_desktop)(sandbox_id)
    return {"streamUrl": await desktop.stream_url(), "id": desktop.sandbox_id}


async def kill_desktop(sandbox_id: str | None, api_key: str | None = None) -> None:
    """Shut a sandbox down.

    A sandbox that no longer exists counts as killed. Other failures are
    logged, never raised.
    """
    if not sandbox_id or sandbox_id == PLACEHOLDER_ID:
        logger.info("No sandbox id to kill")
        return
    Sandbox = _require_e2b()
    try:
        sandbox = await asyncio.to_thread(Sandbox.connect, sandbox_id, api_key=api_key)
        await asyncio.to_thread(sandbox.kill)
    except Exception as e:
        if "doesn't exist" in str(e) or "404" in str(e):
            logger.info(f"Sandbox {sandbox_id} is already gone")
            return
        logger.error(f"Failed to kill sandbox {sandbox_id}: {e}")
        return
    logger.info(f"Killed sandbox {sandbox_id}")
