"""Paced reveal of received text.

Text arrives in bursts; the scheduler reveals it one character per tick
so the display moves at a steady rate regardless of network timing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

INTERVAL = 0.02


@dataclass
class RevealTarget:
    message_id: str
    full_text: str
    cursor: int = 0

    @property
    def done(self) -> bool:
        return self.cursor >= len(self.full_text)

    def revealed(self) -> str:
        return self.full_text[:self.cursor]


class TypewriterScheduler:
    """Reveals the text of one message at a fixed rate.

    ``update()`` grows the active target, or replaces it when the text
    belongs to another message. ``start()`` launches the timer task on
    the running loop; each tick advances the cursor by one character and
    publishes the revealed prefix through *on_reveal*. Once the cursor
    reaches the end of the text the timer keeps running but does nothing
    until more text arrives. ``stop()`` must be called when the owner is
    done with it.

    Args:
        on_reveal: Called with ``(message_id, revealed_text)`` on every
            advancing tick.
        interval: Seconds between ticks.
    """

    def __init__(
        self,
        on_reveal: Callable[[str, str], None],
        interval: float = INTERVAL,
    ):
        self.on_reveal = on_reveal
        self.interval = interval
        self.target: RevealTarget | None = None
        self._task: asyncio.Task | None = None
        self._caught_up = asyncio.Event()
        self._caught_up.set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def update(self, message_id: str, full_text: str) -> None:
        """Record the latest full text of *message_id*.

        Text for the active message only ever grows the target; shorter
        text is ignored. Text for any other message replaces the target
        and restarts the reveal from its beginning.
        """
        target = self.target
        if target is not None and target.message_id == message_id:
            if len(full_text) > len(target.full_text):
                target.full_text = full_text
        else:
            if target is not None and not target.done:
                logger.debug(f"Abandoning reveal of {target.message_id}")
            self.target = RevealTarget(message_id=message_id, full_text=full_text)
        if not self.target.done:
            self._caught_up.clear()

    def tick(self) -> bool:
        """Advance the reveal by one character. Returns True if it moved."""
        target = self.target
        if target is None or target.done:
            self._caught_up.set()
            return False
        target.cursor += 1
        self.on_reveal(target.message_id, target.revealed())
        if target.done:
            self._caught_up.set()
        return True

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    async def wait_revealed(self) -> None:
        """Wait until everything received so far is revealed, or stop()."""
        await self._caught_up.wait()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._caught_up.set()
