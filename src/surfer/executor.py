"""Tool execution against the remote desktop.

Every call resolves to a :class:`ToolOutcome`. Missing arguments,
unsupported actions and failures of the desktop itself come back as text
the model can read and correct; nothing raised by a tool escapes
:meth:`ToolExecutor.execute`.
"""

import asyncio
import logging
from dataclasses import dataclass

from surfer.desktop import Desktop, DesktopFactory
from surfer.results import ImageResult, TextResult
from surfer.tools import (
    BASH_DESCRIPTION,
    BASH_PARAMETERS,
    COMPUTER_DESCRIPTION,
    COMPUTER_PARAMETERS,
    Tool,
)

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 60.0
MAX_WAIT = 2.0
NO_OUTPUT = "(Command executed successfully with no output)"

KEY_MAP = {
    "return": "enter",
    "enter": "enter",
    "tab": "tab",
    "escape": "escape",
    "backspace": "backspace",
    "delete": "delete",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
}


class ToolValidationError(ValueError):
    """The model called a tool with missing or malformed arguments."""


class CommandError(RuntimeError):
    """A shell command exited non-zero or could not be run."""


@dataclass
class ToolOutcome:
    """Result of executing a single tool call."""

    result: TextResult | ImageResult
    is_error: bool = False


def _point(args: dict, key: str, action: str) -> tuple[int, int]:
    value = args.get(key)
    if (
        not isinstance(value, (list, tuple))
        or len(value) != 2
        or not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in value)
    ):
        raise ToolValidationError(
            f"{key} [x, y] required for {action} action"
        )
    return int(value[0]), int(value[1])


class ToolExecutor:
    """Dispatches ``computer`` and ``bash`` calls for one sandbox.

    The desktop is connected on first use and reused for the rest of the
    request.

    Args:
        sandbox_id: Sandbox to act on. Calls fail with a textual error
            when it is missing.
        desktop_factory: Coroutine returning a connected :class:`Desktop`
            for a sandbox id.
        command_timeout: Seconds a bash command may run.
        max_wait: Ceiling in seconds for the ``wait`` action.
        sleep: Coroutine used by ``wait``.
    """

    def __init__(
        self,
        sandbox_id: str | None,
        desktop_factory: DesktopFactory,
        command_timeout: float = COMMAND_TIMEOUT,
        max_wait: float = MAX_WAIT,
        sleep=asyncio.sleep,
    ):
        self.sandbox_id = sandbox_id
        self.desktop_factory = desktop_factory
        self.command_timeout = command_timeout
        self.max_wait = max_wait
        self._sleep = sleep
        self._desktop: Desktop | None = None

        tools = [
            Tool(
                func=self.computer,
                name="computer",
                description=COMPUTER_DESCRIPTION,
                parameters_schema=COMPUTER_PARAMETERS,
            ),
            Tool(
                func=self.bash,
                name="bash",
                description=BASH_DESCRIPTION,
                parameters_schema=BASH_PARAMETERS,
            ),
        ]
        self.tool_registry = {t.name: t for t in tools}
        self._actions = {
            "screenshot": self._screenshot,
            "wait": self._wait,
            "click": self._left_click,
            "left_click": self._left_click,
            "right_click": self._right_click,
            "middle_click": self._middle_click,
            "double_click": self._double_click,
            "move": self._move,
            "mouse_move": self._move,
            "type": self._type,
            "key": self._key,
            "keypress": self._key,
            "scroll": self._scroll,
            "drag": self._drag,
            "left_click_drag": self._drag,
        }

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self.tool_registry.values()]

    async def execute(self, name: str, args: dict) -> ToolOutcome:
        tool_obj = self.tool_registry.get(name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {name}")
            return ToolOutcome(
                TextResult(text=f"Error: tool '{name}' not found"), is_error=True
            )

        logger.info(f"Calling {name} with {args}")
        try:
            result = await tool_obj(**args)
        except ToolValidationError as e:
            logger.info(f"Rejected {name} call: {e}")
            return ToolOutcome(TextResult(text=f"Error: {e}"), is_error=True)
        except CommandError as e:
            logger.warning(f"Bash command failed: {e}")
            return ToolOutcome(
                TextResult(text=f"Error executing command: {e}"), is_error=True
            )
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}")
            return ToolOutcome(TextResult(text=f"Error: {e}"), is_error=True)

        if isinstance(result, str):
            result = TextResult(text=result)
        return ToolOutcome(result)

    async def _get_desktop(self) -> Desktop:
        if not self.sandbox_id:
            raise ToolValidationError("Sandbox ID is required for desktop actions")
        if self._desktop is None:
            self._desktop = await self.desktop_factory(self.sandbox_id)
        return self._desktop

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def computer(self, action: str | None = None, **args):
        handler = self._actions.get(action or "")
        if handler is None:
            raise ToolValidationError(f"Unsupported action: {action}")
        return await handler(args)

    async def bash(self, command: str | None = None, **_):
        if not command or not isinstance(command, str):
            raise ToolValidationError("command required for bash")
        desktop = await self._get_desktop()
        try:
            result = await desktop.run(command, timeout=self.command_timeout)
        except Exception as e:
            raise CommandError(str(e)) from e
        if result.exit_code != 0:
            raise CommandError(
                result.stderr.strip() or f"exited with code {result.exit_code}"
            )
        return result.stdout or NO_OUTPUT

    # ------------------------------------------------------------------
    # Computer actions
    # ------------------------------------------------------------------

    async def _screenshot(self, args: dict) -> ImageResult:
        desktop = await self._get_desktop()
        image = ImageResult.from_bytes(await desktop.screenshot())
        logger.debug(f"Screenshot taken, {len(image.data)} base64 chars")
        return image

    async def _wait(self, args: dict) -> str:
        duration = args.get("duration")
        if not isinstance(duration, (int, float)) or isinstance(duration, bool):
            raise ToolValidationError("duration required for wait action")
        actual = max(0.0, min(float(duration), self.max_wait))
        await self._sleep(actual)
        return f"Waited for {actual:g} seconds"

    async def _left_click(self, args: dict) -> str:
        x, y = _point(args, "coordinate", "click")
        desktop = await self._get_desktop()
        await desktop.move_mouse(x, y)
        await desktop.left_click()
        return f"Left clicked at {x}, {y}"

    async def _right_click(self, args: dict) -> str:
        x, y = _point(args, "coordinate", "right click")
        desktop = await self._get_desktop()
        await desktop.move_mouse(x, y)
        await desktop.right_click()
        return f"Right clicked at {x}, {y}"

    async def _middle_click(self, args: dict) -> str:
        x, y = _point(args, "coordinate", "middle click")
        desktop = await self._get_desktop()
        await desktop.move_mouse(x, y)
        await desktop.middle_click()
        return f"Middle clicked at {x}, {y}"

    async def _double_click(self, args: dict) -> str:
        x, y = _point(args, "coordinate", "double click")
        desktop = await self._get_desktop()
        await desktop.move_mouse(x, y)
        await desktop.double_click()
        return f"Double clicked at {x}, {y}"

    async def _move(self, args: dict) -> str:
        x, y = _point(args, "coordinate", "mouse move")
        desktop = await self._get_desktop()
        await desktop.move_mouse(x, y)
        return f"Moved mouse to {x}, {y}"

    async def _type(self, args: dict) -> str:
        text = args.get("text")
        if not text or not isinstance(text, str):
            raise ToolValidationError("text required for type action")
        desktop = await self._get_desktop()
        await desktop.write(text)
        return f"Typed: {text}"

    async def _key(self, args: dict) -> str:
        key = args.get("text") or args.get("key")
        if not key or not isinstance(key, str):
            raise ToolValidationError(
                "key required for keypress action (use 'text' or 'key' parameter)"
            )
        desktop = await self._get_desktop()
        await desktop.press(KEY_MAP.get(key.lower(), key))
        return f"Pressed key: {key}"

    async def _scroll(self, args: dict) -> str:
        direction = args.get("scroll_direction")
        amount = args.get("scroll_amount")
        if direction not in ("up", "down"):
            raise ToolValidationError(
                "scroll_direction ('up' or 'down') required for scroll action"
            )
        if (
            not isinstance(amount, (int, float))
            or isinstance(amount, bool)
            or amount <= 0
        ):
            raise ToolValidationError("positive scroll_amount required for scroll action")
        desktop = await self._get_desktop()
        await desktop.scroll(direction, int(amount))
        return f"Scrolled {direction} by {int(amount)}"

    async def _drag(self, args: dict) -> str:
        start = _point(args, "start_coordinate", "drag")
        end = _point(args, "coordinate", "drag")
        desktop = await self._get_desktop()
        await desktop.drag(start, end)
        return (
            f"Dragged mouse from {start[0]}, {start[1]} "
            f"to {end[0]}, {end[1]}"
        )
