import json
from typing import Callable

from pydantic import BaseModel, Field

COMPUTER_ACTIONS = (
    "screenshot, click, left_click, right_click, middle_click, double_click, "
    "type, key, keypress, move, mouse_move, scroll, wait, drag, left_click_drag"
)


class Tool(BaseModel):
    """A callable the model may request, with its declared parameters.

    ``model_dump()`` returns the OpenAI function-tool schema rather than
    the model's own fields.
    """
    func: Callable = Field(exclude=True)
    name: str
    description: str
    parameters_schema: dict
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        return self.get_schema()

    def model_dump_json(self, **kwargs):
        return json.dumps(self.get_schema())

    def get_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    async def __call__(self, **kwargs):
        return await self.func(**kwargs)


def _coordinate(description: str) -> dict:
    return {
        "type": "array",
        "items": {"type": "number"},
        "description": description,
    }


COMPUTER_PARAMETERS = {
    "type": "object",
    "properties": {
        "action": {
            "type": "string",
            "description": f"The action to perform: {COMPUTER_ACTIONS}",
        },
        "coordinate": _coordinate("The [x, y] coordinate for mouse actions"),
        "start_coordinate": _coordinate(
            "Starting [x, y] coordinate for drag actions"
        ),
        "text": {
            "type": "string",
            "description": "Text to type or key to press",
        },
        "key": {
            "type": "string",
            "description": "Key to press (alternative to 'text' parameter)",
        },
        "scroll_direction": {
            "type": "string",
            "enum": ["up", "down"],
            "description": "Direction to scroll: up or down",
        },
        "scroll_amount": {
            "type": "number",
            "description": "Amount to scroll",
        },
        "duration": {
            "type": "number",
            "description": "Duration in seconds for wait action",
        },
    },
    "required": ["action"],
}

BASH_PARAMETERS = {
    "type": "object",
    "properties": {
        "command": {
            "type": "string",
            "description": "The bash command to execute",
        },
    },
    "required": ["command"],
}

COMPUTER_DESCRIPTION = (
    "Control the computer desktop with various actions like clicking, "
    "typing, taking screenshots, etc."
)
BASH_DESCRIPTION = "Execute bash commands on the computer"
