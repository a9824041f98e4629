from surfer.provider import ModelProvider

SYSTEM_PROMPT = """You are Surf, a computer control assistant operating an Ubuntu 22.04 desktop sandbox with Firefox, VS Code, LibreOffice, Python 3, a terminal and standard utilities.

Every response MUST start with a short text message describing what you see and what you will do next. Only then call tools.

Tools:
- computer: control the desktop (screenshot, click, type, key, scroll, drag, wait, ...)
- bash: run terminal commands

Rules:
- Take a screenshot whenever you need to know the current state of the screen.
- Chain several actions per response; do not wait for confirmation.
- If a tool returns an error, read it and correct the call.
"""


class Agent:
    """
    The model-facing half of the agent: which model to call, through which
    provider, and with what instructions. Tools are supplied per request by
    a `ToolExecutor` bound to that request's sandbox.

    Args:
        model: String representing the model name.
        provider: Model provider object that streams completions.
        system_prompt: System prompt injected at call time, never stored
            in history.
        name: Agent name used in traces and logs.
    """
    def __init__(
            self,
            model: str,
            provider: ModelProvider,
            system_prompt: str = SYSTEM_PROMPT,
            name: str = "surf",
    ):
        self.model = model
        self.provider = provider
        self.system_prompt = system_prompt
        self.name = name
