import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum

from surfer.agent import Agent
from surfer.executor import ToolExecutor, ToolOutcome
from surfer.instrumentation import (
    agent_span,
    completion_span,
    record_error,
    record_tool_error,
    tool_span,
)
from surfer.message import (
    ImageMessage,
    Message,
    MessageRole,
    ToolCallRequestMessage,
    ToolCallResultMessage,
)
from surfer.protocol import (
    ErrorFrame,
    FinishFrame,
    Frame,
    TextDelta,
    ToolCallFrame,
    ToolResultFrame,
)
from surfer.results import ImageResult, TextResult
from surfer.streaming import ToolCall, ToolCallAccumulator, ToolCallIds

logger = logging.getLogger(__name__)

MAX_TURNS = 100
CONTINUATION_PROMPT = (
    "Continue with more actions. Take a screenshot and then execute "
    "multiple actions."
)


class LoopState(Enum):
    AWAIT_MODEL = "await_model"
    EXECUTE_TOOLS = "execute_tools"
    INJECT_CONTINUATION = "inject_continuation"
    DONE = "done"


@dataclass
class RunResult:
    """The frames of a single Runner.run() invocation."""

    frames: list[Frame] = field(default_factory=list)
    turns: int = 0
    finish_reason: str | None = None
    error: str | None = None


class Runner:
    """Drives the bounded turn loop for one request.

    Each turn streams a model response, forwarding text as it arrives,
    then runs the requested tools one at a time in the order given. A
    turn without tool calls is followed by a continuation prompt, so the
    loop only ends at ``max_turns`` (with a finish frame) or when the
    model service fails (with an error frame).

    The loop appends to ``history`` in place. The system prompt is
    injected at call time and never stored.

    ``run()`` drains ``iter()``.  ``iter()`` is the streaming entry point.

    Args:
        max_turns: Number of model turns before the stream finishes.
        continuation_prompt: User message appended after a turn that
            requested no tools.
    """

    def __init__(
        self,
        max_turns: int = MAX_TURNS,
        continuation_prompt: str = CONTINUATION_PROMPT,
    ):
        self.max_turns = max_turns
        self.continuation_prompt = continuation_prompt
        self.turns = 0

    async def run(
        self, agent: Agent, executor: ToolExecutor, history: list[Message],
    ) -> RunResult:
        """Run the loop to completion and collect its frames."""
        result = RunResult()
        async for frame in self.iter(agent, executor, history):
            result.frames.append(frame)
            if isinstance(frame, FinishFrame):
                result.finish_reason = frame.finish_reason
            elif isinstance(frame, ErrorFrame):
                result.error = frame.message
        result.turns = self.turns
        return result

    async def iter(
        self, agent: Agent, executor: ToolExecutor, history: list[Message],
    ) -> AsyncIterator[Frame]:
        """Run the loop, yielding protocol frames as execution proceeds."""
        tool_schemas = executor.schemas()
        ids = ToolCallIds()
        calls: list[tuple[ToolCall, dict, ToolOutcome | None]] = []
        state = LoopState.AWAIT_MODEL
        self.turns = 0

        async with agent_span(agent.name, agent.model, executor.sandbox_id):
            while state is not LoopState.DONE:
                if state is LoopState.AWAIT_MODEL:
                    if self.turns >= self.max_turns:
                        state = LoopState.DONE
                        continue
                    self.turns += 1
                    logger.info(f"Turn {self.turns}/{self.max_turns}")

                    messages = [
                        {"role": "system", "content": agent.system_prompt},
                        *[m.model_dump() for m in history],
                    ]
                    acc = ToolCallAccumulator()
                    full_content = ""
                    try:
                        async with completion_span(
                            agent.provider.name, agent.model, self.turns,
                        ) as span:
                            try:
                                async for chunk in agent.provider.stream_complete(
                                    model=agent.model, messages=messages,
                                    tools=tool_schemas,
                                ):
                                    if chunk.content_delta:
                                        full_content += chunk.content_delta
                                        yield TextDelta(text=chunk.content_delta)
                                    if chunk.tool_call_fragments:
                                        for frag in chunk.tool_call_fragments:
                                            acc.feed(frag)
                            except Exception as e:
                                record_error(span, e)
                                raise
                    except Exception as e:
                        logger.exception(f"Model call failed on turn {self.turns}")
                        yield ErrorFrame(message=str(e) or type(e).__name__)
                        return

                    calls = []
                    for tc in acc.finalize():
                        tc = ids.assign(tc)
                        args, parse_error = _parse_arguments(tc)
                        if parse_error is not None:
                            # Replayed to the model next turn; must stay valid JSON.
                            tc.arguments = "{}"
                        calls.append((tc, args, parse_error))
                    if calls:
                        history.append(ToolCallRequestMessage(
                            role=MessageRole.ASSISTANT,
                            content=full_content,
                            tool_calls=[tc for tc, _, _ in calls],
                        ))
                        state = LoopState.EXECUTE_TOOLS
                    else:
                        if full_content:
                            history.append(Message(
                                role=MessageRole.ASSISTANT, content=full_content,
                            ))
                        state = LoopState.INJECT_CONTINUATION

                elif state is LoopState.EXECUTE_TOOLS:
                    logger.info(f"Executing {len(calls)} tool calls")
                    results: list[Message] = []
                    images: list[ImageResult] = []
                    for tc, args, parse_error in calls:
                        yield ToolCallFrame(
                            tool_call_id=tc.id, tool_name=tc.name, args=args,
                        )
                        if parse_error is not None:
                            outcome = parse_error
                        else:
                            outcome = await self._execute_one(executor, tc, args)
                        yield ToolResultFrame(
                            tool_call_id=tc.id,
                            result=outcome.result,
                            is_error=outcome.is_error,
                        )
                        results.append(ToolCallResultMessage(
                            role=MessageRole.TOOL,
                            content=_result_for_model(outcome),
                            tool_call_id=tc.id,
                        ))
                        if isinstance(outcome.result, ImageResult):
                            images.append(outcome.result)

                    history.extend(results)
                    for image in images:
                        history.append(ImageMessage(
                            role=MessageRole.USER, image=image,
                        ))
                    calls = []
                    state = LoopState.AWAIT_MODEL

                elif state is LoopState.INJECT_CONTINUATION:
                    logger.debug("No tool calls; injecting continuation prompt")
                    history.append(Message(
                        role=MessageRole.USER, content=self.continuation_prompt,
                    ))
                    state = LoopState.AWAIT_MODEL

        logger.info(f"Reached {self.max_turns} turns; finishing stream")
        yield FinishFrame(finish_reason="stop")

    async def _execute_one(
        self, executor: ToolExecutor, tc: ToolCall, args: dict,
    ) -> ToolOutcome:
        async with tool_span(tc.name, tc.id, args.get("action")) as span:
            outcome = await executor.execute(tc.name, args)
            if outcome.is_error:
                record_tool_error(span, str(outcome.result))
        return outcome


def _parse_arguments(tc: ToolCall) -> tuple[dict, ToolOutcome | None]:
    try:
        return tc.parsed_arguments(), None
    except ValueError as e:
        logger.warning(f"Invalid arguments for {tc.name}: {e}")
        return {}, ToolOutcome(
            TextResult(text=f"Error: invalid arguments: {e}"), is_error=True,
        )


def _result_for_model(outcome: ToolOutcome) -> str:
    if isinstance(outcome.result, ImageResult):
        return "Screenshot captured. The image is attached below."
    return outcome.result.text
