"""OpenTelemetry spans for the turn loop.

Tracing is off until :func:`instrument` is called; until then every span
helper yields ``None`` and costs nothing. Needs ``opentelemetry-api``:
``pip install surfer[otel]``.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

TRACER_NAME = "surfer"

_tracer = None


def instrument() -> None:
    """Start emitting spans through the global TracerProvider.

    Raises:
        ImportError: If ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for tracing. "
            "Install it with: pip install surfer[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(TRACER_NAME)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info("Tracing enabled, but no TracerProvider is set; spans are dropped")
    else:
        logger.info("Tracing enabled")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(name: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    kwargs = {"attributes": attributes}
    if client:
        from opentelemetry.trace import SpanKind
        kwargs["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(name, **kwargs) as span:
        yield span


def agent_span(agent_name: str, model: str, sandbox_id: str | None):
    """Span over one request's whole turn loop."""
    attributes = {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.agent.name": agent_name,
        "gen_ai.request.model": model,
    }
    if sandbox_id:
        attributes["surfer.sandbox.id"] = sandbox_id
    return _span(f"invoke_agent {agent_name}", attributes)


def completion_span(system: str, model: str, turn: int):
    """Client span over one streamed model turn."""
    return _span(f"chat {model}", {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
        "gen_ai.request.model": model,
        "surfer.turn": turn,
    }, client=True)


def tool_span(tool_name: str, call_id: str, action: str | None = None):
    attributes = {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
    }
    if action:
        attributes["surfer.tool.action"] = action
    return _span(f"execute_tool {tool_name}", attributes)


def _fail(span, description: str, error_type: str) -> None:
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, description)
    span.set_attribute("error.type", error_type)


def record_error(span, exception: BaseException) -> None:
    """Fail *span* with *exception*. A ``None`` span is ignored."""
    if span is None:
        return
    span.record_exception(exception)
    _fail(span, str(exception), type(exception).__qualname__)


def record_tool_error(span, message: str) -> None:
    """Fail a tool span from the error text the model will see."""
    if span is None:
        return
    _fail(span, message, "tool_error")
