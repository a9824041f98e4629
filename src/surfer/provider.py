import logging
import os
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from surfer.streaming import StreamChunk, ToolCallFragment

logger = logging.getLogger(__name__)


class ModelProvider:
    """A model service that streams chat completions with tool calls.

    ``name`` identifies the service in traces.
    """

    name = "unknown"

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError
        yield  # pragma: no cover


class OpenAICompatibleProvider(ModelProvider):
    """Any endpoint speaking the OpenAI chat-completions protocol.

    Args:
        base_url: Endpoint root, e.g. ``https://api.openai.com/v1``.
        api_key: Key sent as the bearer token.
        temperature: Sampling temperature, omitted from requests if None.
        top_p: Nucleus sampling mass, omitted from requests if None.
        max_tokens: Output token cap, omitted from requests if None.
    """

    name = "openai_compatible"

    def __init__(
            self,
            base_url: str | None = None,
            api_key: str | None = None,
            temperature: float | None = None,
            top_p: float | None = None,
            max_tokens: int | None = None,
    ):
        self.base_url = base_url
        self.client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            max_retries=5,
            timeout=600.0
        )
        self.sampling = {
            k: v for k, v in {
                "temperature": temperature,
                "top_p": top_p,
                "max_tokens": max_tokens,
            }.items()
            if v is not None
        }

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = dict(self.sampling)
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        stream = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            **kwargs,
        )
        async for event in stream:
            if not event.choices:
                continue
            choice = event.choices[0]
            delta = choice.delta
            fragments = None
            if delta is not None and delta.tool_calls:
                fragments = [
                    ToolCallFragment(
                        index=tc.index if tc.index is not None else i,
                        call_id=tc.id,
                        name=tc.function.name if tc.function else None,
                        arguments_delta=(
                            tc.function.arguments if tc.function else None
                        ),
                    )
                    for i, tc in enumerate(delta.tool_calls)
                ]
            yield StreamChunk(
                content_delta=delta.content if delta is not None else None,
                tool_call_fragments=fragments,
                finish_reason=choice.finish_reason,
            )


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"

    def __init__(self, api_key: str | None = None, **sampling):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        super().__init__(api_key=api_key, **sampling)


class OpenRouter(OpenAICompatibleProvider):
    name = "openrouter"

    def __init__(self, api_key: str | None = None, **sampling):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        super().__init__(
            base_url="https://openrouter.ai/api/v1",
            api_key=api_key,
            **sampling,
        )


class GeminiProvider(OpenAICompatibleProvider):
    """Gemini through Google's OpenAI-compatible endpoint."""

    name = "gemini"

    def __init__(self, api_key: str | None = None, **sampling):
        if not api_key:
            api_key = os.getenv("GEMINI_API_KEY")
        super().__init__(
            base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
            api_key=api_key,
            **sampling,
        )


PROVIDERS = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "openrouter": OpenRouter,
}


def build_provider(name: str, api_key: str | None = None, **sampling) -> ModelProvider:
    try:
        provider_cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown provider {name!r}; expected one of {sorted(PROVIDERS)}"
        ) from None
    logger.info(f"Using {name} provider")
    return provider_cls(api_key=api_key, **sampling)
