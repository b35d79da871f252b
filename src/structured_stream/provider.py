"""Provider backends for Anthropic and OpenAI.

A provider turns a prompt into raw output: plain text, or JSON that follows
a generation schema, either in one piece or as a stream of cumulative
snapshots. Decoding that output into typed values is not its concern.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

import anthropic
import openai

from .schema import GenerationSchema, ObjectNode

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o"


@dataclass
class Usage:
    """Token usage information."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ProviderResponse:
    """Normalized non-streaming response from any provider.

    ``text`` holds the generated text, or the JSON document for schema-guided
    generation.
    """

    text: str = ""
    usage: Usage = field(default_factory=Usage)
    raw: Any = None


@dataclass
class GenerationRequest:
    """Everything a provider needs to run one generation."""

    prompt: str
    system: Optional[str] = None
    max_tokens: int = 4096
    temperature: Optional[float] = None


_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


async def _retryable_call(call_fn: Callable[[], Awaitable[Any]], max_retries: int = 3) -> Any:
    """Await call_fn() with automatic retries on transient errors.

    Retries on rate-limit (429), server errors (5xx), and connection errors
    with exponential backoff (1s, 2s, 4s). Non-retryable errors propagate
    immediately.
    """
    last_exc: BaseException | None = None
    for attempt in range(max_retries):
        try:
            return await call_fn()
        except (anthropic.APIConnectionError, openai.APIConnectionError) as exc:
            last_exc = exc
        except (anthropic.APIStatusError, openai.APIStatusError) as exc:
            if exc.status_code not in _RETRYABLE_STATUS_CODES:
                raise
            last_exc = exc
        if attempt < max_retries - 1:
            await asyncio.sleep(2**attempt)
    raise last_exc  # type: ignore[misc]


class Provider(Protocol):
    """Protocol for LLM providers.

    Streams yield cumulative snapshots: each item is everything generated so
    far, not a delta.
    """

    @property
    def provider_name(self) -> str: ...

    @property
    def model_name(self) -> str: ...

    async def generate_text(self, request: GenerationRequest) -> ProviderResponse: ...

    async def generate_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> ProviderResponse: ...

    def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]: ...

    def stream_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> AsyncIterator[str]: ...


def _output_tool(name: str, schema: GenerationSchema) -> Dict[str, Any]:
    """Anthropic tool definition whose input is the structured output.

    The description is the root object's description (a pydantic model's
    docstring), falling back to the output name.
    """
    root = schema.resolved_root()
    description = root.description if isinstance(root, ObjectNode) else None
    return {
        "name": name,
        "description": description or f"Structured output: {name}",
        "input_schema": schema.to_json_schema(),
    }


def _to_openai_response_format(name: str, schema: GenerationSchema) -> Dict[str, Any]:
    """Build an OpenAI ``json_schema`` response format."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": schema.to_json_schema(),
        },
    }


def _is_object_schema(schema: GenerationSchema) -> bool:
    """Both APIs only accept object roots for tool / response-format schemas."""
    return isinstance(schema.resolved_root(), ObjectNode)


def _with_schema_instruction(request: GenerationRequest, schema: GenerationSchema) -> GenerationRequest:
    """Steer plain text generation towards JSON when the API cannot enforce the schema."""
    instruction = (
        "Respond only with JSON that conforms to this JSON Schema:\n"
        + json.dumps(schema.to_json_schema(), indent=2)
    )
    system = f"{request.system}\n\n{instruction}" if request.system else instruction
    return GenerationRequest(
        prompt=request.prompt,
        system=system,
        max_tokens=request.max_tokens,
        temperature=request.temperature,
    )


class AnthropicProvider:
    """Provider implementation for the Anthropic API."""

    def __init__(self, model: str = DEFAULT_ANTHROPIC_MODEL, max_retries: int = 3) -> None:
        self._client = anthropic.AsyncAnthropic()
        self._model = model
        self._max_retries = max_retries

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def model_name(self) -> str:
        return self._model

    def _kwargs(self, request: GenerationRequest) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": request.max_tokens,
        }
        if request.system:
            kwargs["system"] = request.system
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        return kwargs

    def _tool_kwargs(self, request: GenerationRequest, schema: GenerationSchema, name: str) -> Dict[str, Any]:
        kwargs = self._kwargs(request)
        kwargs["tools"] = [_output_tool(name, schema)]
        kwargs["tool_choice"] = {"type": "tool", "name": name}
        return kwargs

    async def _create(self, kwargs: Dict[str, Any]) -> Any:
        return await _retryable_call(
            lambda: self._client.messages.create(**kwargs), max_retries=self._max_retries
        )

    @staticmethod
    def _usage(response: Any) -> Usage:
        return Usage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def generate_text(self, request: GenerationRequest) -> ProviderResponse:
        response = await self._create(self._kwargs(request))
        text = "".join(block.text for block in response.content if block.type == "text")
        return ProviderResponse(text=text, usage=self._usage(response), raw=response)

    async def generate_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> ProviderResponse:
        if not _is_object_schema(schema):
            return await self.generate_text(_with_schema_instruction(request, schema))

        response = await self._create(self._tool_kwargs(request, schema, name))
        text = ""
        for block in response.content:
            if block.type == "tool_use" and block.name == name:
                text = json.dumps(block.input)
                break
            if block.type == "text":
                text += block.text
        return ProviderResponse(text=text, usage=self._usage(response), raw=response)

    async def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        async with self._client.messages.stream(**self._kwargs(request)) as stream:
            async for event in stream:
                if event.type == "text":
                    yield event.snapshot

    async def stream_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> AsyncIterator[str]:
        if not _is_object_schema(schema):
            async for snapshot in self.stream_text(_with_schema_instruction(request, schema)):
                yield snapshot
            return

        buffer = ""
        async with self._client.messages.stream(**self._tool_kwargs(request, schema, name)) as stream:
            async for event in stream:
                if event.type == "input_json" and event.partial_json:
                    buffer += event.partial_json
                    yield buffer


class OpenAIProvider:
    """Provider implementation for the OpenAI API."""

    def __init__(self, model: str = DEFAULT_OPENAI_MODEL, max_retries: int = 3) -> None:
        self._client = openai.AsyncOpenAI()
        self._model = model
        self._max_retries = max_retries

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self._model

    def _kwargs(self, request: GenerationRequest) -> Dict[str, Any]:
        # OpenAI uses system message in the messages list
        messages: List[Dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})

        kwargs: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": request.max_tokens,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        return kwargs

    def _json_kwargs(self, request: GenerationRequest, schema: GenerationSchema, name: str) -> Dict[str, Any]:
        if not _is_object_schema(schema):
            return self._kwargs(_with_schema_instruction(request, schema))
        kwargs = self._kwargs(request)
        kwargs["response_format"] = _to_openai_response_format(name, schema)
        return kwargs

    async def _complete(self, kwargs: Dict[str, Any]) -> ProviderResponse:
        response = await _retryable_call(
            lambda: self._client.chat.completions.create(**kwargs), max_retries=self._max_retries
        )
        text = response.choices[0].message.content or ""
        usage = Usage()
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens or 0,
            )
        return ProviderResponse(text=text, usage=usage, raw=response)

    async def _stream(self, kwargs: Dict[str, Any]) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(**kwargs, stream=True)
        text = ""
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    text += delta
                    yield text
        finally:
            await stream.close()

    async def generate_text(self, request: GenerationRequest) -> ProviderResponse:
        return await self._complete(self._kwargs(request))

    async def generate_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> ProviderResponse:
        return await self._complete(self._json_kwargs(request, schema, name))

    async def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        async for snapshot in self._stream(self._kwargs(request)):
            yield snapshot

    async def stream_json(
        self, request: GenerationRequest, schema: GenerationSchema, name: str
    ) -> AsyncIterator[str]:
        async for snapshot in self._stream(self._json_kwargs(request, schema, name)):
            yield snapshot


def get_provider(provider: str = "anthropic", model: Optional[str] = None, max_retries: int = 3) -> Provider:
    """Factory function to create a provider instance.

    Args:
        provider: "anthropic" or "openai"
        model: Model name override. Defaults to provider-specific default.
        max_retries: Attempts for non-streaming calls on transient errors.
    """
    if provider == "anthropic":
        return AnthropicProvider(model=model or DEFAULT_ANTHROPIC_MODEL, max_retries=max_retries)
    elif provider == "openai":
        return OpenAIProvider(model=model or DEFAULT_OPENAI_MODEL, max_retries=max_retries)
    else:
        raise ValueError(f"Unknown provider: {provider!r}. Use 'anthropic' or 'openai'.")
