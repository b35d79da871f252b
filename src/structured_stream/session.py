"""Session façade — single responses and live streams of typed values."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar, Union

import jinja2
from opentelemetry import trace
from pydantic import BaseModel

from .accumulator import Snapshot, StructuredAccumulator, TextAccumulator
from .config import Settings, load_settings
from .content import GeneratedContent, StringContent
from .decoder import decode
from .errors import ConstructionError, DecodeError
from .generable import GenerableType, generable_type
from .placeholder import synthesize_schema
from .provider import GenerationRequest, Provider, get_provider
from .tracing import (
    llm_span,
    record_assistant_message,
    record_fallback,
    record_snapshots,
    record_usage,
    record_user_message,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA_TEMPLATE = jinja2.Template(
    "{% if instructions %}{{ instructions }}\n\n{% endif %}"
    "Respond with JSON that conforms to this JSON Schema:\n{{ schema }}"
)

# Any empty array in a final structured value is treated as a failed
# generation and replaced by the placeholder.
_EMPTY_ARRAY_MARKER = "[]"

Emit = Callable[[Snapshot[Any]], Awaitable[None]]


@dataclass(frozen=True)
class Response(Generic[T]):
    """Result of ``LanguageModelSession.respond``."""

    content: T
    raw_content: GeneratedContent


_END = object()


@dataclass(frozen=True)
class _Failure:
    error: BaseException


class ResponseStream(Generic[T]):
    """A live, ordered sequence of snapshots.

    One producer task pulls from the provider and pushes snapshots into a
    bounded queue; the consumer iterates. The producer starts on first
    iteration. Closing the stream (``aclose``, leaving ``async with``, or
    dropping an unfinished stream) cancels the producer, which in turn
    cancels the in-flight provider request.

    Usage:
        async with session.stream_response("...", generating=Person) as stream:
            async for snapshot in stream:
                print(snapshot.content)
    """

    def __init__(self, produce: Callable[[Emit], Awaitable[None]], buffer_size: int = 1) -> None:
        self._produce = produce
        self._buffer_size = buffer_size
        self._queue: Optional["asyncio.Queue[Any]"] = None
        self._task: Optional["asyncio.Task[None]"] = None
        self._finished = False

    def _start(self) -> None:
        self._queue = asyncio.Queue(maxsize=self._buffer_size)
        self._task = asyncio.get_running_loop().create_task(self._run(self._produce, self._queue))

    @staticmethod
    async def _run(produce: Callable[[Emit], Awaitable[None]], queue: "asyncio.Queue[Any]") -> None:
        # Must not reference the stream: dropping the stream has to trigger __del__.
        try:
            await produce(queue.put)
        except Exception as exc:
            await queue.put(_Failure(exc))
        else:
            await queue.put(_END)

    def __aiter__(self) -> "ResponseStream[T]":
        return self

    async def __anext__(self) -> Snapshot[T]:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._start()
        assert self._queue is not None
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._finished = True
            raise item.error
        return item

    async def aclose(self) -> None:
        """Stop the stream and wait for the producer to wind down."""
        self._finished = True
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    async def __aenter__(self) -> "ResponseStream[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def __del__(self) -> None:
        task = self._task
        if task is not None and not task.done() and not task.get_loop().is_closed():
            task.cancel()

    async def collect(self) -> Optional[Snapshot[T]]:
        """Drain the stream and return its final snapshot."""
        last: Optional[Snapshot[T]] = None
        async with self:
            async for snapshot in self:
                last = snapshot
        return last


@asynccontextmanager
async def _closing(iterator: AsyncIterator[str]) -> AsyncIterator[AsyncIterator[str]]:
    """Close a provider stream even when iteration is interrupted."""
    try:
        yield iterator
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


def _target_type(generating: Any) -> Optional[GenerableType]:
    if generating is None or generating is str:
        return None
    return generable_type(generating)


class LanguageModelSession:
    """Requests text or typed, schema-conforming output from a provider.

    Args:
        provider: Provider name ("anthropic" or "openai") or a Provider instance.
            Defaults to the configured provider.
        model: Model name override for named providers.
        instructions: Jinja2 template for the system prompt; ``deps`` passed to
            ``respond``/``stream_response`` is available as ``{{deps.field}}``.
        max_tokens: Max tokens per response.
        temperature: Sampling temperature.
        settings: Explicit settings instead of the environment.
    """

    def __init__(
        self,
        provider: Union[str, Provider, None] = None,
        model: Optional[str] = None,
        instructions: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or load_settings()
        if provider is None or isinstance(provider, str):
            self._provider: Provider = get_provider(
                provider or settings.provider,
                model or settings.model,
                max_retries=settings.max_retries,
            )
        else:
            self._provider = provider
        self._instructions = instructions
        self._max_tokens = max_tokens if max_tokens is not None else settings.max_tokens
        self._temperature = temperature if temperature is not None else settings.temperature

    @property
    def provider(self) -> Provider:
        return self._provider

    # --- Public API ---

    async def respond(
        self,
        prompt: str,
        *,
        generating: Any = str,
        deps: Optional[BaseModel] = None,
        include_schema_in_prompt: bool = True,
    ) -> Response[Any]:
        """Generate a single response.

        Args:
            prompt: The user's input.
            generating: ``str`` for plain text, or a Pydantic model class
                (or any ``GenerableType``) for structured output.
            deps: Optional Pydantic model rendered into the instructions.
            include_schema_in_prompt: Append the JSON Schema to the system prompt.

        Returns:
            A ``Response`` whose content is the text or a validated instance.

        Raises:
            ConstructionError: if neither the output nor a placeholder fits
                the target type.
        """
        target = _target_type(generating)
        request = self._build_request(prompt, target, deps, include_schema_in_prompt)

        with self._span("respond", target) as span:
            record_user_message(span, prompt)
            if target is None:
                response = await self._provider.generate_text(request)
                record_usage(span, response.usage.input_tokens, response.usage.output_tokens)
                record_assistant_message(span, response.text)
                return Response(content=response.text, raw_content=StringContent(response.text))

            response = await self._provider.generate_json(request, target.generation_schema(), target.name)
            record_usage(span, response.usage.input_tokens, response.usage.output_tokens)
            record_assistant_message(span, response.text)
            return self._decode_final(target, response.text, span)

    def stream_response(
        self,
        prompt: str,
        *,
        generating: Any = str,
        deps: Optional[BaseModel] = None,
        include_schema_in_prompt: bool = True,
    ) -> ResponseStream[Any]:
        """Stream progressively more complete snapshots.

        For ``str`` each snapshot holds the accumulated text. For structured
        types each snapshot holds a partial instance; a structured stream
        always delivers at least one snapshot (a placeholder if nothing could
        be decoded).
        """
        target = _target_type(generating)
        request = self._build_request(prompt, target, deps, include_schema_in_prompt)
        if target is None:
            return ResponseStream(lambda emit: self._produce_text(request, emit))

        recovery_request = self._build_request(prompt, target, deps, include_schema=True)
        return ResponseStream(
            lambda emit: self._produce_structured(request, recovery_request, target, emit)
        )

    # --- Prompt rendering ---

    def _render_instructions(self, deps: Optional[BaseModel]) -> str:
        if not self._instructions:
            return ""
        deps_dict = deps.model_dump() if deps else {}
        template = jinja2.Template(self._instructions, undefined=jinja2.Undefined)
        return template.render(deps=deps_dict)

    def _build_request(
        self,
        prompt: str,
        target: Optional[GenerableType],
        deps: Optional[BaseModel],
        include_schema: bool,
    ) -> GenerationRequest:
        system = self._render_instructions(deps)
        if target is not None and include_schema:
            schema_json = json.dumps(target.generation_schema().to_json_schema(), indent=2)
            system = _SCHEMA_TEMPLATE.render(instructions=system, schema=schema_json)
        return GenerationRequest(
            prompt=prompt,
            system=system or None,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )

    def _span(self, operation: str, target: Optional[GenerableType]) -> Any:
        return llm_span(
            provider_name=self._provider.provider_name,
            model=self._provider.model_name,
            operation=operation,
            output_type=target.name if target is not None else None,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )

    # --- Final decoding ---

    def _decode_final(self, target: GenerableType, json_text: str, span: trace.Span) -> Response[Any]:
        """Direct construction, then tolerant decoding, then a placeholder."""
        try:
            raw = GeneratedContent.from_json(json_text)
            value = target.construct(raw)
        except (DecodeError, ConstructionError) as exc:
            error = exc
        else:
            return self._finalize(target, value, span)

        logger.debug("Direct construction of %s failed: %s", target.name, error)
        try:
            value = target.construct(decode(json_text))
        except (DecodeError, ConstructionError) as exc:
            logger.warning("Tolerant decoding of %s failed: %s", target.name, exc)
        else:
            record_fallback(span, "tolerant_decode", str(error))
            return self._finalize(target, value, span)

        placeholder = self._placeholder(target)
        if placeholder is None:
            raise error
        logger.warning("Using placeholder %s for %s", placeholder.raw_content.json_string, target.name)
        record_fallback(span, "placeholder", str(error))
        return placeholder

    def _finalize(self, target: GenerableType, value: Any, span: trace.Span) -> Response[Any]:
        raw = target.content_of(value)
        if _EMPTY_ARRAY_MARKER in raw.json_string:
            placeholder = self._placeholder(target)
            if placeholder is not None:
                logger.warning("%s output contains an empty array; substituting placeholder", target.name)
                record_fallback(span, "empty_array", raw.json_string)
                return placeholder
        return Response(content=value, raw_content=raw)

    @staticmethod
    def _placeholder(target: GenerableType) -> Optional[Response[Any]]:
        raw = synthesize_schema(target.generation_schema())
        try:
            return Response(content=target.construct(raw), raw_content=raw)
        except ConstructionError as exc:
            logger.error("Placeholder for %s could not be constructed: %s", target.name, exc)
            return None

    @staticmethod
    def _placeholder_snapshot(target: GenerableType) -> Optional[Snapshot[Any]]:
        raw = synthesize_schema(target.generation_schema())
        try:
            return Snapshot(content=target.construct_partial(raw), raw_content=raw)
        except ConstructionError:
            pass
        try:
            return Snapshot(content=target.as_partial(target.construct(raw)), raw_content=raw)
        except ConstructionError as exc:
            logger.error("Placeholder for %s could not be constructed: %s", target.name, exc)
            return None

    # --- Stream producers ---

    async def _produce_text(self, request: GenerationRequest, emit: Emit) -> None:
        accumulator = TextAccumulator()
        count = 0
        with self._span("stream", None) as span:
            record_user_message(span, request.prompt)
            async with _closing(self._provider.stream_text(request)) as chunks:
                async for chunk in chunks:
                    text = accumulator.feed(chunk)
                    await emit(Snapshot(content=text, raw_content=StringContent(text)))
                    count += 1
            record_snapshots(span, count)
            record_assistant_message(span, accumulator.accumulated_text)

    async def _produce_structured(
        self,
        request: GenerationRequest,
        recovery_request: GenerationRequest,
        target: GenerableType,
        emit: Emit,
    ) -> None:
        accumulator: StructuredAccumulator[Any] = StructuredAccumulator(target)
        count = 0
        with self._span("stream", target) as span:
            record_user_message(span, request.prompt)
            try:
                stream = self._provider.stream_json(request, target.generation_schema(), target.name)
                async with _closing(stream) as snapshots:
                    async for json_text in snapshots:
                        snapshot = accumulator.feed(json_text)
                        if snapshot is not None:
                            await emit(snapshot)
                            count += 1
            except Exception as exc:
                if accumulator.did_yield_any:
                    raise
                logger.warning("Structured stream for %s failed (%s); retrying as text", target.name, exc)
                record_fallback(span, "text_stream", repr(exc))
                count += await self._recover_from_text(recovery_request, accumulator, emit, span)

            if not accumulator.did_yield_any:
                snapshot = self._placeholder_snapshot(target)
                if snapshot is None:
                    raise ConstructionError(f"Placeholder for {target.name} could not be constructed")
                logger.warning("No snapshot of %s could be decoded; yielding placeholder", target.name)
                record_fallback(span, "placeholder", "no snapshot decoded")
                await emit(snapshot)
                count += 1
            record_snapshots(span, count)

    async def _recover_from_text(
        self,
        request: GenerationRequest,
        accumulator: StructuredAccumulator[Any],
        emit: Emit,
        span: trace.Span,
    ) -> int:
        """Re-read the response as plain text and decode the accumulated text as JSON."""
        count = 0
        try:
            async with _closing(self._provider.stream_text(request)) as chunks:
                async for chunk in chunks:
                    snapshot = accumulator.feed_text(chunk)
                    if snapshot is not None:
                        await emit(snapshot)
                        count += 1
        except Exception as exc:
            logger.warning("Text recovery for %s failed: %s", accumulator.target.name, exc)
            record_fallback(span, "text_stream_failed", repr(exc))
        return count
