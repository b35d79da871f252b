"""OpenTelemetry instrumentation for generation calls."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

_tracer: Optional[trace.Tracer] = None


def setup_tracing(
    exporter: Optional[SpanExporter] = None,
    service_name: str = "structured-stream",
) -> trace.Tracer:
    """Configure OpenTelemetry tracing for sessions.

    Args:
        exporter: A span exporter. Defaults to ConsoleSpanExporter.
        service_name: The service name for the tracer.

    Returns:
        A configured Tracer instance.
    """
    global _tracer

    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if exporter is None:
        exporter = ConsoleSpanExporter()

    provider.add_span_processor(SimpleSpanProcessor(exporter))
    _tracer = provider.get_tracer("structured-stream")
    return _tracer


def get_tracer() -> Optional[trace.Tracer]:
    """Get the current tracer, if tracing has been set up."""
    return _tracer


@contextmanager
def llm_span(
    provider_name: str,
    model: str,
    operation: str = "respond",
    output_type: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Iterator[trace.Span]:
    """Create a span around a generation following GenAI semantic conventions.

    Args:
        provider_name: "anthropic" or "openai"
        model: The model name
        operation: "respond" or "stream"
        output_type: Name of the requested structured type, if any
        temperature: Request temperature if set
        max_tokens: Request max tokens if set
    """
    tracer = get_tracer()
    if tracer is None:
        # No-op: yield a non-recording span
        yield trace.INVALID_SPAN
        return

    with tracer.start_as_current_span(f"llm.{operation} {provider_name}.{model}") as span:
        span.set_attribute("gen_ai.system", provider_name)
        span.set_attribute("gen_ai.request.model", model)
        span.set_attribute("gen_ai.operation.name", operation)
        if output_type is not None:
            span.set_attribute("gen_ai.output.type", output_type)
        if temperature is not None:
            span.set_attribute("gen_ai.request.temperature", temperature)
        if max_tokens is not None:
            span.set_attribute("gen_ai.request.max_tokens", max_tokens)
        yield span


def record_user_message(span: trace.Span, content: str) -> None:
    """Record the prompt as a span event."""
    if span.is_recording():
        span.add_event("gen_ai.user.message", attributes={"content": content})


def record_assistant_message(span: trace.Span, content: str) -> None:
    """Record the final output as a span event."""
    if span.is_recording():
        span.add_event("gen_ai.assistant.message", attributes={"content": content})


def record_fallback(span: trace.Span, stage: str, reason: str) -> None:
    """Record a recovery step (text stream, tolerant decode, placeholder)."""
    if span.is_recording():
        span.add_event("structured_stream.fallback", attributes={"stage": stage, "reason": reason})


def record_snapshots(span: trace.Span, count: int) -> None:
    """Record how many snapshots a stream delivered."""
    if span.is_recording():
        span.set_attribute("structured_stream.snapshots", count)


def record_usage(span: trace.Span, input_tokens: int, output_tokens: int) -> None:
    """Record token usage on the span."""
    if span.is_recording():
        span.set_attribute("gen_ai.usage.input_tokens", input_tokens)
        span.set_attribute("gen_ai.usage.output_tokens", output_tokens)
