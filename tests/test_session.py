"""Tests for LanguageModelSession — drives a fake provider."""

import asyncio
from typing import List, Literal, Optional
from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel, Field

from structured_stream.config import Settings
from structured_stream.content import ObjectContent, StringContent
from structured_stream.errors import ConstructionError, DecodeError
from structured_stream.generable import generable_type
from structured_stream.provider import ProviderResponse, Usage
from structured_stream.session import LanguageModelSession, Response, ResponseStream


class SentimentResult(BaseModel):
    """Structured output for sentiment analysis."""

    sentiment: Literal["positive", "negative", "neutral"]
    confidence: float


class Headlines(BaseModel):
    titles: List[str]


class AirportCode(BaseModel):
    code: str = Field(pattern=r"^[A-Z]{3}$")


class MyDeps(BaseModel):
    """Schema for deps injection tests."""

    role: str
    company: str


class FakeProvider:
    """Scripted provider: fixed responses, chunk lists and optional errors."""

    provider_name = "fake"
    model_name = "fake-model"

    def __init__(
        self,
        text: str = "",
        json_text: str = "",
        text_chunks: Optional[List[str]] = None,
        json_chunks: Optional[List[str]] = None,
        text_error: Optional[Exception] = None,
        json_error: Optional[Exception] = None,
    ) -> None:
        self.text = text
        self.json_text = json_text
        self.text_chunks = text_chunks or []
        self.json_chunks = json_chunks or []
        self.text_error = text_error
        self.json_error = json_error
        self.requests = []
        self.schema_names = []

    async def generate_text(self, request):
        self.requests.append(request)
        return ProviderResponse(text=self.text, usage=Usage(input_tokens=3, output_tokens=2))

    async def generate_json(self, request, schema, name):
        self.requests.append(request)
        self.schema_names.append(name)
        return ProviderResponse(text=self.json_text, usage=Usage(input_tokens=3, output_tokens=2))

    async def stream_text(self, request):
        self.requests.append(request)
        for chunk in self.text_chunks:
            yield chunk
        if self.text_error is not None:
            raise self.text_error

    async def stream_json(self, request, schema, name):
        self.requests.append(request)
        self.schema_names.append(name)
        for chunk in self.json_chunks:
            yield chunk
        if self.json_error is not None:
            raise self.json_error


class EndlessProvider(FakeProvider):
    """Streams forever and records how far it got and whether it was closed."""

    def __init__(self) -> None:
        super().__init__()
        self.produced = 0
        self.closed = False

    async def stream_text(self, request):
        try:
            while True:
                self.produced += 1
                yield "x" * self.produced
                await asyncio.sleep(0)
        finally:
            self.closed = True


def _session(provider, **kwargs):
    return LanguageModelSession(provider=provider, settings=Settings(), **kwargs)


def _snapshots(stream: ResponseStream) -> list:
    async def consume():
        return [snapshot async for snapshot in stream]

    return asyncio.run(consume())


# --- respond: text ---

def test_respond_text():
    provider = FakeProvider(text="Hello!")
    result = asyncio.run(_session(provider).respond("Hi"))
    assert isinstance(result, Response)
    assert result.content == "Hello!"
    assert result.raw_content == StringContent("Hello!")
    assert provider.requests[0].prompt == "Hi"


# --- respond: structured ---

def test_respond_structured_valid():
    provider = FakeProvider(json_text='{"sentiment": "negative", "confidence": 0.8}')
    result = asyncio.run(_session(provider).respond("Terrible", generating=SentimentResult))
    assert isinstance(result.content, SentimentResult)
    assert result.content.sentiment == "negative"
    assert result.raw_content.json_string == '{"sentiment":"negative","confidence":0.8}'
    assert provider.schema_names == ["SentimentResult"]


def test_respond_structured_truncated_output_is_salvaged():
    provider = FakeProvider(json_text='{"sentiment": "neutral", "confidence": 0.5')
    result = asyncio.run(_session(provider).respond("Meh", generating=SentimentResult))
    assert result.content.sentiment == "neutral"
    assert result.content.confidence == 0.5


def test_respond_structured_garbage_yields_placeholder():
    provider = FakeProvider(json_text="I cannot answer that.")
    result = asyncio.run(_session(provider).respond("?", generating=SentimentResult))
    assert result.content == SentimentResult(sentiment="positive", confidence=0)
    assert result.raw_content.json_string == '{"sentiment":"positive","confidence":0}'


def test_respond_structured_mismatched_value_yields_placeholder():
    provider = FakeProvider(json_text='{"sentiment": "ecstatic", "confidence": 1}')
    result = asyncio.run(_session(provider).respond("!", generating=SentimentResult))
    assert result.content.sentiment == "positive"


def test_respond_empty_array_is_replaced_by_placeholder():
    provider = FakeProvider(json_text='{"titles": []}')
    result = asyncio.run(_session(provider).respond("news", generating=Headlines))
    assert result.content.titles == ["placeholder"]
    assert result.raw_content.json_string == '{"titles":["placeholder"]}'


def test_respond_raises_when_placeholder_does_not_fit():
    provider = FakeProvider(json_text="no idea")
    with pytest.raises(DecodeError):
        asyncio.run(_session(provider).respond("Where?", generating=AirportCode))


# --- Prompt building ---

def test_instructions_render_deps():
    provider = FakeProvider(text="ok")
    session = _session(provider, instructions="You help {{ deps.role }}s at {{ deps.company }}.")
    asyncio.run(session.respond("Hi", deps=MyDeps(role="engineer", company="Acme")))
    assert provider.requests[0].system == "You help engineers at Acme."


def test_schema_is_appended_to_instructions():
    provider = FakeProvider(json_text='{"sentiment": "positive", "confidence": 1}')
    session = _session(provider, instructions="Classify sentiment.")
    asyncio.run(session.respond("Great", generating=SentimentResult))
    system = provider.requests[0].system
    assert system.startswith("Classify sentiment.")
    assert "JSON Schema" in system
    assert '"sentiment"' in system


def test_schema_can_be_left_out_of_prompt():
    provider = FakeProvider(json_text='{"sentiment": "positive", "confidence": 1}')
    asyncio.run(
        _session(provider).respond("Great", generating=SentimentResult, include_schema_in_prompt=False)
    )
    assert provider.requests[0].system is None


def test_request_carries_settings():
    provider = FakeProvider(text="ok")
    session = LanguageModelSession(provider=provider, settings=Settings(max_tokens=100, temperature=0.2))
    asyncio.run(session.respond("Hi"))
    assert provider.requests[0].max_tokens == 100
    assert provider.requests[0].temperature == 0.2


@patch("structured_stream.session.get_provider")
def test_named_provider_uses_factory(mock_get_provider):
    mock_get_provider.return_value = MagicMock()
    session = LanguageModelSession(provider="openai", model="gpt-4o-mini", settings=Settings(max_retries=5))
    mock_get_provider.assert_called_once_with("openai", "gpt-4o-mini", max_retries=5)
    assert session.provider is mock_get_provider.return_value


@patch("structured_stream.session.get_provider")
def test_default_provider_comes_from_settings(mock_get_provider):
    LanguageModelSession(settings=Settings(provider="openai"))
    mock_get_provider.assert_called_once_with("openai", None, max_retries=3)


# --- stream_response: text ---

def test_text_stream_grows():
    provider = FakeProvider(text_chunks=["He", "Hell", "Hello"])
    snapshots = _snapshots(_session(provider).stream_response("Hi"))
    assert [s.content for s in snapshots] == ["He", "Hell", "Hello"]
    assert snapshots[-1].raw_content == StringContent("Hello")


def test_text_stream_error_propagates():
    provider = FakeProvider(text_chunks=["Hel"], text_error=ValueError("connection reset"))
    stream = _session(provider).stream_response("Hi")

    async def consume():
        seen = []
        with pytest.raises(ValueError):
            async for snapshot in stream:
                seen.append(snapshot.content)
        return seen

    assert asyncio.run(consume()) == ["Hel"]


# --- stream_response: structured ---

def test_structured_stream_yields_partials():
    provider = FakeProvider(
        json_chunks=[
            '{"sentiment": "pos',
            '{"sentiment": "positive", "confid',
            '{"sentiment": "positive", "confidence": 0.9}',
        ]
    )
    snapshots = _snapshots(_session(provider).stream_response("Great", generating=SentimentResult))
    assert len(snapshots) == 3
    assert snapshots[0].content.sentiment is None
    assert snapshots[0].raw_content == ObjectContent()
    assert snapshots[1].content.sentiment == "positive"
    assert snapshots[1].content.confidence is None
    assert snapshots[2].content.confidence == 0.9


def test_structured_stream_of_garbage_yields_one_placeholder():
    provider = FakeProvider(json_chunks=["Sorry", "Sorry, I can't"])
    snapshots = _snapshots(_session(provider).stream_response("?", generating=SentimentResult))
    assert len(snapshots) == 1
    assert snapshots[0].content.sentiment == "positive"
    assert snapshots[0].raw_content.json_string == '{"sentiment":"positive","confidence":0}'


def test_structured_stream_falls_back_to_text():
    provider = FakeProvider(
        json_error=RuntimeError("structured output unsupported"),
        text_chunks=['{"sentiment": "neutral"', '{"sentiment": "neutral", "confidence": 0.5}'],
    )
    session = _session(provider)
    snapshots = _snapshots(
        session.stream_response("Meh", generating=SentimentResult, include_schema_in_prompt=False)
    )
    assert [s.content.sentiment for s in snapshots] == ["neutral", "neutral"]
    assert snapshots[-1].content.confidence == 0.5
    # the recovery request always carries the schema
    assert provider.requests[0].system is None
    assert "JSON Schema" in provider.requests[1].system


def test_structured_stream_both_paths_failing_yields_placeholder():
    provider = FakeProvider(json_error=RuntimeError("boom"), text_error=RuntimeError("boom again"))
    snapshots = _snapshots(_session(provider).stream_response("?", generating=SentimentResult))
    assert len(snapshots) == 1
    assert snapshots[0].content.sentiment == "positive"


def test_structured_stream_error_after_snapshot_propagates():
    provider = FakeProvider(json_chunks=['{"sentiment": "positive"'], json_error=RuntimeError("dropped"))
    stream = _session(provider).stream_response("Great", generating=SentimentResult)

    async def consume():
        seen = []
        with pytest.raises(RuntimeError, match="dropped"):
            async for snapshot in stream:
                seen.append(snapshot)
        return seen

    assert len(asyncio.run(consume())) == 1
    # no text fallback once something was delivered
    assert len(provider.requests) == 1


def test_partial_placeholder_skips_value_constraints():
    provider = FakeProvider(json_chunks=["nothing useful"])
    snapshots = _snapshots(_session(provider).stream_response("Where?", generating=AirportCode))
    assert len(snapshots) == 1
    assert snapshots[0].content.code == "placeholder"


def test_structured_stream_raises_when_no_placeholder_fits():
    class Unbuildable:
        name = "Unbuildable"

        def generation_schema(self):
            return generable_type(SentimentResult).generation_schema()

        def construct(self, content):
            raise ConstructionError("never fits")

        construct_partial = construct

        def as_partial(self, value):
            return value

        def content_of(self, value):
            raise NotImplementedError

    provider = FakeProvider(json_chunks=["nothing useful"])
    stream = _session(provider).stream_response("?", generating=Unbuildable())

    async def consume():
        with pytest.raises(ConstructionError):
            async for _ in stream:
                pass

    asyncio.run(consume())


# --- Stream lifecycle ---

def test_closing_stream_cancels_provider():
    provider = EndlessProvider()
    stream = _session(provider).stream_response("Go on")

    async def consume():
        first = None
        async for snapshot in stream:
            first = snapshot
            break
        await stream.aclose()
        return first

    first = asyncio.run(consume())
    assert first.content == "x"
    assert provider.closed
    assert provider.produced <= 3


def test_breaking_out_without_close_cancels_provider():
    provider = EndlessProvider()
    session = _session(provider)

    async def consume():
        async for snapshot in session.stream_response("Go on"):
            break
        for _ in range(10):
            await asyncio.sleep(0)
        return provider.closed

    assert asyncio.run(consume())
    assert provider.produced <= 3


def test_async_with_closes_stream():
    provider = EndlessProvider()

    async def consume():
        async with _session(provider).stream_response("Go on") as stream:
            async for snapshot in stream:
                if len(snapshot.content) == 2:
                    break
        return True

    assert asyncio.run(consume())
    assert provider.closed


def test_collect_returns_last_snapshot():
    provider = FakeProvider(text_chunks=["a", "ab", "abc"])
    last = asyncio.run(_session(provider).stream_response("abc").collect())
    assert last.content == "abc"


def test_iterating_finished_stream_stops():
    provider = FakeProvider(text_chunks=["a"])
    stream = _session(provider).stream_response("a")

    async def consume():
        first = [s async for s in stream]
        second = [s async for s in stream]
        return first, second

    first, second = asyncio.run(consume())
    assert len(first) == 1
    assert second == []
