"""Session with OpenTelemetry tracing enabled."""

import asyncio

from pydantic import BaseModel

from structured_stream import LanguageModelSession, setup_tracing

# Set up tracing with console exporter (prints spans to stdout)
setup_tracing(service_name="tracing-example")


class Sentiment(BaseModel):
    """Sentiment of a piece of text."""

    label: str
    confidence: float


session = LanguageModelSession(provider="anthropic", model="claude-sonnet-4-20250514")


async def main() -> None:
    response = await session.respond("Classify: 'The update broke everything.'", generating=Sentiment)
    print(f"\nSession response: {response.content}")


asyncio.run(main())
