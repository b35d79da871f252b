"""Stream a typed value as it is generated, then plain text."""

import asyncio
from typing import List

from pydantic import BaseModel

from structured_stream import LanguageModelSession


class Itinerary(BaseModel):
    """A short trip plan."""

    city: str
    days: int
    activities: List[str]


session = LanguageModelSession(provider="openai", model="gpt-4o")


async def main() -> None:
    # Each snapshot is a partial Itinerary; fields fill in as they arrive
    async with session.stream_response("Plan three days in Lisbon", generating=Itinerary) as stream:
        async for snapshot in stream:
            print(snapshot.content)

    # Plain text streams carry the accumulated text so far
    async with session.stream_response("Describe Lisbon in two sentences") as stream:
        async for snapshot in stream:
            print(f"\r{snapshot.content}", end="", flush=True)
    print()


asyncio.run(main())
