"""Session that returns a Pydantic-validated structured response."""

import asyncio
from typing import List

from pydantic import BaseModel

from structured_stream import LanguageModelSession


class MovieReview(BaseModel):
    """A structured movie review."""

    title: str
    year: int
    rating: float
    summary: str
    pros: List[str]
    cons: List[str]


class CriticDeps(BaseModel):
    """Dependencies injected into the instructions at runtime."""

    outlet: str


session = LanguageModelSession(
    provider="anthropic",
    model="claude-sonnet-4-20250514",
    instructions="You are a movie critic for {{deps.outlet}}. Provide structured reviews.",
)


async def main() -> None:
    response = await session.respond(
        "Review the movie 'Inception' (2010)",
        generating=MovieReview,
        deps=CriticDeps(outlet="The Daily Reel"),
    )
    review = response.content
    print(f"Title: {review.title}")
    print(f"Year: {review.year}")
    print(f"Rating: {review.rating}/10")
    print(f"Summary: {review.summary}")
    print(f"Pros: {review.pros}")
    print(f"Cons: {review.cons}")
    print(f"Raw JSON: {response.raw_content.json_string}")


asyncio.run(main())
