"""Snapshot accumulation for streamed responses.

Backends send cumulative snapshots ("everything generated so far"), but they
do not promise that successive snapshots grow monotonically. The
accumulators here reconcile such a sequence into one coherent value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from .content import GeneratedContent
from .decoder import decode
from .errors import ConstructionError, DecodeError
from .generable import GenerableType

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Some backends report a literal "null" before any text has been produced.
_NULL_SENTINEL = "null"


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """One streamed update: the typed (partial) value and the content it came from."""

    content: T
    raw_content: GeneratedContent


class TextAccumulator:
    """Reconciles cumulative text snapshots into a single growing text."""

    def __init__(self) -> None:
        self.accumulated_text = ""
        self.last_length = 0

    def feed(self, chunk: str) -> str:
        """Merge one snapshot and return the updated accumulated text."""
        if chunk == _NULL_SENTINEL and not self.accumulated_text:
            chunk = ""

        if len(chunk) >= self.last_length and chunk.startswith(self.accumulated_text):
            # Pure growth: only the new suffix is appended.
            self.accumulated_text += chunk[self.last_length :]
            self.last_length = len(chunk)
        elif self.accumulated_text.startswith(chunk) or chunk.startswith(self.accumulated_text):
            # Shrink or resync: the snapshot replaces what we have.
            self.accumulated_text = chunk
            self.last_length = len(chunk)
        else:
            self.accumulated_text += chunk
            self.last_length = len(self.accumulated_text)
        return self.accumulated_text


class StructuredAccumulator(Generic[T]):
    """Turns cumulative JSON snapshots into partial values of a target type.

    Snapshots that cannot be decoded or constructed are skipped; the next one
    gets another chance.
    """

    def __init__(self, target: GenerableType[T]) -> None:
        self.target = target
        self.did_yield_any = False
        self._text = TextAccumulator()

    def feed(self, json_text: str) -> Optional[Snapshot[Any]]:
        """Decode one cumulative JSON snapshot, or return ``None`` to skip it."""
        try:
            content = decode(json_text)
        except DecodeError:
            content = None

        if content is not None:
            try:
                partial = self.target.construct_partial(content)
            except ConstructionError as exc:
                logger.debug("Partial construction of %s failed: %s", self.target.name, exc)
            else:
                self.did_yield_any = True
                return Snapshot(content=partial, raw_content=content)

        # Fall back to full construction from a strict parse.
        try:
            raw = GeneratedContent.from_json(json_text)
            value = self.target.construct(raw)
        except (DecodeError, ConstructionError) as exc:
            logger.debug("Skipping snapshot of %d chars: %s", len(json_text), exc)
            return None
        self.did_yield_any = True
        return Snapshot(content=self.target.as_partial(value), raw_content=raw)

    def feed_text(self, chunk: str) -> Optional[Snapshot[Any]]:
        """Accumulate an unstructured text snapshot, then decode the whole text as JSON."""
        return self.feed(self._text.feed(chunk))
