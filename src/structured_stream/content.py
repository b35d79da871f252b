"""Content tree — the canonical JSON-value representation shared by the decoder,
the accumulators, placeholder synthesis and target-type construction."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import DecodeError


class GeneratedContent:
    """Base class of the content tree node kinds.

    The kinds are closed: ``ObjectContent``, ``ArrayContent``,
    ``StringContent``, ``NumberContent``, ``BooleanContent`` and
    ``NullContent``. Nodes are immutable.
    """

    __slots__ = ()

    def to_python(self) -> Any:
        raise NotImplementedError

    @property
    def json_string(self) -> str:
        """Canonical compact JSON rendering."""
        return json.dumps(self.to_python(), separators=(",", ":"), ensure_ascii=False)

    @staticmethod
    def from_python(value: Any) -> "GeneratedContent":
        """Lift a plain Python JSON value into a content tree."""
        if isinstance(value, GeneratedContent):
            return value
        if value is None:
            return NullContent()
        if isinstance(value, bool):
            return BooleanContent(value)
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"Cannot represent non-finite number {value!r} as JSON")
        if isinstance(value, (int, float)):
            return NumberContent(value)
        if isinstance(value, str):
            return StringContent(value)
        if isinstance(value, _Pairs):
            return ObjectContent.from_pairs((k, GeneratedContent.from_python(v)) for k, v in value)
        if isinstance(value, dict):
            return ObjectContent.from_pairs((str(k), GeneratedContent.from_python(v)) for k, v in value.items())
        if isinstance(value, (list, tuple)):
            return ArrayContent(tuple(GeneratedContent.from_python(v) for v in value))
        raise TypeError(f"Cannot convert {type(value).__name__} to generated content")

    @staticmethod
    def from_json(text: str) -> "GeneratedContent":
        """Strictly parse a complete JSON document.

        Object keys keep their source order and duplicate keys resolve to the
        first occurrence.
        """
        try:
            value = json.loads(
                text,
                object_pairs_hook=_Pairs,
                parse_constant=_reject_constant,
                parse_float=parse_finite_float,
            )
            return GeneratedContent.from_python(value)
        except (TypeError, ValueError) as exc:
            position = getattr(exc, "pos", None)
            raise DecodeError(f"Invalid JSON: {exc}", position=position) from exc
        except RecursionError as exc:
            raise DecodeError("JSON nested too deeply") from exc


class _Pairs(list):
    """Ordered key/value pairs as produced by ``json.loads``' pairs hook."""


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant {name}")


def parse_finite_float(token: str) -> float:
    """Parse a JSON number token, rejecting values that overflow to infinity."""
    value = float(token)
    if not math.isfinite(value):
        raise ValueError(f"Number out of range: {token}")
    return value


@dataclass(frozen=True)
class ObjectContent(GeneratedContent):
    properties: Tuple[Tuple[str, GeneratedContent], ...] = ()

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, GeneratedContent]]) -> "ObjectContent":
        """Build an object, keeping the first occurrence of a duplicate key."""
        seen = set()
        kept: List[Tuple[str, GeneratedContent]] = []
        for key, value in pairs:
            if key in seen:
                continue
            seen.add(key)
            kept.append((key, value))
        return cls(tuple(kept))

    def get(self, key: str, default: Optional[GeneratedContent] = None) -> Optional[GeneratedContent]:
        for name, value in self.properties:
            if name == key:
                return value
        return default

    def keys(self) -> List[str]:
        return [name for name, _ in self.properties]

    def __len__(self) -> int:
        return len(self.properties)

    def to_python(self) -> Any:
        return {key: value.to_python() for key, value in self.properties}


@dataclass(frozen=True)
class ArrayContent(GeneratedContent):
    elements: Tuple[GeneratedContent, ...] = ()

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[GeneratedContent]:
        return iter(self.elements)

    def to_python(self) -> Any:
        return [element.to_python() for element in self.elements]


@dataclass(frozen=True)
class StringContent(GeneratedContent):
    value: str

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class NumberContent(GeneratedContent):
    value: Union[int, float]

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class BooleanContent(GeneratedContent):
    value: bool

    def to_python(self) -> Any:
        return self.value


@dataclass(frozen=True)
class NullContent(GeneratedContent):
    def to_python(self) -> Any:
        return None
