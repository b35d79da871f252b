"""Tolerant JSON decoder for possibly truncated model output.

Streaming backends hand over JSON that can be cut at any byte. ``decode``
first tries a strict parse and, failing that, salvages the longest prefix of
the text that forms a structurally valid value:

* an unterminated string, literal or number at the end of input is dropped,
  together with the key it belongs to;
* open objects and arrays are closed implicitly, keeping their complete (or
  recursively salvaged) members;
* dangling keys, colons and commas are dropped;
* a syntax error at position ``p`` is treated as if the input ended at ``p``.
"""

from __future__ import annotations

import json
import re
from typing import List, Tuple

from .content import (
    ArrayContent,
    BooleanContent,
    GeneratedContent,
    NullContent,
    NumberContent,
    ObjectContent,
    StringContent,
    parse_finite_float,
)
from .errors import DecodeError

_WHITESPACE = " \t\n\r"
_NUMBER_CHARS = "+-0123456789.eE"
_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?\Z")
_LITERALS = (
    ("true", BooleanContent(True)),
    ("false", BooleanContent(False)),
    ("null", NullContent()),
)


class _Incomplete(Exception):
    """The input ended inside a scalar value."""


class _Malformed(Exception):
    def __init__(self, position: int) -> None:
        super().__init__(position)
        self.position = position


class _Scanner:
    """Recursive-descent scanner that closes containers at end of input."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def skip_whitespace(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def value(self) -> GeneratedContent:
        self.skip_whitespace()
        if self.at_end():
            raise _Incomplete()
        char = self.text[self.pos]
        if char == "{":
            return self.object()
        if char == "[":
            return self.array()
        if char == '"':
            return StringContent(self.string())
        if char in _NUMBER_CHARS:
            return self.number()
        return self.literal()

    def object(self) -> ObjectContent:
        self.pos += 1
        pairs: List[Tuple[str, GeneratedContent]] = []
        while True:
            self.skip_whitespace()
            if self.at_end():
                break
            if self.text[self.pos] == "}":
                self.pos += 1
                break
            if self.text[self.pos] != '"':
                raise _Malformed(self.pos)
            try:
                key = self.string()
            except _Incomplete:
                break
            self.skip_whitespace()
            if self.at_end():
                break
            if self.text[self.pos] != ":":
                raise _Malformed(self.pos)
            self.pos += 1
            try:
                item = self.value()
            except _Incomplete:
                break
            pairs.append((key, item))
            self.skip_whitespace()
            if self.at_end():
                break
            char = self.text[self.pos]
            if char == ",":
                self.pos += 1
                continue
            if char == "}":
                self.pos += 1
                break
            raise _Malformed(self.pos)
        return ObjectContent.from_pairs(pairs)

    def array(self) -> ArrayContent:
        self.pos += 1
        elements: List[GeneratedContent] = []
        while True:
            self.skip_whitespace()
            if self.at_end():
                break
            if self.text[self.pos] == "]":
                self.pos += 1
                break
            try:
                item = self.value()
            except _Incomplete:
                break
            elements.append(item)
            self.skip_whitespace()
            if self.at_end():
                break
            char = self.text[self.pos]
            if char == ",":
                self.pos += 1
                continue
            if char == "]":
                self.pos += 1
                break
            raise _Malformed(self.pos)
        return ArrayContent(tuple(elements))

    def string(self) -> str:
        start = self.pos
        index = start + 1
        text = self.text
        while index < len(text):
            char = text[index]
            if char == "\\":
                index += 2
                continue
            if char == '"':
                self.pos = index + 1
                try:
                    return json.loads(text[start : index + 1], strict=False)
                except ValueError:
                    raise _Malformed(start)
            index += 1
        raise _Incomplete()

    def number(self) -> NumberContent:
        start = self.pos
        end = start
        while end < len(self.text) and self.text[end] in _NUMBER_CHARS:
            end += 1
        token = self.text[start:end]
        if not _NUMBER.match(token):
            if end >= len(self.text):
                raise _Incomplete()
            raise _Malformed(start)
        try:
            if any(c in token for c in ".eE"):
                number = NumberContent(parse_finite_float(token))
            else:
                number = NumberContent(int(token))
        except ValueError:
            # overflowing floats and integers beyond the digit limit
            raise _Malformed(start)
        self.pos = end
        return number

    def literal(self) -> GeneratedContent:
        rest = self.text[self.pos :]
        for word, content in _LITERALS:
            if rest.startswith(word):
                self.pos += len(word)
                return content
            if word.startswith(rest):
                raise _Incomplete()
        raise _Malformed(self.pos)


def _scan(text: str) -> GeneratedContent:
    scanner = _Scanner(text)
    try:
        return scanner.value()
    except _Incomplete:
        raise DecodeError("Input ends before any complete value", position=len(text))
    except RecursionError:
        raise DecodeError("JSON nested too deeply", position=scanner.pos)


def decode(json_text: str) -> GeneratedContent:
    """Decode possibly incomplete JSON into a best-effort content tree.

    Raises ``DecodeError`` only when no value can be salvaged at all.
    """
    try:
        return GeneratedContent.from_json(json_text)
    except DecodeError:
        pass

    text = json_text
    while True:
        try:
            return _scan(text)
        except _Malformed as exc:
            if exc.position <= 0 or not text[: exc.position].strip():
                raise DecodeError(f"Malformed JSON at position {exc.position}", position=exc.position)
            # Everything before the error parsed; retry as if input ended there.
            text = text[: exc.position]
