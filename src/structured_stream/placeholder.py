"""Placeholder synthesis — a minimal schema-valid value for any generation schema."""

from __future__ import annotations

import math
from typing import List, Mapping, Optional, Set, Tuple

from .content import (
    ArrayContent,
    BooleanContent,
    GeneratedContent,
    NumberContent,
    ObjectContent,
    StringContent,
)
from .schema import (
    AnyOfNode,
    ArrayNode,
    BooleanNode,
    GenerationSchema,
    Node,
    NumberNode,
    ObjectNode,
    RefNode,
    StringNode,
)

PLACEHOLDER_TEXT = "placeholder"


class _Cycle(Exception):
    """A reference was re-entered while it was still being synthesized."""


def _string(node: Optional[StringNode] = None) -> StringContent:
    if node is not None:
        if node.enum_choices:
            return StringContent(node.enum_choices[0])
        if node.constant is not None:
            return StringContent(node.constant)
    return StringContent(PLACEHOLDER_TEXT)


def _number(node: NumberNode) -> NumberContent:
    if node.integer_only:
        return NumberContent(int(math.ceil(node.minimum)) if node.minimum is not None else 0)
    return NumberContent(node.minimum if node.minimum is not None else 0)


def _synthesize(node: Node, defs: Mapping[str, Node], active: Set[str]) -> GeneratedContent:
    if isinstance(node, ObjectNode):
        properties: List[Tuple[str, GeneratedContent]] = []
        for prop in node.properties:
            try:
                properties.append((prop.name, _synthesize(prop.node, defs, active)))
            except _Cycle:
                if prop.required:
                    raise
        return ObjectContent.from_pairs(properties)

    if isinstance(node, ArrayNode):
        count = max(node.min_items or 1, 1)
        try:
            item = _synthesize(node.items, defs, active)
        except _Cycle:
            if node.min_items:
                raise
            return ArrayContent(())
        return ArrayContent((item,) * count)

    if isinstance(node, StringNode):
        return _string(node)

    if isinstance(node, NumberNode):
        return _number(node)

    if isinstance(node, BooleanNode):
        return BooleanContent(True)

    if isinstance(node, AnyOfNode):
        if node.alternatives:
            return _synthesize(node.alternatives[0], defs, active)
        return _string()

    if isinstance(node, RefNode):
        target = defs.get(node.name)
        if target is None:
            return _string()
        if node.name in active:
            raise _Cycle(node.name)
        active.add(node.name)
        try:
            return _synthesize(target, defs, active)
        finally:
            active.discard(node.name)

    raise TypeError(f"Unknown schema node: {node!r}")


def synthesize(node: Node, defs: Mapping[str, Node]) -> GeneratedContent:
    """Manufacture a minimal value that conforms to ``node``.

    Every object property is filled in, arrays get ``max(min_items, 1)``
    copies of one item, strings use their first enum choice, numbers their
    minimum (or 0), booleans ``true`` and unions their first alternative.

    Self-referential definitions are cut where the schema allows it: an array
    of a re-entered reference becomes empty and an optional property is left
    out. A cut that cannot be absorbed falls back to the placeholder string.
    """
    try:
        return _synthesize(node, defs, set())
    except _Cycle:
        return _string()


def synthesize_schema(schema: GenerationSchema) -> GeneratedContent:
    return synthesize(schema.root, schema.defs)
