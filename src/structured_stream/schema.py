"""Generation schema model — the backend-agnostic description of a target shape."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Set, Tuple, Union

_DEFS_PREFIX = "#/$defs/"


@dataclass(frozen=True)
class Property:
    """A named member of an object node."""

    name: str
    node: "Node"
    required: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class ObjectNode:
    properties: Tuple[Property, ...] = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class ArrayNode:
    items: "Node"
    min_items: Optional[int] = None
    max_items: Optional[int] = None


@dataclass(frozen=True)
class StringNode:
    enum_choices: Optional[Tuple[str, ...]] = None
    constant: Optional[str] = None
    # Only set when the expression compiled during conversion.
    pattern: Optional[str] = None


@dataclass(frozen=True)
class NumberNode:
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    integer_only: bool = False
    constant: Optional[float] = None


@dataclass(frozen=True)
class BooleanNode:
    pass


@dataclass(frozen=True)
class AnyOfNode:
    alternatives: Tuple["Node", ...] = ()


@dataclass(frozen=True)
class RefNode:
    name: str


Node = Union[ObjectNode, ArrayNode, StringNode, NumberNode, BooleanNode, AnyOfNode, RefNode]


def _children(node: Node) -> Iterator[Node]:
    if isinstance(node, ObjectNode):
        for prop in node.properties:
            yield prop.node
    elif isinstance(node, ArrayNode):
        yield node.items
    elif isinstance(node, AnyOfNode):
        yield from node.alternatives


def _walk(node: Node) -> Iterator[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(_children(current))


@dataclass(frozen=True)
class GenerationSchema:
    """A root node plus the named definitions its references point into.

    Definitions are kept by name rather than inlined so that mutually
    recursive shapes stay representable.
    """

    root: Node
    defs: Mapping[str, Node] = field(default_factory=dict)

    def resolve(self, name: str) -> Optional[Node]:
        return self.defs.get(name)

    def references(self) -> Set[str]:
        """Every reference name used by the root or any definition."""
        names: Set[str] = set()
        for start in (self.root, *self.defs.values()):
            for node in _walk(start):
                if isinstance(node, RefNode):
                    names.add(node.name)
        return names

    def unresolved_references(self) -> Set[str]:
        return {name for name in self.references() if name not in self.defs}

    def resolved_root(self) -> Node:
        """Follow a root reference chain into the definitions."""
        node = self.root
        seen: Set[str] = set()
        while isinstance(node, RefNode) and node.name in self.defs and node.name not in seen:
            seen.add(node.name)
            node = self.defs[node.name]
        return node

    def to_json_schema(self) -> Dict[str, Any]:
        """Render the schema as a JSON Schema document with a root ``$defs`` map.

        A root reference is inlined since most provider APIs want a concrete
        root type.
        """
        document = node_to_json_schema(self.resolved_root())
        if self.defs:
            document["$defs"] = {name: node_to_json_schema(node) for name, node in self.defs.items()}
        return document


def node_to_json_schema(node: Node) -> Dict[str, Any]:
    """Render a single node as a JSON Schema fragment."""
    if isinstance(node, ObjectNode):
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {},
        }
        required = []
        for prop in node.properties:
            prop_schema = node_to_json_schema(prop.node)
            if prop.description:
                prop_schema["description"] = prop.description
            schema["properties"][prop.name] = prop_schema
            if prop.required:
                required.append(prop.name)
        if required:
            schema["required"] = required
        if node.description:
            schema["description"] = node.description
        return schema
    if isinstance(node, ArrayNode):
        schema = {"type": "array", "items": node_to_json_schema(node.items)}
        if node.min_items is not None:
            schema["minItems"] = node.min_items
        if node.max_items is not None:
            schema["maxItems"] = node.max_items
        return schema
    if isinstance(node, StringNode):
        schema = {"type": "string"}
        if node.enum_choices is not None:
            schema["enum"] = list(node.enum_choices)
        if node.constant is not None:
            schema["const"] = node.constant
        if node.pattern is not None:
            schema["pattern"] = node.pattern
        return schema
    if isinstance(node, NumberNode):
        schema = {"type": "integer" if node.integer_only else "number"}
        if node.minimum is not None:
            schema["minimum"] = node.minimum
        if node.maximum is not None:
            schema["maximum"] = node.maximum
        if node.constant is not None:
            schema["const"] = node.constant
        return schema
    if isinstance(node, BooleanNode):
        return {"type": "boolean"}
    if isinstance(node, AnyOfNode):
        return {"anyOf": [node_to_json_schema(alt) for alt in node.alternatives]}
    if isinstance(node, RefNode):
        return {"$ref": f"{_DEFS_PREFIX}{node.name}"}
    raise TypeError(f"Unknown schema node: {node!r}")
