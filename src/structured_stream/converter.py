"""JSON-Schema document to generation schema converter.

Conversion is deliberately permissive: anything it does not understand
becomes an unconstrained string node, and a document it cannot make sense of
at all becomes a bare string schema. Mismatches are dealt with later, at
decode time, where partial decoding and placeholders are available.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from .schema import (
    AnyOfNode,
    ArrayNode,
    BooleanNode,
    GenerationSchema,
    Node,
    NumberNode,
    ObjectNode,
    Property,
    RefNode,
    StringNode,
)

logger = logging.getLogger(__name__)

_UNSUPPORTED_KEYWORDS = ("allOf", "oneOf", "not")


def _is_scalar_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _ref_name(ref: str) -> str:
    """``#/$defs/Person`` -> ``Person``."""
    return ref.rsplit("/", 1)[-1]


def _infer_type(schema: Mapping[str, Any]) -> Optional[str]:
    """Guess a type for a schema that does not declare one."""
    if "properties" in schema:
        return "object"
    if "items" in schema:
        return "array"
    values = list(schema.get("enum") or [])
    if "const" in schema:
        values.append(schema["const"])
    if values:
        if all(isinstance(v, str) for v in values):
            return "string"
        if all(isinstance(v, int) and not isinstance(v, bool) for v in values):
            return "integer"
        if all(_is_scalar_number(v) for v in values):
            return "number"
    return None


def _convert_const(value: Any) -> Optional[Node]:
    """Turn one enum value into a constant-valued alternative.

    Only strings and numbers are representable; null, booleans, objects and
    arrays are skipped.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return NumberNode(minimum=value, maximum=value, integer_only=True, constant=value)
    if isinstance(value, float):
        return NumberNode(minimum=value, maximum=value, integer_only=False, constant=value)
    if isinstance(value, str):
        return StringNode(constant=value)
    return None


def _convert_string(schema: Mapping[str, Any]) -> StringNode:
    enum_choices = None
    values = [v for v in schema.get("enum") or [] if isinstance(v, str)]
    if values:
        enum_choices = tuple(values)

    const = schema.get("const")
    constant = const if isinstance(const, str) else None

    pattern = schema.get("pattern")
    if isinstance(pattern, str):
        try:
            re.compile(pattern)
        except re.error as exc:
            logger.debug("Dropping uncompilable pattern %r: %s", pattern, exc)
            pattern = None
    else:
        pattern = None

    return StringNode(enum_choices=enum_choices, constant=constant, pattern=pattern)


def _convert_number(schema: Mapping[str, Any], integer_only: bool) -> Node:
    if "enum" in schema and isinstance(schema["enum"], list):
        alternatives = [_convert_const(v) for v in schema["enum"]]
        return AnyOfNode(alternatives=tuple(a for a in alternatives if a is not None))

    minimum = schema.get("minimum")
    maximum = schema.get("maximum")
    minimum = minimum if _is_scalar_number(minimum) else None
    maximum = maximum if _is_scalar_number(maximum) else None

    constant = schema.get("const")
    if integer_only and not (isinstance(constant, int) and not isinstance(constant, bool)):
        constant = None
    if not _is_scalar_number(constant):
        constant = None
    if constant is not None:
        # A constant pins the range to a single value.
        minimum = maximum = constant

    return NumberNode(minimum=minimum, maximum=maximum, integer_only=integer_only, constant=constant)


def _convert_object(schema: Mapping[str, Any]) -> ObjectNode:
    properties = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    converted: List[Property] = []
    if isinstance(properties, Mapping):
        for name, prop_schema in properties.items():
            description = prop_schema.get("description") if isinstance(prop_schema, Mapping) else None
            converted.append(
                Property(
                    name=name,
                    node=convert_node(prop_schema),
                    required=name in required,
                    description=description,
                )
            )
    return ObjectNode(properties=tuple(converted), description=schema.get("description"))


def _convert_array(schema: Mapping[str, Any]) -> ArrayNode:
    items = schema.get("items")
    items_node = convert_node(items) if isinstance(items, Mapping) else StringNode()
    min_items = schema.get("minItems")
    max_items = schema.get("maxItems")
    return ArrayNode(
        items=items_node,
        min_items=min_items if isinstance(min_items, int) else None,
        max_items=max_items if isinstance(max_items, int) else None,
    )


def _convert_typed(schema: Mapping[str, Any], type_name: Optional[str]) -> Node:
    if type_name == "object":
        return _convert_object(schema)
    if type_name == "string":
        return _convert_string(schema)
    if type_name == "integer":
        return _convert_number(schema, integer_only=True)
    if type_name == "number":
        return _convert_number(schema, integer_only=False)
    if type_name == "boolean":
        return BooleanNode()
    if type_name == "array":
        return _convert_array(schema)
    # "null", unknown names and untyped schemas
    return StringNode()


def convert_node(schema: Any) -> Node:
    """Convert one JSON Schema fragment into a generation schema node."""
    if not isinstance(schema, Mapping):
        return StringNode()

    if isinstance(schema.get("$ref"), str):
        return RefNode(name=_ref_name(schema["$ref"]))

    if isinstance(schema.get("anyOf"), list):
        return AnyOfNode(alternatives=tuple(convert_node(alt) for alt in schema["anyOf"]))

    if any(keyword in schema for keyword in _UNSUPPORTED_KEYWORDS):
        return StringNode()

    type_name = schema.get("type")
    if isinstance(type_name, list):
        types = [t for t in type_name if t != "null"]
        if len(types) == 1:
            return _convert_typed(schema, types[0])
        if types:
            return AnyOfNode(alternatives=tuple(_convert_typed(schema, t) for t in types))
        return StringNode()
    if type_name is None:
        type_name = _infer_type(schema)
    return _convert_typed(schema, type_name)


def convert(root: Any, defs: Optional[Mapping[str, Any]] = None) -> GenerationSchema:
    """Convert a root schema and its named dependencies.

    Never raises. If references cannot be resolved against ``defs`` the whole
    schema degrades to an unconstrained string.
    """
    if not isinstance(root, Mapping):
        logger.warning("Schema root is not a mapping (%s); using a string schema", type(root).__name__)
        return GenerationSchema(root=StringNode(), defs={})

    converted_defs: Dict[str, Node] = {}
    for name, definition in (defs or {}).items():
        converted_defs[name] = convert_node(definition)

    schema = GenerationSchema(root=convert_node(root), defs=converted_defs)
    unresolved = schema.unresolved_references()
    if unresolved:
        logger.warning(
            "Schema has unresolved references %s; using a string schema",
            sorted(unresolved),
        )
        return GenerationSchema(root=StringNode(), defs={})
    return schema


def schema_from_document(document: Any) -> GenerationSchema:
    """Convert a full JSON Schema document, splitting off its ``$defs`` map."""
    if not isinstance(document, Mapping):
        return convert(document)
    root = dict(document)
    defs: Dict[str, Any] = {}
    for key in ("definitions", "$defs"):
        value = root.pop(key, None)
        if isinstance(value, Mapping):
            defs.update(value)
    return convert(root, defs)
