"""Target types — converts Pydantic models to generation schemas and builds
values (full or partial) from content trees."""

from __future__ import annotations

import logging
import types
from typing import (
    Annotated,
    Any,
    Dict,
    ForwardRef,
    Generic,
    Literal,
    Optional,
    Protocol,
    Set,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel, Field, PydanticUserError, ValidationError, create_model

from .content import GeneratedContent
from .converter import schema_from_document
from .errors import ConstructionError
from .schema import GenerationSchema, StringNode

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class GenerableType(Protocol[T]):
    """Capability every target type offers to the decoding pipeline.

    The pipeline only ever talks to this interface: it asks for the
    generation schema, then constructs full values from complete content
    trees and partial values from in-progress ones. Construction raises
    ``ConstructionError`` when the tree does not fit.
    """

    @property
    def name(self) -> str: ...

    def generation_schema(self) -> GenerationSchema: ...

    def construct(self, content: GeneratedContent) -> T: ...

    def construct_partial(self, content: GeneratedContent) -> Any: ...

    def as_partial(self, value: T) -> Any: ...

    def content_of(self, value: T) -> GeneratedContent: ...


_PARTIAL_MODELS: Dict[type, Type[BaseModel]] = {}
_IN_PROGRESS: Set[type] = set()
_UNRESOLVED: Dict[str, Type[BaseModel]] = {}


def _partial_name(model: Type[BaseModel]) -> str:
    return f"Partial{model.__name__}"


def _partial_annotation(tp: Any) -> Any:
    """Project a field annotation onto its partial form."""
    origin = get_origin(tp)
    if origin is None:
        if isinstance(tp, type) and issubclass(tp, BaseModel):
            if tp in _IN_PROGRESS:
                # recursion point; resolved by model_rebuild once the partial exists
                return ForwardRef(_partial_name(tp))
            return partial_model(tp)
        return tp

    args = get_args(tp)
    if origin is Literal:
        return tp
    if origin is Annotated:
        return Annotated[(_partial_annotation(args[0]), *args[1:])]
    if origin is Union or origin is types.UnionType:
        return Union[tuple(_partial_annotation(arg) for arg in args)]
    try:
        return origin[tuple(_partial_annotation(arg) for arg in args)]
    except TypeError:
        return tp


def partial_model(model: Type[BaseModel]) -> Type[BaseModel]:
    """Derive (and cache) a model whose fields are all optional.

    Nested models, lists and unions are projected recursively. Self-references
    (direct or through other models) point at the partial model too, so a
    partial tree tolerates missing fields at every depth.
    """
    cached = _PARTIAL_MODELS.get(model)
    if cached is not None:
        return cached

    _IN_PROGRESS.add(model)
    try:
        fields: Dict[str, Any] = {}
        for name, info in model.model_fields.items():
            annotation = _partial_annotation(info.annotation)
            fields[name] = (
                Optional[annotation],
                Field(default=None, alias=info.alias, description=info.description),
            )
        partial = create_model(_partial_name(model), __module__=model.__module__, **fields)
        _PARTIAL_MODELS[model] = partial
        _UNRESOLVED[partial.__name__] = partial
    finally:
        _IN_PROGRESS.discard(model)

    if not _IN_PROGRESS:
        namespace = dict(_UNRESOLVED)
        _UNRESOLVED.clear()
        for built in namespace.values():
            built.model_rebuild(_types_namespace=namespace)
    return partial


class PydanticGenerable(Generic[M]):
    """``GenerableType`` implementation for Pydantic models."""

    def __init__(self, model: Type[M]) -> None:
        self.model = model
        self._schema: Optional[GenerationSchema] = None

    @property
    def name(self) -> str:
        return self.model.__name__

    def generation_schema(self) -> GenerationSchema:
        if self._schema is None:
            try:
                document = self.model.model_json_schema()
            except PydanticUserError as exc:
                logger.warning("Cannot build JSON schema for %s: %s", self.name, exc)
                self._schema = GenerationSchema(root=StringNode(), defs={})
            else:
                self._schema = schema_from_document(document)
        return self._schema

    def construct(self, content: GeneratedContent) -> M:
        try:
            return self.model.model_validate(content.to_python())
        except ValidationError as exc:
            raise ConstructionError(f"Content does not match {self.name}: {exc}") from exc

    def construct_partial(self, content: GeneratedContent) -> BaseModel:
        partial = partial_model(self.model)
        try:
            return partial.model_validate(content.to_python())
        except ValidationError as exc:
            raise ConstructionError(f"Content does not match partial {self.name}: {exc}") from exc

    def as_partial(self, value: M) -> BaseModel:
        return self.construct_partial(self.content_of(value))

    def content_of(self, value: M) -> GeneratedContent:
        return GeneratedContent.from_python(value.model_dump(mode="json", by_alias=True))


_ADAPTERS: Dict[type, PydanticGenerable] = {}
_CAPABILITIES = ("generation_schema", "construct", "construct_partial", "as_partial", "content_of")


def generable_type(target: Any) -> GenerableType:
    """Lift a target declaration into a ``GenerableType``.

    Pydantic model classes are wrapped (one cached adapter per class); objects
    that already implement the capability are returned unchanged.
    """
    if isinstance(target, type) and issubclass(target, BaseModel):
        adapter = _ADAPTERS.get(target)
        if adapter is None:
            adapter = _ADAPTERS[target] = PydanticGenerable(target)
        return adapter
    if all(callable(getattr(target, attr, None)) for attr in _CAPABILITIES):
        return target
    raise TypeError(f"{target!r} is not a Pydantic model or generable type")


def generation_schema_for(target: Any) -> GenerationSchema:
    """Return the generation schema of a target declaration."""
    return generable_type(target).generation_schema()
