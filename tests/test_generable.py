"""Tests for target-type conversion and construction."""

from enum import Enum
from typing import List, Literal, Optional

import pytest
from pydantic import BaseModel

from structured_stream.content import GeneratedContent
from structured_stream.errors import ConstructionError
from structured_stream.generable import (
    generable_type,
    generation_schema_for,
    partial_model,
)
from structured_stream.schema import AnyOfNode, ArrayNode, NumberNode, ObjectNode, RefNode, StringNode


class Genre(str, Enum):
    DRAMA = "drama"
    COMEDY = "comedy"


class Rating(BaseModel):
    stars: int
    source: str


class MovieReview(BaseModel):
    """A movie review."""

    title: str
    genre: Genre
    verdict: Literal["watch", "skip"]
    rating: Rating
    pros: List[str]
    summary: Optional[str] = None


class NoDoc(BaseModel):
    x: int


def _review_data():
    return {
        "title": "Inception",
        "genre": "drama",
        "verdict": "watch",
        "rating": {"stars": 5, "source": "critic"},
        "pros": ["visuals"],
    }


# --- Generation schema ---

def test_generation_schema_from_model():
    schema = generation_schema_for(MovieReview)
    root = schema.resolved_root()
    assert isinstance(root, ObjectNode)
    props = {p.name: p for p in root.properties}
    assert [p.name for p in root.properties] == ["title", "genre", "verdict", "rating", "pros", "summary"]
    assert props["title"].required
    assert not props["summary"].required
    assert props["verdict"].node == StringNode(enum_choices=("watch", "skip"))
    assert props["genre"].node == RefNode("Genre")
    assert schema.defs["Genre"] == StringNode(enum_choices=("drama", "comedy"))
    assert isinstance(props["pros"].node, ArrayNode)
    assert isinstance(props["summary"].node, AnyOfNode)
    assert isinstance(schema.defs["Rating"], ObjectNode)
    assert schema.unresolved_references() == set()


def test_generation_schema_is_cached():
    target = generable_type(MovieReview)
    assert target.generation_schema() is target.generation_schema()


def test_integer_fields_are_integer_only():
    root = generation_schema_for(NoDoc).resolved_root()
    assert root.properties[0].node == NumberNode(integer_only=True)


def test_model_docstring_becomes_schema_description():
    assert generation_schema_for(MovieReview).resolved_root().description == "A movie review."
    assert generation_schema_for(NoDoc).resolved_root().description is None


# --- Full construction ---

def test_construct_valid():
    review = generable_type(MovieReview).construct(GeneratedContent.from_python(_review_data()))
    assert review.title == "Inception"
    assert review.genre is Genre.DRAMA
    assert review.rating.stars == 5


def test_construct_wrong_scalar_kind():
    data = _review_data()
    data["rating"] = {"stars": "lots", "source": "critic"}
    with pytest.raises(ConstructionError):
        generable_type(MovieReview).construct(GeneratedContent.from_python(data))


def test_construct_missing_required_field():
    with pytest.raises(ConstructionError) as excinfo:
        generable_type(MovieReview).construct(GeneratedContent.from_python({"title": "Inception"}))
    assert excinfo.value.error_code == "construction_failed"


# --- Partial construction ---

def test_partial_tolerates_missing_fields():
    partial = generable_type(MovieReview).construct_partial(
        GeneratedContent.from_python({"title": "Incep", "rating": {"stars": 4}})
    )
    assert partial.title == "Incep"
    assert partial.genre is None
    assert partial.rating.stars == 4
    assert partial.rating.source is None


def test_partial_rejects_wrong_scalar_kind():
    with pytest.raises(ConstructionError):
        generable_type(MovieReview).construct_partial(GeneratedContent.from_python({"pros": "not a list"}))


def test_partial_rejects_non_object_content():
    with pytest.raises(ConstructionError):
        generable_type(MovieReview).construct_partial(GeneratedContent.from_python("text"))


def test_partial_model_is_cached_and_projects_nested_models():
    partial = partial_model(MovieReview)
    assert partial is partial_model(MovieReview)
    assert partial.__name__ == "PartialMovieReview"
    assert partial.model_validate({}).title is None


def test_as_partial_and_content_of():
    target = generable_type(MovieReview)
    review = target.construct(GeneratedContent.from_python(_review_data()))
    content = target.content_of(review)
    assert content.to_python()["rating"] == {"stars": 5, "source": "critic"}
    assert content.to_python()["summary"] is None
    partial = target.as_partial(review)
    assert partial.title == "Inception"


# --- Capability lifting ---

def test_generable_type_caches_adapters():
    assert generable_type(MovieReview) is generable_type(MovieReview)
    assert generable_type(MovieReview).name == "MovieReview"


def test_generable_type_passes_through_custom_capability():
    class Custom:
        name = "Custom"

        def generation_schema(self):
            return generation_schema_for(NoDoc)

        def construct(self, content):
            return content.to_python()

        def construct_partial(self, content):
            return content.to_python()

        def as_partial(self, value):
            return value

        def content_of(self, value):
            return GeneratedContent.from_python(value)

    custom = Custom()
    assert generable_type(custom) is custom


def test_generable_type_rejects_other_types():
    with pytest.raises(TypeError):
        generable_type(int)


# --- Recursive targets ---

class Category(BaseModel):
    name: str
    subcategories: List["Category"] = []


class Department(BaseModel):
    title: str
    head: "Manager"


class Manager(BaseModel):
    name: str
    departments: List[Department] = []


Department.model_rebuild()


def test_partial_recursion_tolerates_missing_fields_at_every_depth():
    partial = generable_type(Category).construct_partial(
        GeneratedContent.from_python({"name": "root", "subcategories": [{"subcategories": [{}]}]})
    )
    child = partial.subcategories[0]
    assert child.name is None
    assert child.subcategories[0].name is None
    assert type(child) is partial_model(Category)


def test_partial_mutual_recursion():
    partial = generable_type(Manager).construct_partial(
        GeneratedContent.from_python({"departments": [{"title": "R&D", "head": {"departments": [{}]}}]})
    )
    department = partial.departments[0]
    assert department.title == "R&D"
    assert department.head.name is None
    assert department.head.departments[0].title is None
