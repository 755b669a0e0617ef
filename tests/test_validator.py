"""Tests for attribute validation and input binding."""

from pathlib import Path

import pytest

from tagres import (
    WILDCARD,
    AttributeSchema,
    AttributeUsage,
    AttributeValidator,
    Provenance,
    RendererRef,
    ResolutionError,
    SourceLocation,
    TagDefinition,
    ValidationError,
)


def make_tag(*attributes: AttributeSchema, name: str = "x-tag") -> TagDefinition:
    return TagDefinition(
        qualified_name=name,
        implementation=RendererRef(path=Path("/lib/x.py")),
        attributes={a.name: a for a in attributes},
        provenance=Provenance(path=Path("/lib/marko-taglib.json")),
    )


def usages(*names: str) -> list[AttributeUsage]:
    return [AttributeUsage(name=n) for n in names]


@pytest.fixture
def validator():
    return AttributeValidator()


class TestDeclaredAttributes:
    def test_declared_names_pass(self, validator):
        tag = make_tag(AttributeSchema(name="name"), AttributeSchema(name="count"))
        bound = validator.validate(tag, usages("name", "count"))
        assert dict(bound.declared) == {"name": "name", "count": "count"}
        assert bound.absorbed == ()

    def test_undeclared_name_is_rejected(self, validator):
        tag = make_tag(AttributeSchema(name="name"))
        location = SourceLocation(path=Path("page.marko"), line=3, column=7)

        with pytest.raises(ValidationError) as excinfo:
            validator.validate(tag, [AttributeUsage(name="foo", location=location)])

        err = excinfo.value
        assert err.attribute == "foo"
        assert err.tag == "x-tag"
        assert "'foo'" in str(err)
        assert "page.marko:3:7" in str(err)

    def test_missing_required(self, validator):
        tag = make_tag(AttributeSchema(name="title", required=True))
        with pytest.raises(ValidationError, match="Required attribute 'title'"):
            validator.validate(tag, [])

    def test_target_property(self, validator):
        tag = make_tag(AttributeSchema(name="class", target_property="className"))
        bound = validator.validate(tag, usages("class"))
        assert bound.build_input({"class": "big"}) == {"className": "big"}

    def test_defaults_fill_missing(self, validator):
        tag = make_tag(
            AttributeSchema(name="size", default="md"),
            AttributeSchema(name="label"),
        )
        bound = validator.validate(tag, usages("label"))
        assert bound.build_input({"label": "Go"}) == {"label": "Go", "size": "md"}


class TestWildcard:
    def test_exact_match_wins_over_wildcard(self, validator):
        tag = make_tag(AttributeSchema(name="id"), AttributeSchema(name=WILDCARD))
        bound = validator.validate(tag, usages("id", "data-x", "aria-label"))

        assert dict(bound.declared) == {"id": "id"}
        assert bound.absorbed == ("data-x", "aria-label")
        assert bound.build_input({"id": 1, "data-x": 2, "aria-label": 3}) == {
            "id": 1,
            WILDCARD: {"data-x": 2, "aria-label": 3},
        }

    def test_wildcard_property_always_present(self, validator):
        tag = make_tag(AttributeSchema(name=WILDCARD))
        bound = validator.validate(tag, [])
        assert bound.build_input({}) == {WILDCARD: {}}

    def test_literal_star_binds_verbatim(self, validator):
        tag = make_tag(AttributeSchema(name=WILDCARD))
        bound = validator.validate(tag, usages(WILDCARD))
        assert bound.build_input({WILDCARD: {"a": 1}}) == {WILDCARD: {"a": 1}}

    def test_literal_star_with_absorbed_names(self, validator):
        tag = make_tag(AttributeSchema(name=WILDCARD))
        bound = validator.validate(tag, usages(WILDCARD, "data-x"))
        with pytest.raises(ResolutionError):
            bound.build_input({WILDCARD: {}, "data-x": 1})
