"""Canonical tag schema - the normalized form every taglib source is lowered to.

Definitions are frozen once built, mapping fields included; merging and
re-ranking produce copies.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Annotated, Any, Dict, Literal, Mapping, NamedTuple, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

WILDCARD = "*"
RENDER_BODY = "renderBody"
DEFAULT_RENDER_EXPORT = "render"


def freeze_mapping(value: Mapping) -> Mapping:
    """Read-only copy of a mapping."""
    return MappingProxyType(dict(value))


def _empty_mapping() -> Mapping:
    return MappingProxyType({})


def _mapping_to_dict(value: Mapping) -> dict:
    return dict(value)


# dict on input, read-only mapping once validated
AttributeMap = Annotated[
    Dict[str, "AttributeSchema"],
    AfterValidator(freeze_mapping),
    PlainSerializer(_mapping_to_dict),
]
NestedMap = Annotated[
    Dict[str, "NestedTagDeclaration"],
    AfterValidator(freeze_mapping),
    PlainSerializer(_mapping_to_dict),
]
TagMap = Annotated[
    Dict[str, "TagDefinition"],
    AfterValidator(freeze_mapping),
    PlainSerializer(_mapping_to_dict),
]


class Cardinality(str, Enum):
    SINGLE = "single"
    ARRAY = "array"


class DiscoveryRank(NamedTuple):
    """Precedence of a taglib source. Lower sorts first and wins.

    level: directory distance from the template (0 = template's directory)
    position: 0 for the level's own taglib, 1..n for package taglibs
    """

    level: int = 0
    position: int = 0


class Provenance(BaseModel):
    """Where a definition came from."""

    model_config = ConfigDict(frozen=True)

    path: Path
    rank: DiscoveryRank = DiscoveryRank()


class AttributeSchema(BaseModel):
    """A declared attribute. The name `*` declares the wildcard."""

    model_config = ConfigDict(frozen=True)

    name: str
    type_id: str = "string"
    target_property: str | None = None
    required: bool = False
    default: Any = None
    description: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.name == WILDCARD

    @property
    def property_name(self) -> str:
        """Key under which the value is handed to the renderer."""
        return self.target_property or self.name


class NestedTagDeclaration(BaseModel):
    """A child tag whose occurrences become a property of the parent's input."""

    model_config = ConfigDict(frozen=True)

    parent_property: str
    child_local_name: str
    cardinality: Cardinality
    child_attributes: AttributeMap = Field(default_factory=_empty_mapping)
    child_nested: NestedMap = Field(default_factory=_empty_mapping)
    description: str | None = None

    @property
    def is_repeated(self) -> bool:
        return self.cardinality is Cardinality.ARRAY


# =============================================================================
# Implementation - exactly one per tag
# =============================================================================


class RendererRef(BaseModel):
    """An external callable `render(input, out)` exported by a module file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["renderer"] = "renderer"
    path: Path
    export: str = DEFAULT_RENDER_EXPORT


class TemplateRef(BaseModel):
    """A compiled template acting as the renderer."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["template"] = "template"
    path: Path


class NestedRef(BaseModel):
    """Nested tags render nothing themselves; they feed the parent's renderer."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["nested"] = "nested"
    parent: str
    parent_property: str


Implementation = Annotated[
    Union[RendererRef, TemplateRef, NestedRef], Field(discriminator="kind")
]


def parse_renderer_ref(ref: str) -> tuple[str, str]:
    """Split a renderer reference into file path and exported callable.

    Examples:
        >>> parse_renderer_ref("./hello.py:render_hello")
        ("./hello.py", "render_hello")
        >>> parse_renderer_ref("./hello.py")
        ("./hello.py", "render")
    """
    if ":" in ref:
        path, export = ref.rsplit(":", 1)
        # Windows drive letters ("C:\\x.py") have no export part
        if export and "/" not in export and "\\" not in export:
            return path, export
    return ref, DEFAULT_RENDER_EXPORT


# =============================================================================
# Definitions
# =============================================================================


class TagDefinition(BaseModel):
    """Schema and implementation binding for one custom tag."""

    model_config = ConfigDict(frozen=True)

    qualified_name: str
    implementation: Implementation
    attributes: AttributeMap = Field(default_factory=_empty_mapping)
    nested_tags: NestedMap = Field(default_factory=_empty_mapping)
    provenance: Provenance
    description: str | None = None

    @property
    def wildcard(self) -> AttributeSchema | None:
        return self.attributes.get(WILDCARD)

    @property
    def is_nested(self) -> bool:
        return isinstance(self.implementation, NestedRef)

    @property
    def parent_name(self) -> str | None:
        if isinstance(self.implementation, NestedRef):
            return self.implementation.parent
        return None

    @property
    def root_name(self) -> str:
        """Top-level tag this definition belongs to (itself unless nested)."""
        return self.qualified_name.split(".", 1)[0]

    def with_rank(self, rank: DiscoveryRank) -> "TagDefinition":
        provenance = self.provenance.model_copy(update={"rank": rank})
        return self.model_copy(update={"provenance": provenance})


class Taglib(BaseModel):
    """Tag definitions produced by one load (a taglib file or a scan pass)."""

    model_config = ConfigDict(frozen=True)

    path: Path
    rank: DiscoveryRank = DiscoveryRank()
    tags: TagMap = Field(default_factory=_empty_mapping)
    tags_dirs: tuple[Path, ...] = ()
    dependencies: tuple[Path, ...] = ()

    def with_rank(self, rank: DiscoveryRank) -> "Taglib":
        """Copy with every definition re-ranked."""
        tags = {name: tag.with_rank(rank) for name, tag in self.tags.items()}
        return self.model_copy(update={"rank": rank, "tags": freeze_mapping(tags)})
