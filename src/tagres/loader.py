"""Taglib loading - parses definition sources into canonical Taglibs.

Two equivalent shapes are accepted, and may be mixed within one document:

Verbose:
    {"tags": {"my-hello": {"renderer": "./hello.py",
                           "attributes": {"name": "string"}}}}

Shorthand:
    {"<my-hello>": {"renderer": "./hello.py", "@name": "string"}}

A tag entry is an inline mapping, a string path to a single-tag definition
file, or a mapping naming a `template`. Paths are always resolved against the
directory of the file that declares them.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from tagres.config import TagresSettings
from tagres.errors import ConfigError, ResolutionError
from tagres.nested import NestedTagResolver
from tagres.spec import (
    AttributeSchema,
    Cardinality,
    DiscoveryRank,
    Implementation,
    NestedTagDeclaration,
    Provenance,
    RendererRef,
    TagDefinition,
    Taglib,
    TemplateRef,
    parse_renderer_ref,
)

log = logging.getLogger(__name__)

TAGLIB_KEYS = {"tags", "tags-dir", "description", "taglib-id"}
TAG_KEYS = {"renderer", "template", "attributes", "nested-tags", "description"}
ATTRIBUTE_KEYS = {"type", "target-property", "required", "default-value", "description"}
NESTED_TAG_KEYS = {"target-property", "is-repeated"}

# "tabs <tab>[]" -> property "tabs", child "tab", repeated
_NESTED_KEY_RE = re.compile(
    r"^(?P<prop>[^\s<>\[\]]+)\s+<(?P<child>[^\s<>\[\]]+)>\s*(?P<repeated>\[\])?$"
)
_TAG_NAME_RE = re.compile(r"^[^\s.<>@]+$")


def is_valid_tag_name(name: Any) -> bool:
    """Top-level and local tag names: no whitespace, dots, `<`, `>` or `@`."""
    return isinstance(name, str) and _TAG_NAME_RE.match(name) is not None


def read_definition_file(path: Path) -> dict[str, Any]:
    """Read a JSON or YAML definition file (chosen by suffix) as a mapping."""
    if not path.is_file():
        raise ConfigError("Definition file not found", path=path)

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read definition file: {exc}", path=path) from exc

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError, RecursionError) as exc:
        raise ConfigError(f"Failed to parse definition file: {exc}", path=path) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("Definition must be a mapping at the top level", path=path)
    return data


def parse_attribute_key(key: str) -> tuple[str, Optional[tuple[str, Cardinality]]]:
    """Split an attribute key into its name and optional nested tag reference.

    Examples:
        >>> parse_attribute_key("title")
        ("title", None)
        >>> parse_attribute_key("tabs <tab>[]")
        ("tabs", ("tab", Cardinality.ARRAY))
    """
    match = _NESTED_KEY_RE.match(key.strip())
    if match is None:
        return key, None
    cardinality = Cardinality.ARRAY if match.group("repeated") else Cardinality.SINGLE
    return match.group("prop"), (match.group("child"), cardinality)


# =============================================================================
# Tag entries - classified once, then lowered to TagDefinitions
# =============================================================================


@dataclass(frozen=True)
class InlineSchema:
    """Tag defined inline in the taglib document."""

    body: dict[str, Any]


@dataclass(frozen=True)
class InlinePath:
    """Tag defined in a separate single-tag file."""

    path: Path


@dataclass(frozen=True)
class TemplateEntry:
    """Inline tag whose implementation is a compiled template."""

    body: dict[str, Any]


TagEntry = Union[InlineSchema, InlinePath, TemplateEntry]


def classify_entry(name: str, value: Any, base_dir: Path, source: Path) -> TagEntry:
    if isinstance(value, str):
        return InlinePath(path=(base_dir / value).resolve())
    if isinstance(value, dict):
        if "template" in value:
            return TemplateEntry(body=value)
        return InlineSchema(body=value)
    raise ConfigError(
        "Tag entry must be a mapping or a path to a tag definition file, "
        f"got {type(value).__name__}",
        tag=name,
        path=source,
    )


@dataclass
class TagSchema:
    """Normalized body of one tag before it is bound to a name and rank."""

    attributes: dict[str, AttributeSchema]
    nested_tags: dict[str, NestedTagDeclaration]
    implementation: Optional[Implementation] = None
    description: Optional[str] = None


class TaglibLoader:
    """Parses taglib and tag definitions into canonical form."""

    def __init__(
        self,
        settings: Optional[TagresSettings] = None,
        nested: Optional[NestedTagResolver] = None,
    ):
        self.settings = settings or TagresSettings()
        self.nested = nested or NestedTagResolver()
        self._scanner = None

    @property
    def scanner(self):
        """DirectoryScanner used for `tags-dir` and implementation inference."""
        if self._scanner is None:
            from tagres.scanner import DirectoryScanner

            self._scanner = DirectoryScanner(self, self.settings)
        return self._scanner

    # -------------------------------------------------------------------------
    # Taglibs
    # -------------------------------------------------------------------------

    def load_file(self, path: Path | str, rank: DiscoveryRank = DiscoveryRank()) -> Taglib:
        """Load a taglib definition file."""
        path = Path(path).resolve()
        log.debug(f"Loading taglib {path}")
        data = read_definition_file(path)
        return self.load_mapping(data, base_dir=path.parent, source=path, rank=rank)

    def load_mapping(
        self,
        data: dict[str, Any],
        base_dir: Path,
        source: Optional[Path] = None,
        rank: DiscoveryRank = DiscoveryRank(),
    ) -> Taglib:
        """Load an inline taglib structure whose paths are relative to `base_dir`."""
        source = source or base_dir
        if not isinstance(data, dict):
            raise ConfigError("Taglib must be a mapping", path=source)

        entries: dict[str, TagEntry] = {}
        tags_dirs: list[Path] = []

        for key, value in data.items():
            if key == "tags":
                if not isinstance(value, dict):
                    raise ConfigError("Taglib 'tags' must be a mapping", path=source)
                for name, entry in value.items():
                    self._add_entry(entries, name, entry, base_dir, source)
            elif key.startswith("<") and key.endswith(">"):
                self._add_entry(entries, key[1:-1], value, base_dir, source)
            elif key == "tags-dir":
                tags_dirs = self._parse_tags_dirs(value, base_dir, source)
            elif key not in TAGLIB_KEYS:
                raise ConfigError(f"Unknown taglib property '{key}'", path=source)

        tags: dict[str, TagDefinition] = {}
        dependencies: list[Path] = [source]

        if tags_dirs:
            scanned = self.scanner.scan(tags_dirs, rank=rank)
            tags.update(scanned.tags)
            dependencies.extend(scanned.dependencies)

        for name, entry in entries.items():
            if isinstance(entry, InlinePath):
                dependencies.append(entry.path)
            for definition in self._lower_entry(name, entry, base_dir, source, rank):
                if definition.qualified_name in tags:
                    raise ResolutionError(
                        f"Tag '{definition.qualified_name}' is defined both by "
                        f"tags-dir and by the taglib itself",
                        tag=definition.qualified_name,
                        path=source,
                    )
                tags[definition.qualified_name] = definition

        return Taglib(
            path=source,
            rank=rank,
            tags=tags,
            tags_dirs=tags_dirs,
            dependencies=dependencies,
        )

    def _add_entry(
        self,
        entries: dict[str, TagEntry],
        name: Any,
        value: Any,
        base_dir: Path,
        source: Path,
    ) -> None:
        if not is_valid_tag_name(name):
            raise ConfigError(f"Invalid tag name {name!r}", path=source)

        entry = classify_entry(name, value, base_dir, source)
        existing = entries.get(name)
        if existing is not None and existing != entry:
            raise ConfigError(
                "Tag is declared more than once with different definitions",
                tag=name,
                path=source,
            )
        entries[name] = entry

    def _parse_tags_dirs(self, value: Any, base_dir: Path, source: Path) -> list[Path]:
        raw = [value] if isinstance(value, str) else value
        if not isinstance(raw, list) or not all(isinstance(p, str) for p in raw):
            raise ConfigError(
                "'tags-dir' must be a path or a list of paths", path=source
            )
        return [(base_dir / p).resolve() for p in raw]

    def _lower_entry(
        self,
        name: str,
        entry: TagEntry,
        base_dir: Path,
        source: Path,
        rank: DiscoveryRank,
    ) -> list[TagDefinition]:
        if isinstance(entry, InlinePath):
            body = read_definition_file(entry.path)
            implementation = None
            if "renderer" not in body and "template" not in body:
                implementation = self.scanner.detect_implementation(
                    entry.path.parent, tag=name
                )
            return self.build_definitions(
                name,
                body,
                base_dir=entry.path.parent,
                source=entry.path,
                rank=rank,
                implementation=implementation,
            )
        return self.build_definitions(
            name, entry.body, base_dir=base_dir, source=source, rank=rank
        )

    # -------------------------------------------------------------------------
    # Single tags
    # -------------------------------------------------------------------------

    def build_definitions(
        self,
        name: str,
        body: dict[str, Any],
        base_dir: Path,
        source: Path,
        rank: DiscoveryRank = DiscoveryRank(),
        implementation: Optional[Implementation] = None,
        provenance_path: Optional[Path] = None,
    ) -> list[TagDefinition]:
        """Build a tag and its derived nested tags from one tag body.

        `implementation` is supplied by the caller when the directory layout
        decides it; otherwise the body must name a renderer or a template.
        """
        schema = self.parse_schema(name, body, base_dir, source)
        if implementation is not None and schema.implementation is not None:
            raise ConfigError(
                "Tag implementation is determined by its directory and must not "
                "be declared again",
                tag=name,
                path=source,
            )
        implementation = implementation or schema.implementation
        if implementation is None:
            raise ConfigError(
                "Tag must declare a 'renderer' or a 'template'", tag=name, path=source
            )

        try:
            definition = TagDefinition(
                qualified_name=name,
                implementation=implementation,
                attributes=schema.attributes,
                nested_tags=schema.nested_tags,
                provenance=Provenance(path=provenance_path or source, rank=rank),
                description=schema.description,
            )
        except PydanticValidationError as exc:
            raise ConfigError(f"Invalid tag definition: {exc}", tag=name, path=source) from exc
        return self.nested.expand(definition)

    def parse_schema(
        self,
        name: str,
        body: Any,
        base_dir: Path,
        source: Path,
        allow_implementation: bool = True,
    ) -> TagSchema:
        """Normalize a tag body (shorthand and verbose keys) into a TagSchema."""
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ConfigError("Tag definition must be a mapping", tag=name, path=source)

        schema = TagSchema(attributes={}, nested_tags={})
        for key, value in body.items():
            if not isinstance(key, str):
                raise ConfigError(f"Invalid key {key!r}", tag=name, path=source)
            if key.startswith("@"):
                self._add_attribute(schema, name, key[1:], value, base_dir, source)
            elif key == "attributes":
                if not isinstance(value, dict):
                    raise ConfigError(
                        "'attributes' must be a mapping", tag=name, path=source
                    )
                for attr_key, attr_value in value.items():
                    self._add_attribute(schema, name, attr_key, attr_value, base_dir, source)
            elif key == "nested-tags":
                if not isinstance(value, dict):
                    raise ConfigError(
                        "'nested-tags' must be a mapping", tag=name, path=source
                    )
                for child, child_body in value.items():
                    declaration = self._parse_verbose_nested(
                        name, child, child_body, base_dir, source
                    )
                    self._merge_nested(schema, name, declaration, source)
            elif key in ("renderer", "template"):
                if not allow_implementation:
                    raise ConfigError(
                        f"Nested tags cannot declare a '{key}'", tag=name, path=source
                    )
            elif key == "description":
                schema.description = None if value is None else str(value)
            else:
                raise ConfigError(f"Unknown tag property '{key}'", tag=name, path=source)

        if allow_implementation:
            schema.implementation = self._parse_implementation(name, body, base_dir, source)
        return schema

    def _parse_implementation(
        self, name: str, body: dict[str, Any], base_dir: Path, source: Path
    ) -> Optional[Implementation]:
        renderer = body.get("renderer")
        template = body.get("template")
        if renderer is not None and template is not None:
            raise ConfigError(
                "Tag declares both a 'renderer' and a 'template'", tag=name, path=source
            )

        if renderer is not None:
            if not isinstance(renderer, str):
                raise ConfigError("'renderer' must be a path", tag=name, path=source)
            ref, export = parse_renderer_ref(renderer)
            path = (base_dir / ref).resolve()
            if not path.is_file():
                raise ConfigError(f"Renderer not found: {path}", tag=name, path=source)
            return RendererRef(path=path, export=export)

        if template is not None:
            if not isinstance(template, str):
                raise ConfigError("'template' must be a path", tag=name, path=source)
            path = (base_dir / template).resolve()
            if not path.is_file():
                raise ConfigError(f"Template not found: {path}", tag=name, path=source)
            return TemplateRef(path=path)

        return None

    # -------------------------------------------------------------------------
    # Attributes and nested tags
    # -------------------------------------------------------------------------

    def _add_attribute(
        self,
        schema: TagSchema,
        tag: str,
        key: str,
        value: Any,
        base_dir: Path,
        source: Path,
    ) -> None:
        attr_name, nested_ref = parse_attribute_key(key)
        if nested_ref is not None:
            child, cardinality = nested_ref
            child_schema = self.parse_schema(
                f"{tag}.{child}", value, base_dir, source, allow_implementation=False
            )
            declaration = NestedTagDeclaration(
                parent_property=attr_name,
                child_local_name=child,
                cardinality=cardinality,
                child_attributes=child_schema.attributes,
                child_nested=child_schema.nested_tags,
                description=child_schema.description,
            )
            self._merge_nested(schema, tag, declaration, source)
            return

        attribute = self._build_attribute(tag, attr_name, value, source)
        existing = schema.attributes.get(attr_name)
        if existing is not None and existing != attribute:
            raise ConfigError(
                f"Attribute '{attr_name}' is declared twice with different types "
                f"({existing.type_id} vs {attribute.type_id})",
                tag=tag,
                path=source,
            )
        schema.attributes[attr_name] = attribute

    @staticmethod
    def _build_attribute(tag: str, name: str, value: Any, source: Path) -> AttributeSchema:
        if not name:
            raise ConfigError("Attribute name must not be empty", tag=tag, path=source)
        if value is None:
            return AttributeSchema(name=name)
        if isinstance(value, str):
            return AttributeSchema(name=name, type_id=value)
        if not isinstance(value, dict):
            raise ConfigError(
                f"Attribute '{name}' must be a type name or a mapping", tag=tag, path=source
            )

        unknown = set(value) - ATTRIBUTE_KEYS
        if unknown:
            raise ConfigError(
                f"Unknown properties {sorted(unknown)} on attribute '{name}'",
                tag=tag,
                path=source,
            )
        try:
            return AttributeSchema(
                name=name,
                type_id=value.get("type") or "string",
                target_property=value.get("target-property"),
                required=bool(value.get("required", False)),
                default=value.get("default-value"),
                description=value.get("description"),
            )
        except PydanticValidationError as exc:
            raise ConfigError(
                f"Invalid attribute '{name}': {exc}", tag=tag, path=source
            ) from exc

    def _parse_verbose_nested(
        self, tag: str, child: Any, body: Any, base_dir: Path, source: Path
    ) -> NestedTagDeclaration:
        if not is_valid_tag_name(child):
            raise ConfigError(f"Invalid nested tag name {child!r}", tag=tag, path=source)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            raise ConfigError(
                f"Nested tag <{child}> must be a mapping", tag=tag, path=source
            )

        options = {k: v for k, v in body.items() if k in NESTED_TAG_KEYS}
        rest = {k: v for k, v in body.items() if k not in NESTED_TAG_KEYS}
        child_schema = self.parse_schema(
            f"{tag}.{child}", rest, base_dir, source, allow_implementation=False
        )
        repeated = bool(options.get("is-repeated", False))
        return NestedTagDeclaration(
            parent_property=options.get("target-property") or child,
            child_local_name=child,
            cardinality=Cardinality.ARRAY if repeated else Cardinality.SINGLE,
            child_attributes=child_schema.attributes,
            child_nested=child_schema.nested_tags,
            description=child_schema.description,
        )

    @staticmethod
    def _merge_nested(
        schema: TagSchema, tag: str, declaration: NestedTagDeclaration, source: Path
    ) -> None:
        existing = schema.nested_tags.get(declaration.parent_property)
        if existing is not None and existing != declaration:
            raise ConfigError(
                f"Nested property '{declaration.parent_property}' is declared twice "
                "with different definitions",
                tag=tag,
                path=source,
            )
        schema.nested_tags[declaration.parent_property] = declaration
