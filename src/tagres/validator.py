"""Attribute validation - static schema-vs-usage checks.

Only names and presence are checked; attribute values are never inspected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from tagres.errors import ResolutionError, ValidationError
from tagres.occurrence import AttributeUsage, SourceLocation
from tagres.spec import WILDCARD, TagDefinition


@dataclass(frozen=True)
class BoundAttributes:
    """Outcome of validating one usage: where each attribute value goes."""

    tag: TagDefinition
    declared: Mapping[str, str]  # attribute name -> renderer property
    absorbed: tuple[str, ...]  # names collected into the `*` property

    def build_input(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Map call-site attribute values onto renderer input properties."""
        data: dict[str, Any] = {}
        for name, prop in self.declared.items():
            data[prop] = values.get(name)

        if self.tag.wildcard is not None:
            if WILDCARD in self.declared:
                if self.absorbed:
                    raise ResolutionError(
                        f"Property '{WILDCARD}' is supplied both literally and by "
                        f"wildcard attributes {list(self.absorbed)}",
                        tag=self.tag.qualified_name,
                        path=self.tag.provenance.path,
                    )
            else:
                data[WILDCARD] = {name: values.get(name) for name in self.absorbed}

        for name, schema in self.tag.attributes.items():
            if schema.is_wildcard or name in self.declared or schema.default is None:
                continue
            data.setdefault(schema.property_name, schema.default)
        return data


class AttributeValidator:
    """Checks attribute names used at a call site against a tag's schema."""

    def validate(
        self,
        tag: TagDefinition,
        usages: Iterable[AttributeUsage],
        location: Optional[SourceLocation] = None,
    ) -> BoundAttributes:
        """Validate usages and compute their binding.

        Raises:
            ValidationError: an attribute is neither declared nor absorbed by a
                wildcard, or a required attribute is missing.
        """
        wildcard = tag.wildcard
        declared: dict[str, str] = {}
        absorbed: list[str] = []

        for usage in usages:
            schema = tag.attributes.get(usage.name)
            if schema is not None:
                declared[usage.name] = schema.property_name
            elif wildcard is not None:
                absorbed.append(usage.name)
            else:
                raise ValidationError(
                    f"Attribute '{usage.name}' is not declared by tag "
                    f"'{tag.qualified_name}'",
                    attribute=usage.name,
                    tag=tag.qualified_name,
                    path=tag.provenance.path,
                    location=usage.location or location,
                )

        for name, schema in tag.attributes.items():
            if schema.required and name not in declared:
                raise ValidationError(
                    f"Required attribute '{name}' is missing on tag "
                    f"'{tag.qualified_name}'",
                    attribute=name,
                    tag=tag.qualified_name,
                    path=tag.provenance.path,
                    location=location,
                )

        return BoundAttributes(tag=tag, declared=declared, absorbed=tuple(absorbed))
