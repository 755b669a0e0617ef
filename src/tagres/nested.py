"""Nested tag resolution.

Definition time: `@tabs <tab>[]` on `ui-tabs` yields a derived `ui-tabs.tab`
definition plus a `tabs` attribute on the parent, so the value can also be
passed directly.

Usage time: the `<ui-tabs.tab>` occurrences under one `<ui-tabs>` are folded
into the parent's renderer input, honouring each declaration's cardinality.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from tagres.errors import ConfigError, ResolutionError, ValidationError
from tagres.occurrence import TagOccurrence
from tagres.spec import (
    RENDER_BODY,
    AttributeSchema,
    NestedRef,
    NestedTagDeclaration,
    TagDefinition,
    freeze_mapping,
)
from tagres.validator import AttributeValidator

log = logging.getLogger(__name__)


def property_type(declaration: NestedTagDeclaration) -> str:
    """Type id of the parent attribute that mirrors a nested tag."""
    return "array" if declaration.is_repeated else "object"


class NestedTagResolver:
    """Expands nested tag declarations and resolves nested occurrences."""

    def __init__(self, validator: Optional[AttributeValidator] = None):
        self.validator = validator or AttributeValidator()

    # -------------------------------------------------------------------------
    # Definition time
    # -------------------------------------------------------------------------

    def expand(self, parent: TagDefinition) -> list[TagDefinition]:
        """Return the parent (with mirrored attributes) followed by all derived children."""
        attributes = dict(parent.attributes)
        children: list[TagDefinition] = []
        seen_children: dict[str, str] = {}

        for prop, declaration in parent.nested_tags.items():
            implied = AttributeSchema(name=prop, type_id=property_type(declaration))
            existing = attributes.get(prop)
            if existing is None:
                attributes[prop] = implied
            elif existing.type_id != implied.type_id:
                raise ConfigError(
                    f"Attribute '{prop}' ({existing.type_id}) collides with nested "
                    f"tag <{declaration.child_local_name}> ({implied.type_id})",
                    tag=parent.qualified_name,
                    path=parent.provenance.path,
                )

            local = declaration.child_local_name
            if local in seen_children:
                raise ConfigError(
                    f"Nested tag <{local}> is declared for both '{seen_children[local]}' "
                    f"and '{prop}'",
                    tag=parent.qualified_name,
                    path=parent.provenance.path,
                )
            seen_children[local] = prop

            child = TagDefinition(
                qualified_name=f"{parent.qualified_name}.{local}",
                implementation=NestedRef(
                    parent=parent.qualified_name, parent_property=prop
                ),
                attributes=dict(declaration.child_attributes),
                nested_tags=dict(declaration.child_nested),
                provenance=parent.provenance,
                description=declaration.description,
            )
            children.extend(self.expand(child))

        expanded = parent.model_copy(update={"attributes": freeze_mapping(attributes)})
        return [expanded, *children]

    # -------------------------------------------------------------------------
    # Usage time
    # -------------------------------------------------------------------------

    def resolve(
        self,
        registry: Mapping[str, TagDefinition],
        occurrence: TagOccurrence,
        tag: Optional[TagDefinition] = None,
    ) -> dict[str, Any]:
        """Build the renderer input for one tag occurrence.

        Raises:
            ValidationError: unknown tag or undeclared attribute.
            ResolutionError: cardinality violation, ambiguous supply or a nested
                tag that the parent does not declare.
        """
        if tag is None:
            tag = registry.get(occurrence.name)
            if tag is None:
                raise ValidationError(
                    f"Unknown tag '{occurrence.name}'",
                    tag=occurrence.name,
                    location=occurrence.location,
                )

        bound = self.validator.validate(tag, occurrence.usages(), occurrence.location)
        data = bound.build_input(occurrence.attributes)

        grouped = self._group_nested(tag, occurrence)
        for prop, declaration in tag.nested_tags.items():
            found = grouped.get(prop, [])
            if prop in occurrence.attributes:
                if found:
                    raise ResolutionError(
                        f"'{prop}' is supplied both as an attribute and as nested "
                        f"<{declaration.child_local_name}> tags",
                        tag=tag.qualified_name,
                        location=found[0].location or occurrence.location,
                    )
                # direct attribute value is used verbatim
                continue

            child_tag = self._child_definition(registry, tag, declaration)
            values = [self.resolve(registry, child, child_tag) for child in found]

            if declaration.is_repeated:
                data[prop] = values
            elif len(values) > 1:
                raise ResolutionError(
                    f"Nested tag <{declaration.child_local_name}> may appear only once "
                    f"but appeared {len(values)} times",
                    tag=tag.qualified_name,
                    location=found[1].location or occurrence.location,
                )
            elif values:
                data[prop] = values[0]

        if occurrence.has_body:
            data[RENDER_BODY] = occurrence.render_body()
        return data

    def _group_nested(
        self, tag: TagDefinition, occurrence: TagOccurrence
    ) -> dict[str, list[TagOccurrence]]:
        by_local = {d.child_local_name: prop for prop, d in tag.nested_tags.items()}
        grouped: dict[str, list[TagOccurrence]] = {}

        for child in occurrence.nested:
            local = self._local_name(tag, child)
            prop = by_local.get(local) if local is not None else None
            if prop is None:
                raise ResolutionError(
                    f"<{child.name}> is not a nested tag of '{tag.qualified_name}'",
                    tag=tag.qualified_name,
                    location=child.location or occurrence.location,
                )
            grouped.setdefault(prop, []).append(child)
        return grouped

    @staticmethod
    def _local_name(tag: TagDefinition, child: TagOccurrence) -> Optional[str]:
        if child.name.startswith("@"):
            return child.name[1:]
        prefix = f"{tag.qualified_name}."
        if child.name.startswith(prefix):
            return child.name[len(prefix) :]
        return None

    def _child_definition(
        self,
        registry: Mapping[str, TagDefinition],
        tag: TagDefinition,
        declaration: NestedTagDeclaration,
    ) -> TagDefinition:
        name = f"{tag.qualified_name}.{declaration.child_local_name}"
        child = registry.get(name)
        if child is None:
            # registry built without expansion, derive on the fly
            log.debug(f"Deriving nested definition {name} from its declaration")
            child = self.expand(
                TagDefinition(
                    qualified_name=name,
                    implementation=NestedRef(
                        parent=tag.qualified_name,
                        parent_property=declaration.parent_property,
                    ),
                    attributes=dict(declaration.child_attributes),
                    nested_tags=dict(declaration.child_nested),
                    provenance=tag.provenance,
                )
            )[0]
        return child
