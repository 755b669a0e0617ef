"""The merged, read-only tag registry handed to the template compiler."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from tagres.errors import ResolutionError, ValidationError
from tagres.nested import NestedTagResolver
from tagres.occurrence import AttributeUsage, SourceLocation, TagOccurrence
from tagres.spec import TagDefinition, Taglib
from tagres.validator import AttributeValidator, BoundAttributes

log = logging.getLogger(__name__)


class TagRegistry(Mapping[str, TagDefinition]):
    """Qualified tag name -> TagDefinition, immutable for one compile pass."""

    def __init__(
        self,
        tags: Mapping[str, TagDefinition],
        shadowed: Sequence[TagDefinition] = (),
        resolver: Optional[NestedTagResolver] = None,
    ):
        self._tags = MappingProxyType(dict(tags))
        self._shadowed = tuple(shadowed)
        self._resolver = resolver or NestedTagResolver()

    def __getitem__(self, name: str) -> TagDefinition:
        return self._tags[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __repr__(self) -> str:
        return f"TagRegistry({list(self._tags)})"

    @property
    def shadowed(self) -> tuple[TagDefinition, ...]:
        """Definitions that lost to a same-named definition of better rank."""
        return self._shadowed

    def children_of(self, name: str) -> list[TagDefinition]:
        """Direct nested children of a tag."""
        return [tag for tag in self._tags.values() if tag.parent_name == name]

    def lookup(self, name: str, location: Optional[SourceLocation] = None) -> TagDefinition:
        tag = self._tags.get(name)
        if tag is None:
            raise ValidationError(f"Unknown tag '{name}'", tag=name, location=location)
        return tag

    def validate(
        self,
        name: str,
        usages: Iterable[AttributeUsage],
        location: Optional[SourceLocation] = None,
    ) -> BoundAttributes:
        """Validate attribute names used on one occurrence of `name`."""
        tag = self.lookup(name, location)
        return self._resolver.validator.validate(tag, usages, location)

    def resolve(self, occurrence: TagOccurrence) -> dict[str, Any]:
        """Build the renderer input for an occurrence, nested tags included."""
        tag = self.lookup(occurrence.name, occurrence.location)
        return self._resolver.resolve(self, occurrence, tag)


def merge_taglibs(
    taglibs: Iterable[Taglib], resolver: Optional[NestedTagResolver] = None
) -> TagRegistry:
    """Fold taglibs into one registry by discovery rank.

    The best-ranked definition of a top-level tag wins outright, together with
    its nested children. Input order is irrelevant; only ranks matter.

    Raises:
        ResolutionError: two taglibs of the same rank define the same tag.
    """
    ordered = sorted(taglibs, key=lambda t: (t.rank, str(t.path)))
    winners: dict[str, Taglib] = {}
    tags: dict[str, TagDefinition] = {}
    shadowed: list[TagDefinition] = []

    for taglib in ordered:
        groups: dict[str, list[TagDefinition]] = {}
        for tag in taglib.tags.values():
            groups.setdefault(tag.root_name, []).append(tag)

        for root, group in groups.items():
            winner = winners.get(root)
            if winner is None:
                winners[root] = taglib
                for tag in group:
                    tags[tag.qualified_name] = tag
            elif winner.rank == taglib.rank:
                raise ResolutionError(
                    f"Tag '{root}' is defined by both {winner.path} and {taglib.path} "
                    f"at the same discovery rank {tuple(taglib.rank)}",
                    tag=root,
                    path=taglib.path,
                )
            else:
                log.debug(f"Tag '{root}' from {taglib.path} is shadowed by {winner.path}")
                shadowed.extend(group)

    return TagRegistry(tags, shadowed=shadowed, resolver=resolver)
