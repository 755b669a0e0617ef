"""Tag usages as reported by the template parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class SourceLocation:
    """Position of a tag or attribute in a template file."""

    path: Optional[Path] = None
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        where = str(self.path) if self.path is not None else "<template>"
        return f"{where}:{self.line}:{self.column}"


@dataclass(frozen=True)
class AttributeUsage:
    """One attribute written on a tag at a call site."""

    name: str
    value: Any = None
    location: Optional[SourceLocation] = None


@dataclass
class TagOccurrence:
    """A custom tag occurrence in a template.

    `nested` holds nested tag occurrences (`<ui-tabs.tab>` or `<@tab>`) in
    document order. `body` is None when the tag had no body content at all;
    an empty string or list still counts as a body.
    """

    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    nested: List["TagOccurrence"] = field(default_factory=list)
    body: Any = None
    location: Optional[SourceLocation] = None
    attribute_locations: Dict[str, SourceLocation] = field(default_factory=dict)

    @property
    def has_body(self) -> bool:
        return self.body is not None

    def usages(self) -> List[AttributeUsage]:
        return [
            AttributeUsage(
                name=name,
                value=value,
                location=self.attribute_locations.get(name, self.location),
            )
            for name, value in self.attributes.items()
        ]

    def render_body(self) -> Callable[[Any], None]:
        """Callable writing this occurrence's body to an output stream."""
        body = self.body
        if callable(body):
            return body

        def render_body(out: Any) -> None:
            parts = body if isinstance(body, (list, tuple)) else [body]
            for part in parts:
                if callable(part):
                    part(out)
                else:
                    out.write(str(part))

        return render_body
