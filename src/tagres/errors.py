"""tagres exceptions.

Every error raised while discovering, loading, merging or validating tags is a
TagresError. The three concrete kinds map onto the phases that can fail:

- ConfigError: a definition file or directory layout is malformed
- ValidationError: a tag usage does not match the declared schema
- ResolutionError: sources disagree (cardinality, ambiguous supply, same-rank
  name collisions)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tagres.occurrence import SourceLocation


class TagresError(Exception):
    """Base exception for all tagres errors."""

    exit_code = 1

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        tag: str | None = None,
        location: "SourceLocation | None" = None,
    ) -> None:
        self.message = message
        self.path = Path(path) if path is not None else None
        self.tag = tag
        self.location = location
        super().__init__(self._format())

    def _format(self) -> str:
        context: list[str] = []
        if self.tag:
            context.append(f"tag '{self.tag}'")
        if self.location is not None:
            context.append(f"at {self.location}")
        elif self.path is not None:
            context.append(f"in {self.path}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigError(TagresError):
    """Raised when a taglib, tag definition or tags directory is malformed."""

    exit_code = 3


class ValidationError(TagresError):
    """Raised when a tag usage does not match the tag's declared attributes."""

    exit_code = 4

    def __init__(
        self,
        message: str,
        *,
        attribute: str | None = None,
        path: Path | str | None = None,
        tag: str | None = None,
        location: "SourceLocation | None" = None,
    ) -> None:
        self.attribute = attribute
        super().__init__(message, path=path, tag=tag, location=location)


class ResolutionError(TagresError):
    """Raised when definitions or nested tag values cannot be resolved unambiguously."""

    exit_code = 5
