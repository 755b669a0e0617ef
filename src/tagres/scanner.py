"""Directory scanning - the `tags-dir` convention.

Each immediate child directory of a scan root is one tag:

    components/
    ├── my-hello/
    │   ├── renderer.py        # or template.marko, exactly one
    │   └── marko-tag.json     # optional schema
    └── ui-tabs/
        └── template.marko

The schema may instead be embedded in the renderer as a module-level literal
(`tag = {...}`). It is read statically; the renderer is never imported.
"""

from __future__ import annotations

import ast
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Sequence

from tagres.config import TagresSettings
from tagres.errors import ConfigError
from tagres.loader import is_valid_tag_name, read_definition_file
from tagres.spec import (
    DiscoveryRank,
    Implementation,
    RendererRef,
    TagDefinition,
    Taglib,
    TemplateRef,
)

if TYPE_CHECKING:
    from tagres.loader import TaglibLoader

log = logging.getLogger(__name__)

_SKIPPED_DIRS = {"__pycache__"}


class DirectoryScanner:
    """Synthesizes tag definitions from a directory layout."""

    def __init__(self, loader: "TaglibLoader", settings: Optional[TagresSettings] = None):
        self.loader = loader
        self.settings = settings or loader.settings

    def scan(
        self,
        roots: Path | Sequence[Path],
        rank: DiscoveryRank = DiscoveryRank(),
    ) -> Taglib:
        """Scan one or more roots. A later root replaces same-named tags entirely."""
        roots = [Path(roots)] if isinstance(roots, (str, Path)) else [Path(r) for r in roots]
        if not roots:
            raise ConfigError("No tags directories to scan")

        tags: dict[str, TagDefinition] = {}
        dependencies: list[Path] = []

        for root in roots:
            root = root.resolve()
            if not root.is_dir():
                raise ConfigError("Tags directory not found", path=root)
            dependencies.append(root)

            for tag_dir in sorted(root.iterdir(), key=lambda p: p.name):
                if not tag_dir.is_dir() or self._skipped(tag_dir):
                    continue

                name = tag_dir.name
                if name in tags:
                    log.debug(f"Tag '{name}' from {root} overrides earlier tags-dir definition")
                    tags = {
                        qname: tag for qname, tag in tags.items() if tag.root_name != name
                    }
                for definition in self.scan_tag_dir(tag_dir, rank):
                    tags[definition.qualified_name] = definition

        return Taglib(
            path=roots[0].resolve(),
            rank=rank,
            tags=tags,
            tags_dirs=[r.resolve() for r in roots],
            dependencies=dependencies,
        )

    @staticmethod
    def _skipped(directory: Path) -> bool:
        return directory.name.startswith(".") or directory.name in _SKIPPED_DIRS

    def scan_tag_dir(
        self, directory: Path, rank: DiscoveryRank = DiscoveryRank()
    ) -> list[TagDefinition]:
        """Build the definitions for one tag directory."""
        name = directory.name
        if not is_valid_tag_name(name):
            raise ConfigError(
                f"Invalid tag name {name!r} from directory", tag=name, path=directory
            )
        implementation = self.detect_implementation(directory, tag=name)

        schema_file = directory / self.settings.tag_filename
        embedded = None
        if isinstance(implementation, RendererRef):
            embedded = self.read_embedded_schema(implementation.path, tag=name)

        if schema_file.is_file() and embedded is not None:
            raise ConfigError(
                f"Schema is given both by {schema_file.name} and by the renderer",
                tag=name,
                path=directory,
            )

        body: dict[str, Any] = {}
        source = directory
        if schema_file.is_file():
            body = read_definition_file(schema_file)
            source = schema_file
        elif embedded is not None:
            body = embedded
            source = implementation.path

        return self.loader.build_definitions(
            name,
            body,
            base_dir=directory,
            source=source,
            rank=rank,
            implementation=implementation,
            provenance_path=directory,
        )

    def detect_implementation(self, directory: Path, tag: str) -> Implementation:
        """Return the renderer or template in `directory`; exactly one must exist."""
        renderer = directory / self.settings.renderer_filename
        template = directory / self.settings.template_filename
        has_renderer = renderer.is_file()
        has_template = template.is_file()

        if has_renderer and has_template:
            raise ConfigError(
                f"Ambiguous implementation: both {renderer.name} and {template.name} exist",
                tag=tag,
                path=directory,
            )
        if has_renderer:
            return RendererRef(path=renderer.resolve())
        if has_template:
            return TemplateRef(path=template.resolve())
        raise ConfigError(
            f"No implementation found: expected {renderer.name} or {template.name}",
            tag=tag,
            path=directory,
        )

    def read_embedded_schema(self, renderer: Path, tag: str) -> Optional[dict[str, Any]]:
        """Extract the `tag = {...}` literal from a renderer module, if any."""
        target = self.settings.embedded_schema_name
        try:
            source = renderer.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Renderer cannot be read: {exc}", tag=tag, path=renderer) from exc
        try:
            module = ast.parse(source, filename=str(renderer))
        except (SyntaxError, ValueError, RecursionError, MemoryError) as exc:
            raise ConfigError(f"Renderer cannot be parsed: {exc}", tag=tag, path=renderer) from exc

        for node in module.body:
            if isinstance(node, ast.Assign):
                names = [t.id for t in node.targets if isinstance(t, ast.Name)]
                value = node.value
            elif isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
                names = [node.target.id]
                value = node.value
            else:
                continue
            if target not in names or value is None:
                continue

            # unhashable keys raise TypeError, deep literals RecursionError
            try:
                schema = ast.literal_eval(value)
            except (ValueError, TypeError, SyntaxError, RecursionError, MemoryError) as exc:
                raise ConfigError(
                    f"Embedded schema '{target}' must be a literal mapping",
                    tag=tag,
                    path=renderer,
                ) from exc
            if not isinstance(schema, dict):
                raise ConfigError(
                    f"Embedded schema '{target}' must be a mapping", tag=tag, path=renderer
                )
            return schema
        return None
