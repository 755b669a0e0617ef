"""Taglib discovery - from a template path to a TagRegistry.

Starting at the template's directory and moving up to the filesystem root,
each level contributes, best rank first:

    <level>/marko-taglib.json                    rank (level, 0)
    <level>/node_modules/<pkg>/marko-taglib.json rank (level, 1..n), by pkg name

Levels are loaded in parallel. The merge depends only on rank, so the registry
is the same whatever order the loads complete in.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from tagres.cache import DirectoryDiscovery, DiscoveryCache
from tagres.config import TagresSettings
from tagres.loader import TaglibLoader
from tagres.registry import TagRegistry, merge_taglibs
from tagres.spec import DiscoveryRank, Taglib

log = logging.getLogger(__name__)


class TaglibDiscoveryWalker:
    """Finds, loads and merges every taglib applicable to a template."""

    def __init__(
        self,
        settings: Optional[TagresSettings] = None,
        cache: Optional[DiscoveryCache] = None,
        loader: Optional[TaglibLoader] = None,
    ):
        """
        Args:
            settings: File naming conventions and limits.
            cache: Shared per-directory cache. Owned by the caller so it can be
                reused across compiles and invalidated on file changes.
            loader: Loader used for every taglib file.
        """
        self.settings = settings or (loader.settings if loader else TagresSettings())
        self.cache = cache if cache is not None else DiscoveryCache()
        self.loader = loader or TaglibLoader(self.settings)

    def discover(self, template_path: Path | str) -> TagRegistry:
        """Build the registry for one template.

        Raises:
            ConfigError: a taglib or tags directory is malformed.
            ResolutionError: two sources of the same rank define the same tag.
        """
        directories = self.candidate_directories(template_path)
        log.debug(f"Discovering taglibs for {template_path} across {len(directories)} levels")

        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            futures = [pool.submit(self.discover_directory, d) for d in directories]
            # level order keeps error reporting deterministic
            discoveries = [future.result() for future in futures]

        taglibs: list[Taglib] = []
        for level, discovery in enumerate(discoveries):
            for taglib in discovery.taglibs:
                taglibs.append(
                    taglib.with_rank(DiscoveryRank(level, taglib.rank.position))
                )

        registry = merge_taglibs(taglibs, resolver=self.loader.nested)
        log.info(
            f"Resolved {len(registry)} tags from {len(taglibs)} taglibs for {template_path}"
        )
        return registry

    def candidate_directories(self, template_path: Path | str) -> list[Path]:
        """Template directory and its ancestors, nearest first."""
        start = Path(template_path).resolve().parent
        boundary = self.settings.boundary.resolve() if self.settings.boundary else None

        directories: list[Path] = []
        for directory in [start, *start.parents]:
            directories.append(directory)
            if directory == boundary:
                break
        return directories

    def discover_directory(self, directory: Path) -> DirectoryDiscovery:
        """Taglibs at one level, from the cache when possible."""
        directory = directory.resolve()
        return self.cache.get_or_compute(directory, lambda: self._load_directory(directory))

    def taglib_sources(self, directory: Path) -> list[tuple[int, Path]]:
        """(position, path) of each taglib file present at one level."""
        sources: list[tuple[int, Path]] = []

        direct = directory / self.settings.taglib_filename
        if direct.is_file():
            sources.append((0, direct))
        else:
            log.debug(f"No taglib at {direct}")

        packages = directory / self.settings.packages_dirname
        if packages.is_dir():
            package_dirs = sorted(
                (p for p in packages.iterdir() if p.is_dir()), key=lambda p: p.name
            )
            position = 1
            for package in package_dirs:
                candidate = package / self.settings.taglib_filename
                if candidate.is_file():
                    sources.append((position, candidate))
                    position += 1
        return sources

    def _load_directory(self, directory: Path) -> DirectoryDiscovery:
        taglibs = tuple(
            self.loader.load_file(path, rank=DiscoveryRank(0, position))
            for position, path in self.taglib_sources(directory)
        )

        watched: list[Path] = [
            directory / self.settings.taglib_filename,
            directory / self.settings.packages_dirname,
        ]
        for taglib in taglibs:
            watched.extend(taglib.dependencies)

        return DirectoryDiscovery(
            directory=directory, taglibs=taglibs, watched=tuple(dict.fromkeys(watched))
        )
