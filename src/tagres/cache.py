"""Per-directory discovery cache.

Keyed by absolute directory path. Concurrent requests for the same uncached
directory share one computation (single-flight). Entries only go away through
an explicit signal: `invalidate`, `invalidate_path` or `clear`.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Tuple

from tagres.spec import Taglib

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryDiscovery:
    """Taglibs found at one directory level, ranked relative to that level only."""

    directory: Path
    taglibs: Tuple[Taglib, ...] = ()
    watched: Tuple[Path, ...] = field(default_factory=tuple)

    def depends_on(self, path: Path) -> bool:
        """True if a change at `path` could alter this discovery."""
        return any(path == w or w in path.parents for w in self.watched)


class DiscoveryCache:
    """Thread-safe single-flight cache of DirectoryDiscovery results."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Path, "Future[DirectoryDiscovery]"] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, directory: object) -> bool:
        if not isinstance(directory, Path):
            return False
        with self._lock:
            return directory in self._entries

    def get_or_compute(
        self, directory: Path, compute: Callable[[], DirectoryDiscovery]
    ) -> DirectoryDiscovery:
        """Return the cached discovery for `directory`, computing it at most once.

        Failures are not cached: waiters see the exception and the next request
        computes again.
        """
        with self._lock:
            future = self._entries.get(directory)
            owner = future is None
            if owner:
                future = Future()
                self._entries[directory] = future

        if not owner:
            log.debug(f"Discovery cache hit for {directory}")
            return future.result()

        log.debug(f"Discovery cache miss for {directory}")
        try:
            result = compute()
        except BaseException as exc:
            with self._lock:
                if self._entries.get(directory) is future:
                    del self._entries[directory]
            future.set_exception(exc)
            raise
        future.set_result(result)
        return result

    def invalidate(self, directory: Path) -> bool:
        """Drop the entry for one directory. Returns True if one was cached."""
        with self._lock:
            removed = self._entries.pop(directory, None) is not None
        if removed:
            log.debug(f"Invalidated discovery for {directory}")
        return removed

    def invalidate_path(self, changed: Path) -> list[Path]:
        """Drop every entry that read or watched `changed` (a file or directory).

        This is the hook a file watcher calls; tagres never watches by itself.
        """
        dropped: list[Path] = []
        with self._lock:
            for directory, future in list(self._entries.items()):
                if not future.done():
                    # in flight: watched paths unknown yet, fall back to ancestry
                    stale = directory == changed or directory in changed.parents
                else:
                    stale = future.exception() is None and future.result().depends_on(changed)
                if stale:
                    del self._entries[directory]
                    dropped.append(directory)
        for directory in dropped:
            log.debug(f"Invalidated discovery for {directory} after change to {changed}")
        return dropped

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
