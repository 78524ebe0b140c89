"""Snapshot cache for reference lookups.

One snapshot serves many lookups until the owner refreshes or invalidates
it. A lookup loads a snapshot lazily only when none has been taken yet; after
``invalidate()`` lookups return None until the owner takes a new snapshot, so
a reference id from a previous view can never resolve against a new one.
"""

from typing import Optional

import structlog

from .models import ElementHandle, Snapshot

logger = structlog.get_logger()


class SnapshotCache:
    """Holds the current snapshot of a structural backend.

    Attributes:
        include_screenshot: Capture a screenshot with each refresh
    """

    def __init__(self, backend_getter, include_screenshot: bool = True):
        """Initialize the cache.

        Args:
            backend_getter: Callable returning the structural backend; raises
                BackendUnavailableError when it is not connected
            include_screenshot: Capture a screenshot with each refresh
        """
        self._backend_getter = backend_getter
        self.include_screenshot = include_screenshot
        self._snapshot: Optional[Snapshot] = None
        self._loaded_once = False
        self.log = logger.bind(component="snapshot_cache")

    @property
    def current(self) -> Optional[Snapshot]:
        return self._snapshot

    async def refresh(self, interactive: bool = True) -> Snapshot:
        """Take a new snapshot and replace the held one."""
        backend = self._backend_getter()
        snapshot = await backend.snapshot(interactive=interactive)

        if self.include_screenshot and snapshot.screenshot is None and backend.capabilities.screenshot:
            snapshot.screenshot = await backend.screenshot()

        self._snapshot = snapshot
        self._loaded_once = True
        self.log.debug("Snapshot refreshed", refs=len(snapshot.refs))
        return snapshot

    async def lookup(self, reference_id: str) -> Optional[ElementHandle]:
        """Map a reference id (with or without ``@``) to its handle."""
        if self._snapshot is None and not self._loaded_once:
            await self.refresh()

        if self._snapshot is None:
            return None

        return self._snapshot.get(reference_id.lstrip("@"))

    def invalidate(self) -> None:
        """Drop the held snapshot and all of its references."""
        if self._snapshot is not None:
            self.log.debug("Snapshot invalidated", refs=len(self._snapshot.refs))
        self._snapshot = None

    def find_by_role(self, role: str) -> list[ElementHandle]:
        if self._snapshot is None:
            return []
        return [handle for handle in self._snapshot.refs.values() if handle.role == role]

    def find_by_name(self, name: str, exact: bool = False) -> list[ElementHandle]:
        """Handles whose accessible name matches (substring, case-insensitive unless exact)."""
        if self._snapshot is None:
            return []
        if exact:
            return [handle for handle in self._snapshot.refs.values() if handle.name == name]
        needle = name.lower()
        return [handle for handle in self._snapshot.refs.values() if needle in handle.name.lower()]
