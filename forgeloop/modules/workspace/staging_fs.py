"""
Staging Filesystem - in-memory overlay above a BackingStore

Every mutation of one response-processing cycle is staged here first:

    path -> Content(text|bytes) | Tombstone | RenamedFrom(original)

Reads consult the overlay before the baseline. flush() then commits every
entry to the backing store with a best-effort policy: each entry is
attempted even after earlier failures and nothing already committed is
undone (there is no cross-file transaction).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from forgeloop.core.logging_config import logger
from forgeloop.modules.protocol.paths import normalize_workspace_path
from forgeloop.modules.workspace.backing_store import BackingStore, FileContent


@dataclass(frozen=True)
class Content:
    data: FileContent


@dataclass(frozen=True)
class Tombstone:
    pass


@dataclass(frozen=True)
class RenamedFrom:
    original_path: str


StagingEntry = Union[Content, Tombstone, RenamedFrom]


class FlushOperation(str, Enum):
    WRITE = "write"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class FlushOutcome:
    """Result of committing one overlay entry"""
    path: str
    operation: FlushOperation
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "path": self.path,
            "operation": self.operation.value,
            "success": self.success,
            "error": self.error,
        }


class StagingFilesystem:
    """Overlay-first view of a workspace; discarded after flush"""

    def __init__(self, baseline: BackingStore):
        self.baseline = baseline
        self._entries: Dict[str, StagingEntry] = {}

    @property
    def entries(self) -> Dict[str, StagingEntry]:
        return dict(self._entries)

    @property
    def is_dirty(self) -> bool:
        return bool(self._entries)

    # ==========================================
    # Queries
    # ==========================================

    async def exists(self, path: str) -> bool:
        path = normalize_workspace_path(path)
        entry = self._entries.get(path)
        if entry is None:
            return await self.baseline.exists(path)
        if isinstance(entry, Tombstone):
            return False
        if isinstance(entry, RenamedFrom):
            return await self.baseline.exists(entry.original_path)
        return True

    async def read(self, path: str) -> Optional[FileContent]:
        path = normalize_workspace_path(path)
        entry = self._entries.get(path)
        if entry is None:
            return await self.baseline.read(path)
        if isinstance(entry, Tombstone):
            return None
        if isinstance(entry, RenamedFrom):
            return await self.baseline.read(entry.original_path)
        return entry.data

    # ==========================================
    # Staging
    # ==========================================

    def stage(self, path: str, entry: StagingEntry) -> None:
        """Record or replace the overlay entry for path"""
        self._entries[normalize_workspace_path(path)] = entry

    def write(self, path: str, content: FileContent) -> None:
        self.stage(path, Content(content))

    def delete(self, path: str) -> None:
        self.stage(path, Tombstone())

    async def rename(self, from_path: str, to_path: str) -> None:
        """
        Stage a move. The destination remembers where the bytes live:
        staged content moves along, a pending rename collapses to its origin.

        Raises:
            FileNotFoundError: source does not exist in the staged view
        """
        from_path = normalize_workspace_path(from_path)
        to_path = normalize_workspace_path(to_path)
        if not await self.exists(from_path):
            raise FileNotFoundError(f"No such file: {from_path}")
        if from_path == to_path:
            return

        entry = self._entries.get(from_path)
        if isinstance(entry, Content):
            moved: StagingEntry = entry
        elif isinstance(entry, RenamedFrom):
            moved = entry
        else:
            moved = RenamedFrom(from_path)

        self._entries[from_path] = Tombstone()
        if isinstance(moved, RenamedFrom) and moved.original_path == to_path:
            # Moved back to where it started: the baseline file is the answer
            self._entries.pop(to_path, None)
        else:
            self._entries[to_path] = moved

    def discard(self) -> None:
        self._entries.clear()

    # ==========================================
    # Commit
    # ==========================================

    async def flush(self) -> Dict[str, FlushOutcome]:
        """Commit all entries to the baseline; returns one outcome per path"""
        outcomes: Dict[str, FlushOutcome] = {}
        entries = dict(self._entries)

        renames = {p: e for p, e in entries.items() if isinstance(e, RenamedFrom)}
        tombstones = [p for p, e in entries.items() if isinstance(e, Tombstone)]
        writes = {p: e for p, e in entries.items() if isinstance(e, Content)}

        # A rename whose source is itself overwritten in this flush cannot use
        # the backing rename; its bytes are read before anything is touched.
        overwritten = set(renames) | set(writes)
        snapshots: Dict[str, FileContent] = {}
        for path, entry in renames.items():
            if entry.original_path in overwritten:
                try:
                    data = await self.baseline.read(entry.original_path)
                except Exception as e:
                    outcomes[path] = FlushOutcome(path, FlushOperation.RENAME, False, str(e))
                    continue
                if data is None:
                    outcomes[path] = FlushOutcome(
                        path, FlushOperation.RENAME, False, f"No such file: {entry.original_path}"
                    )
                else:
                    snapshots[path] = data

        for path, entry in renames.items():
            if path in outcomes:
                continue
            try:
                if path in snapshots:
                    await self.baseline.write(path, snapshots[path])
                else:
                    await self.baseline.rename(entry.original_path, path)
                outcomes[path] = FlushOutcome(path, FlushOperation.RENAME, True)
            except Exception as e:
                logger.warning(f"[StagingFS] Rename {entry.original_path} -> {path} failed: {e}")
                outcomes[path] = FlushOutcome(path, FlushOperation.RENAME, False, str(e))

        for path in tombstones:
            try:
                await self.baseline.delete(path)
                outcomes[path] = FlushOutcome(path, FlushOperation.DELETE, True)
            except Exception as e:
                logger.warning(f"[StagingFS] Delete {path} failed: {e}")
                outcomes[path] = FlushOutcome(path, FlushOperation.DELETE, False, str(e))

        for path, entry in writes.items():
            try:
                await self.baseline.write(path, entry.data)
                outcomes[path] = FlushOutcome(path, FlushOperation.WRITE, True)
            except Exception as e:
                logger.warning(f"[StagingFS] Write {path} failed: {e}")
                outcomes[path] = FlushOutcome(path, FlushOperation.WRITE, False, str(e))

        failed = [o for o in outcomes.values() if not o.success]
        logger.info(
            f"[StagingFS] Flushed {len(outcomes)} entr{'y' if len(outcomes) == 1 else 'ies'}"
            + (f", {len(failed)} failed" if failed else "")
        )

        self._entries.clear()
        return outcomes

    def pending_paths(self) -> List[str]:
        return list(self._entries)
