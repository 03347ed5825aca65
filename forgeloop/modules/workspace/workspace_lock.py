"""
Per-workspace mutation locks

At most one cycle may mutate a workspace at a time. The registry is an
explicit object handed to every CycleRunner; there is no module-level
lock table. Policy "queue" waits for the running cycle, policy "reject"
raises WorkspaceBusyError immediately.
"""

import asyncio
from typing import Dict, Optional

from forgeloop.core.config import CONFLICT_POLICIES, settings
from forgeloop.core.exceptions import ValidationError, WorkspaceBusyError
from forgeloop.core.logging_config import logger


class WorkspaceLock:
    """Async context manager guarding one workspace"""

    def __init__(self, workspace_id: str, policy: str):
        self.workspace_id = workspace_id
        self.policy = policy
        self._lock = asyncio.Lock()
        self._waiting = 0

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @property
    def waiting(self) -> int:
        return self._waiting

    async def acquire(self) -> None:
        if self._lock.locked():
            if self.policy == "reject":
                raise WorkspaceBusyError(self.workspace_id)
            logger.info(f"[WorkspaceLock] Cycle queued for busy workspace {self.workspace_id}")

        self._waiting += 1
        try:
            await self._lock.acquire()
        finally:
            self._waiting -= 1

    def release(self) -> None:
        self._lock.release()

    async def __aenter__(self) -> "WorkspaceLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class WorkspaceLockRegistry:

    def __init__(self, policy: Optional[str] = None):
        policy = policy or settings.CYCLE_CONFLICT_POLICY
        if policy not in CONFLICT_POLICIES:
            raise ValidationError(
                f"Conflict policy must be one of {sorted(CONFLICT_POLICIES)}", field="policy"
            )
        self.policy = policy
        self._locks: Dict[str, WorkspaceLock] = {}

    def lock_for(self, workspace_id: str) -> WorkspaceLock:
        lock = self._locks.get(workspace_id)
        if lock is None:
            lock = WorkspaceLock(workspace_id, self.policy)
            self._locks[workspace_id] = lock
        return lock

    def is_busy(self, workspace_id: str) -> bool:
        lock = self._locks.get(workspace_id)
        return lock is not None and lock.locked
