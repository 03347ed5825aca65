"""
Unit Tests for per-workspace locks
"""
import asyncio

import pytest

from forgeloop.core.exceptions import ValidationError, WorkspaceBusyError
from forgeloop.modules.workspace.workspace_lock import WorkspaceLockRegistry


class TestWorkspaceLockRegistry:
    """Tests for queue and reject policies"""

    def test_invalid_policy(self):
        """Test unknown policies are rejected"""
        with pytest.raises(ValidationError):
            WorkspaceLockRegistry(policy="drop")

    def test_same_lock_per_workspace(self):
        """Test one lock object per workspace id"""
        registry = WorkspaceLockRegistry(policy="queue")
        assert registry.lock_for("a") is registry.lock_for("a")
        assert registry.lock_for("a") is not registry.lock_for("b")

    @pytest.mark.asyncio
    async def test_queue_policy_serializes(self):
        """Test a second cycle waits for the first"""
        registry = WorkspaceLockRegistry(policy="queue")
        events = []

        async def cycle(name):
            async with registry.lock_for("ws"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(cycle("one"), cycle("two"))

        assert events == ["one-start", "one-end", "two-start", "two-end"]
        assert not registry.is_busy("ws")

    @pytest.mark.asyncio
    async def test_reject_policy_raises(self):
        """Test a busy workspace is refused under reject"""
        registry = WorkspaceLockRegistry(policy="reject")

        async with registry.lock_for("ws"):
            assert registry.is_busy("ws")
            with pytest.raises(WorkspaceBusyError) as exc_info:
                async with registry.lock_for("ws"):
                    pass
            assert exc_info.value.code == "WORKSPACE_BUSY"
            assert exc_info.value.to_dict()["details"] == {"workspace_id": "ws"}

        async with registry.lock_for("ws"):
            pass

    @pytest.mark.asyncio
    async def test_workspaces_are_independent(self):
        """Test different workspaces never block each other"""
        registry = WorkspaceLockRegistry(policy="reject")

        async with registry.lock_for("a"):
            async with registry.lock_for("b"):
                assert registry.is_busy("a") and registry.is_busy("b")

    @pytest.mark.asyncio
    async def test_waiting_count(self):
        """Test queued cycles are counted while they wait"""
        registry = WorkspaceLockRegistry(policy="queue")
        lock = registry.lock_for("ws")

        await lock.acquire()
        waiter = asyncio.create_task(lock.acquire())
        await asyncio.sleep(0)
        assert lock.waiting == 1

        lock.release()
        await waiter
        assert lock.waiting == 0
        lock.release()
        assert not lock.locked
