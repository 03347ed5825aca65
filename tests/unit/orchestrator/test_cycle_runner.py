"""
Unit Tests for the Cycle Runner
"""
import asyncio
import json

import pytest

from mocks.mock_generator import (
    FailingGenerator,
    ScriptedChecker,
    ScriptedGenerator,
    UnavailableChecker,
    diagnostic,
)

from forgeloop.core.exceptions import WorkspaceBusyError
from forgeloop.modules.collaborators import GenerationClient
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.orchestrator.cycle_runner import CycleRunner, CycleStatus
from forgeloop.modules.workspace.change_applier import OutcomeStatus
from forgeloop.modules.workspace.workspace_lock import WorkspaceLockRegistry


USER = [{"role": "user", "content": "add a header"}]

INITIAL = (
    '<forge-write path="src/Header.tsx">export const Header = () => null;\n</forge-write>'
    '<forge-delete path="src/old.ts"/>'
    '<forge-chat-summary>Add header</forge-chat-summary>'
)
FIX = '<forge-write path="src/Header.tsx">export const Header = () => <h1/>;\n</forge-write>'


class BlockingGenerator(GenerationClient):
    """Holds the cycle open until released"""

    def __init__(self, response: str):
        self.response = response
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, messages):
        self.started.set()
        await self.release.wait()
        return self.response


class TestCycleRunner:
    """Tests for whole cycles"""

    @pytest.mark.asyncio
    async def test_applied_without_checker(self, memory_store, lock_registry):
        """Test a clean cycle with no checker configured"""
        runner = CycleRunner("ws", memory_store, lock_registry, generator=ScriptedGenerator([INITIAL]))

        result = await runner.run(USER)

        assert result.status == CycleStatus.APPLIED
        assert result.succeeded
        assert result.session is None
        assert result.chat_summary == "Add header"
        assert "src/Header.tsx" in memory_store.files
        assert "src/old.ts" not in memory_store.files

    @pytest.mark.asyncio
    async def test_failed_instruction(self, memory_store, lock_registry):
        """Test a failing instruction marks the cycle"""
        response = '<forge-rename from="src/missing.ts" to="src/b.ts"/>'
        runner = CycleRunner("ws", memory_store, lock_registry, generator=ScriptedGenerator([response]))

        result = await runner.run(USER)

        assert result.status == CycleStatus.APPLIED_WITH_ERRORS
        assert not result.succeeded
        assert result.apply_result.outcomes[0].status == OutcomeStatus.FAILED

    @pytest.mark.asyncio
    async def test_clean_check(self, memory_store, lock_registry):
        """Test a checker with nothing to say"""
        generator = ScriptedGenerator([INITIAL])
        runner = CycleRunner("ws", memory_store, lock_registry, generator=generator, checker=ScriptedChecker([[]]))

        result = await runner.run(USER)

        assert result.status == CycleStatus.APPLIED
        assert result.report.is_empty
        assert generator.call_count == 1

    @pytest.mark.asyncio
    async def test_resolved_after_fix(self, memory_store, lock_registry):
        """Test problems cleared by one fix round"""
        generator = ScriptedGenerator([INITIAL, FIX])
        checker = ScriptedChecker([[diagnostic(file="src/Header.tsx")], []])
        runner = CycleRunner("ws", memory_store, lock_registry, generator=generator, checker=checker)

        result = await runner.run(USER)

        assert result.status == CycleStatus.RESOLVED_AFTER_FIX
        assert result.succeeded
        assert result.session["state"] == "resolved"
        assert result.session["attempts"] == 1
        assert len(result.apply_results) == 2
        assert memory_store.files["src/Header.tsx"] == "export const Header = () => <h1/>;\n"

    @pytest.mark.asyncio
    async def test_exhausted(self, memory_store, lock_registry):
        """Test one initial call plus two fix rounds at most"""
        generator = ScriptedGenerator([INITIAL, FIX])
        checker = ScriptedChecker([[diagnostic()]])
        runner = CycleRunner("ws", memory_store, lock_registry, generator=generator, checker=checker)

        result = await runner.run(USER)

        assert result.status == CycleStatus.EXHAUSTED
        assert generator.call_count == 3
        assert checker.call_count == 3
        assert result.session["attempts"] == 2
        assert len(result.report.problems) == 1

    @pytest.mark.asyncio
    async def test_checker_unavailable(self, memory_store, lock_registry):
        """Test an unavailable checker does not block the cycle"""
        runner = CycleRunner(
            "ws", memory_store, lock_registry,
            generator=ScriptedGenerator([INITIAL]), checker=UnavailableChecker(),
        )

        result = await runner.run(USER)

        assert result.status == CycleStatus.APPLIED
        assert result.checker_available is False

    @pytest.mark.asyncio
    async def test_aborted_stream_not_applied(self, memory_store, lock_registry):
        """Test a cancelled stream leaves the workspace untouched"""
        token = CancellationToken()
        previews = []

        def on_preview(preview):
            previews.append(preview)
            token.cancel()

        runner = CycleRunner(
            "ws", memory_store, lock_registry,
            generator=ScriptedGenerator([INITIAL], stream=True, chunk_size=10),
        )

        result = await runner.run(USER, cancel_token=token, on_preview=on_preview)

        assert result.status == CycleStatus.ABORTED
        assert result.error == "Stream aborted"
        assert result.apply_results == []
        assert len(previews) == 1
        assert "src/Header.tsx" not in memory_store.files
        assert "src/old.ts" in memory_store.files

    @pytest.mark.asyncio
    async def test_streamed_response_applied(self, memory_store, lock_registry):
        """Test a fragmented response is applied once complete"""
        previews = []
        runner = CycleRunner(
            "ws", memory_store, lock_registry,
            generator=ScriptedGenerator([INITIAL], stream=True, chunk_size=5),
        )

        result = await runner.run(USER, on_preview=previews.append)

        assert result.status == CycleStatus.APPLIED
        assert len(previews) > 1
        assert memory_store.files["src/Header.tsx"] == "export const Header = () => null;\n"

    @pytest.mark.asyncio
    async def test_generation_failure(self, memory_store, lock_registry):
        """Test generator errors abort the cycle"""
        runner = CycleRunner("ws", memory_store, lock_registry, generator=FailingGenerator(TimeoutError("slow")))

        result = await runner.run(USER)

        assert result.status == CycleStatus.ABORTED
        assert result.error.startswith("Generation failed")

    @pytest.mark.asyncio
    async def test_run_requires_generator(self, memory_store, lock_registry):
        """Test run() without a generation client"""
        runner = CycleRunner("ws", memory_store, lock_registry)
        with pytest.raises(ValueError):
            await runner.run(USER)

    @pytest.mark.asyncio
    async def test_process_response_reports_without_fixing(self, memory_store, lock_registry):
        """Test problems are reported when there is nothing to fix with"""
        runner = CycleRunner("ws", memory_store, lock_registry, checker=ScriptedChecker([[diagnostic()]]))

        result = await runner.process_response(INITIAL)

        assert result.status == CycleStatus.APPLIED_WITH_ERRORS
        assert result.session is None
        assert len(result.report.problems) == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_apply(self, memory_store, lock_registry):
        """Test a pre-cancelled token stops everything at the first phase"""
        token = CancellationToken()
        token.cancel()
        runner = CycleRunner("ws", memory_store, lock_registry, checker=ScriptedChecker([[diagnostic()]]))

        result = await runner.process_response(INITIAL, cancel_token=token)

        assert result.status == CycleStatus.ABORTED
        assert "src/old.ts" in memory_store.files
        write, delete, summary = result.apply_result.outcomes
        assert write.status == OutcomeStatus.CANCELLED
        assert delete.status == OutcomeStatus.CANCELLED
        assert summary.status == OutcomeStatus.APPLIED

    @pytest.mark.asyncio
    async def test_reject_policy(self, memory_store):
        """Test a second cycle on a busy workspace is refused"""
        registry = WorkspaceLockRegistry(policy="reject")
        generator = BlockingGenerator(INITIAL)
        runner = CycleRunner("ws", memory_store, registry, generator=generator)

        first = asyncio.create_task(runner.run(USER))
        await generator.started.wait()

        with pytest.raises(WorkspaceBusyError):
            await runner.process_response(FIX)

        generator.release.set()
        result = await first
        assert result.status == CycleStatus.APPLIED

    @pytest.mark.asyncio
    async def test_queue_policy(self, memory_store, lock_registry):
        """Test a second cycle waits and then runs on the updated workspace"""
        generator = BlockingGenerator(INITIAL)
        runner = CycleRunner("ws", memory_store, lock_registry, generator=generator)

        first = asyncio.create_task(runner.run(USER))
        await generator.started.wait()
        second = asyncio.create_task(runner.process_response(FIX))
        await asyncio.sleep(0)
        assert not second.done()

        generator.release.set()
        await first
        result = await second

        assert result.status == CycleStatus.APPLIED
        assert memory_store.files["src/Header.tsx"] == "export const Header = () => <h1/>;\n"

    @pytest.mark.asyncio
    async def test_to_dict(self, memory_store, lock_registry):
        """Test the serialized cycle"""
        runner = CycleRunner("ws", memory_store, lock_registry)

        data = (await runner.process_response(INITIAL)).to_dict()

        assert data["status"] == "applied"
        assert data["chat_summary"] == "Add header"
        assert data["apply_results"][0]["outcomes"][0]["status"] == "applied"
        assert data["report"] == {"summary": "", "problems": []}

    @pytest.mark.asyncio
    async def test_to_dict_is_plain_json(self, memory_store, lock_registry):
        """Test problems and warnings serialize to lists and dicts"""
        runner = CycleRunner("ws", memory_store, lock_registry, checker=ScriptedChecker([[diagnostic()]]))

        data = (await runner.process_response(INITIAL + '<forge-rename from="a.ts"/>')).to_dict()

        assert data["report"]["problems"] == [{
            "file": "src/App.tsx", "line": 1, "column": 1,
            "code": "TS2304", "message": "Cannot find name 'foo'.",
        }]
        assert data["warnings"][0]["tag"] == "rename"
        assert json.loads(json.dumps(data)) == data
