"""
Unit Tests for the Auto-Fix Loop
"""
import pytest

from mocks.mock_generator import (
    FailingGenerator,
    ScriptedChecker,
    ScriptedGenerator,
    UnavailableChecker,
    diagnostic,
)

from forgeloop.modules.collaborators import GenerationClient
from forgeloop.modules.orchestrator.auto_fix_loop import MAX_FIX_ATTEMPTS, AutoFixLoop, run_checker
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.orchestrator.state_machine import AutoFixState
from forgeloop.modules.protocol.problem_reporter import problem_reporter
from forgeloop.modules.workspace.backing_store import MemoryFileStore
from forgeloop.modules.workspace.change_applier import ChangeApplier


FIX_RESPONSE = '<forge-write path="src/App.tsx">export default function App() { return 1; }\n</forge-write>'


def make_loop(store, generator, checker) -> AutoFixLoop:
    return AutoFixLoop("ws", store, generator, checker, ChangeApplier(store))


def initial_report(count: int = 1):
    return problem_reporter.build([diagnostic(line=n + 1) for n in range(count)])


class CancellingGenerator(GenerationClient):
    """Streams a response and cancels the token after the first fragment"""

    def __init__(self, token: CancellationToken):
        self.token = token
        self.call_count = 0

    async def generate(self, messages):
        self.call_count += 1
        return self._stream()

    async def _stream(self):
        yield '<forge-write path="a.txt">'
        self.token.cancel("stop button")
        yield 'half</forge-write>'


class TestAutoFixLoop:
    """Tests for the bounded fix loop"""

    def test_attempt_cap(self):
        """Test the hard ceiling"""
        assert MAX_FIX_ATTEMPTS == 2

    @pytest.mark.asyncio
    async def test_empty_report_creates_no_session(self, memory_store):
        """Test nothing happens without problems"""
        generator = ScriptedGenerator([FIX_RESPONSE])
        loop = make_loop(memory_store, generator, ScriptedChecker([[]]))

        result = await loop.run(problem_reporter.build([]))

        assert result.session is None
        assert result.state == AutoFixState.IDLE
        assert generator.call_count == 0

    @pytest.mark.asyncio
    async def test_resolved_after_one_attempt(self, memory_store):
        """Test one problem that the first fix clears"""
        generator = ScriptedGenerator([FIX_RESPONSE])
        checker = ScriptedChecker([[]])
        loop = make_loop(memory_store, generator, checker)

        result = await loop.run(initial_report())

        assert result.state == AutoFixState.RESOLVED
        assert result.session.attempts == 1
        assert result.report.is_empty
        assert generator.call_count == 1
        assert memory_store.files["src/App.tsx"] == "export default function App() { return 1; }\n"

    @pytest.mark.asyncio
    async def test_exhausted_after_two_attempts(self, memory_store):
        """Test a checker that never clears stops after exactly two rounds"""
        generator = ScriptedGenerator([FIX_RESPONSE])
        checker = ScriptedChecker([[diagnostic()]])
        loop = make_loop(memory_store, generator, checker)

        result = await loop.run(initial_report())

        assert result.state == AutoFixState.EXHAUSTED
        assert result.session.attempts == 2
        assert generator.call_count == 2
        assert checker.call_count == 2
        assert len(result.report.problems) == 1
        assert len(result.iterations) == 2

    @pytest.mark.asyncio
    async def test_fix_prompt_sent_with_history(self, memory_store):
        """Test each round sends the current report after the prior conversation"""
        generator = ScriptedGenerator([FIX_RESPONSE])
        checker = ScriptedChecker([[diagnostic(message="still broken")]])
        loop = make_loop(memory_store, generator, checker)
        history = [
            {"role": "user", "content": "build an app"},
            {"role": "assistant", "content": "done"},
        ]

        await loop.run(initial_report(), history)

        first, second = generator.calls
        assert first[:2] == history
        assert first[-1]["role"] == "user"
        assert first[-1]["content"].startswith("Fix these 1 problem(s):")
        assert second[-2] == {"role": "assistant", "content": FIX_RESPONSE}
        assert "still broken" in second[-1]["content"]

    @pytest.mark.asyncio
    async def test_cancelled_before_first_round(self, memory_store):
        """Test a cancelled token aborts without generating"""
        token = CancellationToken()
        token.cancel("user left")
        generator = ScriptedGenerator([FIX_RESPONSE])
        loop = make_loop(memory_store, generator, ScriptedChecker([[diagnostic()]]))

        result = await loop.run(initial_report(), cancel_token=token)

        assert result.state == AutoFixState.ABORTED
        assert result.session.attempts == 0
        assert generator.call_count == 0
        assert result.session.get_history()[-1].reason == "user left"

    @pytest.mark.asyncio
    async def test_cancelled_mid_stream(self):
        """Test a stream cut short is not applied and aborts the session"""
        store = MemoryFileStore()
        token = CancellationToken()
        generator = CancellingGenerator(token)
        loop = make_loop(store, generator, ScriptedChecker([[diagnostic()]]))

        result = await loop.run(initial_report(), cancel_token=token)

        assert result.state == AutoFixState.ABORTED
        assert result.iterations[0].stream_aborted
        assert store.files == {}

    @pytest.mark.asyncio
    async def test_changes_from_finished_rounds_kept_on_cancel(self, memory_store):
        """Test cancellation between rounds keeps earlier changes"""
        token = CancellationToken()

        class CancelAfterCheck(ScriptedChecker):
            async def check(self, store):
                token.cancel()
                return await super().check(store)

        loop = make_loop(memory_store, ScriptedGenerator([FIX_RESPONSE]), CancelAfterCheck([[diagnostic()]]))

        result = await loop.run(initial_report(), cancel_token=token)

        assert result.state == AutoFixState.ABORTED
        assert result.session.attempts == 1
        assert memory_store.files["src/App.tsx"] == "export default function App() { return 1; }\n"

    @pytest.mark.asyncio
    async def test_generation_failure_aborts(self, memory_store):
        """Test a failing generator ends the session"""
        loop = make_loop(memory_store, FailingGenerator(ConnectionError("reset by peer")), ScriptedChecker([[]]))

        result = await loop.run(initial_report())

        assert result.state == AutoFixState.ABORTED
        assert "reset by peer" in result.error

    @pytest.mark.asyncio
    async def test_checker_unavailable_counts_as_clean(self, memory_store):
        """Test an unavailable checker after a fix resolves the session"""
        loop = make_loop(memory_store, ScriptedGenerator([FIX_RESPONSE]), UnavailableChecker())

        result = await loop.run(initial_report())

        assert result.state == AutoFixState.RESOLVED
        assert result.checker_available is False

    @pytest.mark.asyncio
    async def test_chat_summary_from_fix_round(self, memory_store):
        """Test a summary in a fix response is surfaced"""
        response = FIX_RESPONSE + "<forge-chat-summary>Fix App</forge-chat-summary>"
        loop = make_loop(memory_store, ScriptedGenerator([response]), ScriptedChecker([[]]))

        result = await loop.run(initial_report())

        assert result.chat_summary == "Fix App"


class TestRunChecker:
    """Tests for checker invocation"""

    @pytest.mark.asyncio
    async def test_builds_report(self, memory_store):
        """Test diagnostics become a report in order"""
        first, second = diagnostic(file="b.ts"), diagnostic(file="a.ts")
        report, available = await run_checker(ScriptedChecker([[first, second]]), memory_store)

        assert available
        assert report.problems == (first, second)
        assert report.summary == "2 problems"

    @pytest.mark.asyncio
    async def test_unavailable(self, memory_store):
        """Test CheckerUnavailableError is optimistic"""
        report, available = await run_checker(UnavailableChecker(), memory_store)
        assert report.is_empty
        assert available is False

    @pytest.mark.asyncio
    async def test_crash(self, memory_store):
        """Test an unexpected checker crash is treated like unavailability"""
        report, available = await run_checker(ScriptedChecker([RuntimeError("segfault")]), memory_store)
        assert report.is_empty
        assert available is False
