"""
Auto-Fix Loop

After a cycle has applied its changes the checker runs once. If it reports
problems a session starts in FIXING and each iteration:

    1. builds a fix prompt embedding the problem report
    2. invokes the generator
    3. extracts and applies the new response
    4. re-runs the checker

The loop stops when the problems are gone (RESOLVED), when MAX_FIX_ATTEMPTS
iterations have run (EXHAUSTED) or when cancellation is seen between
iterations (ABORTED). Changes applied by finished iterations are kept.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from forgeloop.core.exceptions import CheckerUnavailableError
from forgeloop.core.logging_config import logger
from forgeloop.modules.collaborators import Checker, GenerationClient, Message
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.orchestrator.fix_prompt import build_fix_prompt, collect_snippets
from forgeloop.modules.orchestrator.generation import collect_response
from forgeloop.modules.orchestrator.state_machine import AutoFixSession, AutoFixState
from forgeloop.modules.protocol.instructions import ParseWarning, ProblemReport
from forgeloop.modules.protocol.problem_reporter import ProblemReporter, problem_reporter
from forgeloop.modules.protocol.tag_extractor import TagExtractor, tag_extractor
from forgeloop.modules.workspace.backing_store import BackingStore
from forgeloop.modules.workspace.change_applier import ApplyResult, ChangeApplier


# Hard ceiling on fix rounds per cycle
MAX_FIX_ATTEMPTS = 2


@dataclass
class FixIteration:
    """One generate -> apply -> check round"""
    attempt: int
    prompt: str
    response: str
    warnings: Tuple[ParseWarning, ...] = ()
    apply_result: Optional[ApplyResult] = None
    report: Optional[ProblemReport] = None
    stream_aborted: bool = False


@dataclass
class AutoFixResult:
    session: Optional[AutoFixSession]
    report: ProblemReport
    iterations: List[FixIteration] = field(default_factory=list)
    checker_available: bool = True
    chat_summary: Optional[str] = None
    error: Optional[str] = None

    @property
    def state(self) -> AutoFixState:
        return self.session.state if self.session is not None else AutoFixState.IDLE


async def run_checker(checker: Checker, store: BackingStore,
                      reporter: Optional[ProblemReporter] = None) -> Tuple[ProblemReport, bool]:
    """
    Run the checker once.

    An unavailable or crashing checker counts as "no problems observed";
    the second value tells the caller whether the checker actually ran.
    """
    reporter = reporter or problem_reporter
    try:
        diagnostics = await checker.check(store)
    except CheckerUnavailableError as e:
        logger.warning(f"[AutoFix] Checker unavailable: {e.message}")
        return reporter.build([]), False
    except Exception as e:
        logger.log_error_with_context(e, "checker run")
        return reporter.build([]), False
    return reporter.build(diagnostics), True


class AutoFixLoop:
    """Bounded corrective loop for one workspace"""

    def __init__(
        self,
        workspace_id: str,
        store: BackingStore,
        generator: GenerationClient,
        checker: Checker,
        applier: ChangeApplier,
        extractor: Optional[TagExtractor] = None,
        reporter: Optional[ProblemReporter] = None,
    ):
        self.workspace_id = workspace_id
        self.store = store
        self.generator = generator
        self.checker = checker
        self.applier = applier
        self.extractor = extractor or tag_extractor
        self.reporter = reporter or problem_reporter

    async def run(
        self,
        report: ProblemReport,
        messages: Optional[List[Message]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AutoFixResult:
        """
        Drive fix rounds starting from the report of the initial check.

        No session is created for an empty report.
        """
        result = AutoFixResult(session=None, report=report)
        if report.is_empty:
            return result

        session = AutoFixSession(self.workspace_id, MAX_FIX_ATTEMPTS)
        session.start(len(report.problems))
        result.session = session
        conversation: List[Message] = list(messages or [])
        interrupted = False

        while (
            not result.report.is_empty
            and session.attempts < MAX_FIX_ATTEMPTS
            and not (cancel_token is not None and cancel_token.cancelled)
        ):
            snippets = await collect_snippets(result.report, self.store)
            prompt = build_fix_prompt(result.report, snippets, self.reporter)
            conversation.append({"role": "user", "content": prompt})

            try:
                text, stream_aborted = await collect_response(self.generator, conversation, cancel_token)
            except Exception as e:
                logger.log_error_with_context(e, "fix generation", attempt=session.attempts + 1)
                result.error = f"Generation failed: {e}"
                interrupted = True
                break
            conversation.append({"role": "assistant", "content": text})

            iteration = FixIteration(attempt=session.attempts + 1, prompt=prompt, response=text)
            result.iterations.append(iteration)
            if stream_aborted:
                # A truncated response is never applied
                iteration.stream_aborted = True
                interrupted = True
                break

            extraction = self.extractor.extract(text)
            iteration.warnings = extraction.warnings
            iteration.apply_result = await self.applier.apply(extraction.instructions, cancel_token)
            if iteration.apply_result.chat_summary is not None:
                result.chat_summary = iteration.apply_result.chat_summary
            if iteration.apply_result.cancelled:
                break

            report, available = await run_checker(self.checker, self.store, self.reporter)
            iteration.report = report
            result.report = report
            result.checker_available = result.checker_available and available
            session.record_attempt(len(report.problems))

        if interrupted:
            session.abort(result.error or "Cancelled during generation")
        elif result.report.is_empty:
            session.resolve()
        elif session.attempts >= MAX_FIX_ATTEMPTS:
            session.exhaust(len(result.report.problems))
        else:
            session.abort(cancel_token.reason if cancel_token is not None else None)

        logger.log_cycle_event(
            "auto-fix finished", status=session.state.value,
            attempts=session.attempts, remaining_problems=len(result.report.problems)
        )
        return result
