"""
Cycle Runner - one full generate -> extract -> apply -> check cycle

A cycle holds its workspace lock from the first generation call until the
auto-fix loop finishes, and always ends with exactly one aggregate status:

    applied              every instruction applied, no problems left
    applied-with-errors  some instruction failed, or problems remain unfixed
    resolved-after-fix   the checker reported problems and a fix round cleared them
    exhausted            problems remain after the last fix round
    aborted              cancelled, truncated stream or failed generation
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from forgeloop.core.logging_config import (
    generate_cycle_id,
    logger,
    set_cycle_id,
    set_workspace_id,
)
from forgeloop.modules.collaborators import (
    Checker,
    CommandRunner,
    GenerationClient,
    Message,
    PackageInstaller,
    StatementExecutor,
)
from forgeloop.modules.orchestrator.auto_fix_loop import AutoFixLoop, AutoFixResult, run_checker
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.orchestrator.generation import PreviewCallback, collect_response
from forgeloop.modules.orchestrator.state_machine import AutoFixState
from forgeloop.modules.protocol.instructions import ParseWarning, ProblemReport
from forgeloop.modules.protocol.problem_reporter import ProblemReporter, problem_reporter
from forgeloop.modules.protocol.tag_extractor import TagExtractor, tag_extractor
from forgeloop.modules.workspace.backing_store import BackingStore
from forgeloop.modules.workspace.change_applier import ApplyResult, ChangeApplier
from forgeloop.modules.workspace.workspace_lock import WorkspaceLockRegistry


class CycleStatus(str, Enum):
    APPLIED = "applied"
    APPLIED_WITH_ERRORS = "applied-with-errors"
    RESOLVED_AFTER_FIX = "resolved-after-fix"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass
class CycleResult:
    cycle_id: str
    status: CycleStatus
    apply_results: List[ApplyResult] = field(default_factory=list)
    report: ProblemReport = field(default_factory=ProblemReport)
    warnings: List[ParseWarning] = field(default_factory=list)
    session: Optional[Dict[str, Any]] = None
    chat_summary: Optional[str] = None
    checker_available: bool = True
    error: Optional[str] = None

    @property
    def apply_result(self) -> Optional[ApplyResult]:
        """ApplyResult of the initial response"""
        return self.apply_results[0] if self.apply_results else None

    @property
    def succeeded(self) -> bool:
        return self.status in (CycleStatus.APPLIED, CycleStatus.RESOLVED_AFTER_FIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "apply_results": [r.to_dict() for r in self.apply_results],
            "report": self.report.model_dump(mode="json"),
            "warnings": [w.model_dump(mode="json") for w in self.warnings],
            "session": self.session,
            "chat_summary": self.chat_summary,
            "checker_available": self.checker_available,
            "error": self.error,
        }


def aggregate_status(
    apply_results: List[ApplyResult],
    fix: Optional[AutoFixResult],
) -> CycleStatus:
    """Collapse everything that happened in a cycle into one status"""
    if any(r.cancelled for r in apply_results):
        return CycleStatus.ABORTED
    if fix is not None and fix.session is not None:
        if fix.state == AutoFixState.RESOLVED:
            return CycleStatus.RESOLVED_AFTER_FIX
        if fix.state == AutoFixState.EXHAUSTED:
            return CycleStatus.EXHAUSTED
        return CycleStatus.ABORTED
    if any(r.has_errors for r in apply_results):
        return CycleStatus.APPLIED_WITH_ERRORS
    if fix is not None and not fix.report.is_empty:
        return CycleStatus.APPLIED_WITH_ERRORS
    return CycleStatus.APPLIED


class CycleRunner:
    """Runs cycles against one workspace, serialized through the lock registry"""

    def __init__(
        self,
        workspace_id: str,
        store: BackingStore,
        lock_registry: WorkspaceLockRegistry,
        generator: Optional[GenerationClient] = None,
        checker: Optional[Checker] = None,
        installer: Optional[PackageInstaller] = None,
        statement_executor: Optional[StatementExecutor] = None,
        command_runner: Optional[CommandRunner] = None,
        extractor: Optional[TagExtractor] = None,
        reporter: Optional[ProblemReporter] = None,
    ):
        self.workspace_id = workspace_id
        self.store = store
        self.lock_registry = lock_registry
        self.generator = generator
        self.checker = checker
        self.extractor = extractor or tag_extractor
        self.reporter = reporter or problem_reporter
        self.applier = ChangeApplier(
            store,
            installer=installer,
            statement_executor=statement_executor,
            command_runner=command_runner,
        )

    async def run(
        self,
        messages: List[Message],
        cancel_token: Optional[CancellationToken] = None,
        on_preview: Optional[PreviewCallback] = None,
    ) -> CycleResult:
        """Generate a response for messages and process it"""
        if self.generator is None:
            raise ValueError("CycleRunner.run needs a generation client")

        cycle_id = self._begin()
        async with self.lock_registry.lock_for(self.workspace_id):
            started = time.perf_counter()
            try:
                text, aborted = await collect_response(self.generator, messages, cancel_token, on_preview)
            except Exception as e:
                logger.log_error_with_context(e, "generation", workspace_id=self.workspace_id)
                return self._finish(
                    CycleResult(cycle_id, CycleStatus.ABORTED, error=f"Generation failed: {e}"),
                    started,
                )

            if aborted:
                # Partial output may hold half a batch; nothing is applied
                return self._finish(
                    CycleResult(cycle_id, CycleStatus.ABORTED, error="Stream aborted"), started
                )

            conversation = list(messages) + [{"role": "assistant", "content": text}]
            result = await self._process(cycle_id, text, conversation, cancel_token)
            return self._finish(result, started)

    async def process_response(
        self,
        text: str,
        messages: Optional[List[Message]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CycleResult:
        """Process an already generated response"""
        cycle_id = self._begin()
        async with self.lock_registry.lock_for(self.workspace_id):
            started = time.perf_counter()
            conversation = list(messages or []) + [{"role": "assistant", "content": text}]
            result = await self._process(cycle_id, text, conversation, cancel_token)
            return self._finish(result, started)

    # ==========================================
    # Internals
    # ==========================================

    def _begin(self) -> str:
        cycle_id = generate_cycle_id()
        set_cycle_id(cycle_id)
        set_workspace_id(self.workspace_id)
        logger.log_cycle_event("started")
        return cycle_id

    def _finish(self, result: CycleResult, started: float) -> CycleResult:
        logger.log_performance("cycle", (time.perf_counter() - started) * 1000, threshold_ms=60000)
        logger.log_cycle_event("finished", status=result.status.value)
        return result

    async def _process(
        self,
        cycle_id: str,
        text: str,
        conversation: List[Message],
        cancel_token: Optional[CancellationToken],
    ) -> CycleResult:
        extraction = self.extractor.extract(text)
        for warning in extraction.warnings:
            logger.warning(f"[CycleRunner] Skipped <{warning.tag}> at {warning.offset}: {warning.message}")

        apply_result = await self.applier.apply(extraction.instructions, cancel_token)
        result = CycleResult(
            cycle_id=cycle_id,
            status=CycleStatus.APPLIED,
            apply_results=[apply_result],
            warnings=list(extraction.warnings),
            chat_summary=apply_result.chat_summary,
        )

        if apply_result.cancelled or self.checker is None:
            result.status = aggregate_status(result.apply_results, None)
            return result

        fix = await self._check_and_fix(conversation, cancel_token)
        result.report = fix.report
        result.checker_available = fix.checker_available
        result.error = fix.error
        if fix.session is not None:
            result.session = fix.session.to_dict()
        result.apply_results.extend(
            i.apply_result for i in fix.iterations if i.apply_result is not None
        )
        for iteration in fix.iterations:
            result.warnings.extend(iteration.warnings)
        if fix.chat_summary is not None:
            result.chat_summary = fix.chat_summary

        result.status = aggregate_status(result.apply_results, fix)
        return result

    async def _check_and_fix(
        self,
        conversation: List[Message],
        cancel_token: Optional[CancellationToken],
    ) -> AutoFixResult:
        report, available = await run_checker(self.checker, self.store, self.reporter)
        if report.is_empty or self.generator is None:
            # Without a generator problems are reported, not fixed
            return AutoFixResult(session=None, report=report, checker_available=available)

        loop = AutoFixLoop(
            self.workspace_id,
            self.store,
            self.generator,
            self.checker,
            self.applier,
            extractor=self.extractor,
            reporter=self.reporter,
        )
        fix = await loop.run(report, conversation, cancel_token)
        fix.checker_available = fix.checker_available and available
        return fix
