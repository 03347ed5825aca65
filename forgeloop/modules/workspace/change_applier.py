"""
Change Applier - commits one batch of Instructions in fixed phases

Phase order never depends on the order the instructions were written in:

    1. DEPENDENCIES   add-dependency            -> PackageInstaller
    2. DELETES        delete                    -> staging
    3. RENAMES        rename                    -> staging
    4. WRITES         write                     -> staging
       (flush staging to the backing store)
    5. SIDE_EFFECTS   execute-statement, then command

Within a phase instructions keep their order of appearance. So a
delete-then-recreate of one path always ends with the file present, and of
two writes to one path the later wins. Every instruction gets an outcome;
one failure never stops the rest of the batch.
"""

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from forgeloop.core.logging_config import logger
from forgeloop.modules.collaborators import CommandRunner, PackageInstaller, StatementExecutor
from forgeloop.modules.orchestrator.cancellation import CancellationToken
from forgeloop.modules.protocol.instructions import (
    AddDependency,
    Command,
    CommandType,
    Delete,
    ExecuteStatement,
    Instruction,
    Rename,
    SetSummary,
    Write,
)
from forgeloop.modules.workspace.backing_store import BackingStore
from forgeloop.modules.workspace.staging_fs import FlushOutcome, StagingFilesystem


class Phase(IntEnum):
    DEPENDENCIES = 1
    DELETES = 2
    RENAMES = 3
    WRITES = 4
    SIDE_EFFECTS = 5


PHASE_OF = {
    AddDependency: Phase.DEPENDENCIES,
    Delete: Phase.DELETES,
    Rename: Phase.RENAMES,
    Write: Phase.WRITES,
    ExecuteStatement: Phase.SIDE_EFFECTS,
    Command: Phase.SIDE_EFFECTS,
}


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class InstructionOutcome:
    """What happened to one instruction; index is its position in the batch"""
    index: int
    instruction: Instruction
    status: OutcomeStatus
    error: Optional[str] = None
    detail: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.instruction.kind.value,
            "target": self.instruction.label,
            "status": self.status.value,
            "error": self.error,
            "detail": self.detail,
        }


@dataclass
class ApplyResult:
    """Outcome of one Change Applier invocation"""
    outcomes: List[InstructionOutcome] = field(default_factory=list)
    flush_outcomes: Dict[str, FlushOutcome] = field(default_factory=dict)
    chat_summary: Optional[str] = None
    commands: List[CommandType] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failures(self) -> List[InstructionOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def has_errors(self) -> bool:
        return bool(self.failures)

    @property
    def changed_paths(self) -> List[str]:
        return [path for path, outcome in self.flush_outcomes.items() if outcome.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "flush": [o.to_dict() for o in self.flush_outcomes.values()],
            "chat_summary": self.chat_summary,
            "commands": [c.value for c in self.commands],
            "cancelled": self.cancelled,
        }


class ChangeApplier:
    """Applies instruction batches to one workspace through a staging overlay"""

    def __init__(
        self,
        store: BackingStore,
        installer: Optional[PackageInstaller] = None,
        statement_executor: Optional[StatementExecutor] = None,
        command_runner: Optional[CommandRunner] = None,
    ):
        self.store = store
        self.installer = installer
        self.statement_executor = statement_executor
        self.command_runner = command_runner

    @staticmethod
    def partition(instructions: Sequence[Instruction]) -> Dict[Phase, List[Tuple[int, Instruction]]]:
        """Group (index, instruction) pairs by phase, keeping appearance order"""
        phases: Dict[Phase, List[Tuple[int, Instruction]]] = {phase: [] for phase in Phase}
        for index, instruction in enumerate(instructions):
            phase = PHASE_OF.get(type(instruction))
            if phase is not None:
                phases[phase].append((index, instruction))
        # Statements run before commands inside the last phase
        phases[Phase.SIDE_EFFECTS].sort(key=lambda item: (isinstance(item[1], Command), item[0]))
        return phases

    async def apply(
        self,
        instructions: Sequence[Instruction],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ApplyResult:
        result = ApplyResult()
        outcomes: Dict[int, InstructionOutcome] = {}
        staged_paths: Dict[int, List[str]] = {}
        staging = StagingFilesystem(self.store)

        for index, instruction in enumerate(instructions):
            if isinstance(instruction, SetSummary):
                result.chat_summary = instruction.text
                outcomes[index] = InstructionOutcome(index, instruction, OutcomeStatus.APPLIED)

        phases = self.partition(instructions)

        for phase in Phase:
            if phase == Phase.SIDE_EFFECTS:
                await self._flush(staging, staged_paths, outcomes, result)

            if cancel_token is not None and cancel_token.cancelled:
                logger.info(f"[ChangeApplier] Cancelled before phase {phase.name}")
                result.cancelled = True
                break

            for index, instruction in phases[phase]:
                if phase == Phase.DEPENDENCIES:
                    outcomes[index] = await self._install(index, instruction)
                elif phase == Phase.DELETES:
                    outcomes[index] = await self._stage_delete(staging, index, instruction)
                    staged_paths[index] = [instruction.path]
                elif phase == Phase.RENAMES:
                    outcomes[index] = await self._stage_rename(staging, index, instruction)
                    staged_paths[index] = [instruction.from_path, instruction.to_path]
                elif phase == Phase.WRITES:
                    staging.write(instruction.path, instruction.content)
                    outcomes[index] = InstructionOutcome(index, instruction, OutcomeStatus.APPLIED)
                    staged_paths[index] = [instruction.path]
                elif isinstance(instruction, ExecuteStatement):
                    outcomes[index] = await self._execute(index, instruction)
                else:
                    result.commands.append(instruction.command)
                    outcomes[index] = await self._run_command(index, instruction)

        # Phases already staged before a cancellation are still committed
        if staging.is_dirty:
            await self._flush(staging, staged_paths, outcomes, result)

        self._mark_superseded_writes(instructions, outcomes)

        for index, instruction in enumerate(instructions):
            outcome = outcomes.get(index)
            if outcome is None:
                outcome = InstructionOutcome(index, instruction, OutcomeStatus.CANCELLED)
                outcomes[index] = outcome
            logger.log_instruction_outcome(
                instruction.kind.value, instruction.label, outcome.status.value, outcome.error
            )

        result.outcomes = [outcomes[i] for i in range(len(instructions))]
        logger.info(
            f"[ChangeApplier] Applied {len(instructions)} instruction(s): "
            f"{len(result.failures)} failed" + (", cancelled" if result.cancelled else "")
        )
        return result

    # ==========================================
    # Phase handlers
    # ==========================================

    async def _install(self, index: int, instruction: AddDependency) -> InstructionOutcome:
        if self.installer is None:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.FAILED, error="No package installer configured"
            )
        try:
            installed = await self.installer.install(list(instruction.packages), dev=instruction.dev)
        except Exception as e:
            logger.log_error_with_context(e, "dependency install", packages=list(instruction.packages))
            return InstructionOutcome(index, instruction, OutcomeStatus.FAILED, error=str(e))

        if not installed.success:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.FAILED,
                error=installed.error or "Install failed", detail=installed.output or None,
            )
        return InstructionOutcome(index, instruction, OutcomeStatus.APPLIED, detail=installed.output or None)

    async def _stage_delete(self, staging: StagingFilesystem, index: int, instruction: Delete) -> InstructionOutcome:
        existed = await staging.exists(instruction.path)
        staging.delete(instruction.path)
        if not existed:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.SKIPPED, detail="File did not exist"
            )
        return InstructionOutcome(index, instruction, OutcomeStatus.APPLIED)

    async def _stage_rename(self, staging: StagingFilesystem, index: int, instruction: Rename) -> InstructionOutcome:
        try:
            await staging.rename(instruction.from_path, instruction.to_path)
        except FileNotFoundError as e:
            return InstructionOutcome(index, instruction, OutcomeStatus.FAILED, error=str(e))
        return InstructionOutcome(index, instruction, OutcomeStatus.APPLIED)

    async def _execute(self, index: int, instruction: ExecuteStatement) -> InstructionOutcome:
        if self.statement_executor is None:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.FAILED, error="No statement executor configured"
            )
        try:
            executed = await self.statement_executor.execute(instruction.statement, instruction.target)
        except Exception as e:
            logger.log_error_with_context(e, "statement execution", target=instruction.target)
            return InstructionOutcome(index, instruction, OutcomeStatus.FAILED, error=str(e))

        if not executed.success:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.FAILED, error=executed.error or "Statement failed"
            )
        return InstructionOutcome(index, instruction, OutcomeStatus.APPLIED, rows=executed.rows)

    async def _run_command(self, index: int, instruction: Command) -> InstructionOutcome:
        if self.command_runner is None:
            return InstructionOutcome(
                index, instruction, OutcomeStatus.APPLIED, detail="Deferred to caller"
            )
        try:
            await self.command_runner.run(instruction.command)
        except Exception as e:
            logger.log_error_with_context(e, "workspace command", command=instruction.command.value)
            return InstructionOutcome(index, instruction, OutcomeStatus.FAILED, error=str(e))
        return InstructionOutcome(index, instruction, OutcomeStatus.APPLIED)

    # ==========================================
    # Flush bookkeeping
    # ==========================================

    async def _flush(
        self,
        staging: StagingFilesystem,
        staged_paths: Dict[int, List[str]],
        outcomes: Dict[int, InstructionOutcome],
        result: ApplyResult,
    ) -> None:
        if not staging.is_dirty:
            return
        flushed = await staging.flush()
        result.flush_outcomes.update(flushed)

        for index, paths in staged_paths.items():
            outcome = outcomes[index]
            if outcome.status != OutcomeStatus.APPLIED:
                continue
            errors = [
                f"{path}: {flushed[path].error}"
                for path in paths
                if path in flushed and not flushed[path].success
            ]
            if errors:
                outcomes[index] = replace(outcome, status=OutcomeStatus.FAILED, error="; ".join(errors))

    @staticmethod
    def _mark_superseded_writes(
        instructions: Sequence[Instruction],
        outcomes: Dict[int, InstructionOutcome],
    ) -> None:
        last_writer: Dict[str, int] = {}
        for index, instruction in enumerate(instructions):
            if isinstance(instruction, Write):
                last_writer[instruction.path] = index
        for index, instruction in enumerate(instructions):
            if isinstance(instruction, Write) and last_writer[instruction.path] != index:
                outcome = outcomes.get(index)
                if outcome is not None and outcome.status == OutcomeStatus.APPLIED:
                    outcomes[index] = replace(
                        outcome, detail=f"Superseded by instruction #{last_writer[instruction.path]}"
                    )
