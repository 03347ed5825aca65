"""
Terminal rendering for the forgeloop CLI

Tables for extracted instructions and apply outcomes, panels for problem
reports and cycle status.
"""

from typing import Iterable, Optional

from rich.box import ROUNDED
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from forgeloop.modules.orchestrator.cycle_runner import CycleResult, CycleStatus
from forgeloop.modules.protocol.instructions import Instruction, ParseWarning, ProblemReport
from forgeloop.modules.protocol.tag_extractor import ExtractionResult
from forgeloop.modules.workspace.change_applier import ApplyResult, OutcomeStatus


STATUS_STYLES = {
    OutcomeStatus.APPLIED: "green",
    OutcomeStatus.SKIPPED: "yellow",
    OutcomeStatus.FAILED: "bold red",
    OutcomeStatus.CANCELLED: "dim",
}

CYCLE_STYLES = {
    CycleStatus.APPLIED: "green",
    CycleStatus.RESOLVED_AFTER_FIX: "green",
    CycleStatus.APPLIED_WITH_ERRORS: "yellow",
    CycleStatus.EXHAUSTED: "red",
    CycleStatus.ABORTED: "red",
}


class CycleRenderer:
    """Renders extraction, apply and cycle results with rich"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def render_extraction(self, result: ExtractionResult) -> None:
        self.render_instructions(result.instructions)
        self.render_warnings(result.warnings)
        if result.open_block is not None:
            self.console.print(
                f"[yellow]Unterminated <{result.open_block.tag}> block at offset "
                f"{result.open_block.offset} was ignored[/yellow]"
            )

    def render_instructions(self, instructions: Iterable[Instruction]) -> None:
        table = Table(title="Instructions", box=ROUNDED, show_lines=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Kind", style="cyan")
        table.add_column("Target")
        table.add_column("Detail", style="dim")

        count = 0
        for index, instruction in enumerate(instructions):
            count += 1
            table.add_row(str(index), instruction.kind.value, instruction.label, _detail(instruction))

        if count:
            self.console.print(table)
        else:
            self.console.print("[dim]No instructions found[/dim]")

    def render_warnings(self, warnings: Iterable[ParseWarning]) -> None:
        for warning in warnings:
            self.console.print(
                f"[yellow]warning[/yellow] <{warning.tag}> at offset {warning.offset}: {warning.message}"
            )

    def render_apply(self, result: ApplyResult, title: str = "Apply result") -> None:
        table = Table(title=title, box=ROUNDED)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Kind", style="cyan")
        table.add_column("Target")
        table.add_column("Status")
        table.add_column("Error / detail")

        for outcome in result.outcomes:
            table.add_row(
                str(outcome.index),
                outcome.instruction.kind.value,
                outcome.instruction.label,
                Text(outcome.status.value, style=STATUS_STYLES[outcome.status]),
                outcome.error or outcome.detail or "",
            )
        self.console.print(table)

        if result.commands:
            self.console.print(
                "Requested commands: " + ", ".join(c.value for c in result.commands)
            )

    def render_report(self, report: ProblemReport) -> None:
        if report.is_empty:
            self.console.print("[green]No problems reported[/green]")
            return

        table = Table(title=report.summary or "Problems", box=ROUNDED)
        table.add_column("Location")
        table.add_column("Code", style="magenta")
        table.add_column("Message")
        for problem in report.problems:
            table.add_row(problem.location(), problem.code, problem.message)
        self.console.print(table)

    def render_cycle(self, result: CycleResult) -> None:
        for number, apply_result in enumerate(result.apply_results):
            title = "Apply result" if number == 0 else f"Fix round {number}"
            self.render_apply(apply_result, title=title)
        self.render_warnings(result.warnings)

        if not result.checker_available:
            self.console.print("[yellow]Checker unavailable; problems were not verified[/yellow]")
        self.render_report(result.report)

        lines = [f"Status: [{CYCLE_STYLES[result.status]}]{result.status.value}[/]"]
        changed = sorted({path for r in result.apply_results for path in r.changed_paths})
        if changed:
            lines.append(f"Changed: {len(changed)} file(s)")
        if result.chat_summary:
            lines.append(f"Summary: {result.chat_summary}")
        if result.session is not None:
            lines.append(f"Fix attempts: {result.session['attempts']}")
        if result.error:
            lines.append(f"[red]{result.error}[/red]")
        self.console.print(Panel("\n".join(lines), title=f"Cycle {result.cycle_id}", box=ROUNDED))


def _detail(instruction: Instruction) -> str:
    kind = instruction.kind.value
    if kind == "write":
        return instruction.description or f"{len(instruction.content)} chars"
    if kind == "add-dependency":
        return "dev" if instruction.dev else ""
    if kind == "execute-statement":
        return instruction.description or instruction.statement.splitlines()[0][:60]
    return ""
