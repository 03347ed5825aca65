#!/usr/bin/env python3
"""
ForgeLoop CLI - Main Entry Point

Usage:
    forgeloop extract response.txt                         # List the instructions in a saved response
    forgeloop apply response.txt --workspace ./app         # Apply a saved response to a workspace
    forgeloop apply response.txt -w ./app --dry-run        # Apply to an in-memory copy only
    forgeloop apply response.txt -w ./app --check "npx tsc --noEmit"
    forgeloop report diagnostics.json --prompt             # Render a fix prompt from diagnostics
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from forgeloop.core.exceptions import ForgeLoopError
from forgeloop.core.logging_config import logger
from forgeloop.cli.renderer import CycleRenderer
from forgeloop.modules.checkers.command_checker import CommandChecker
from forgeloop.modules.orchestrator.cycle_runner import CycleRunner
from forgeloop.modules.orchestrator.fix_prompt import build_fix_prompt
from forgeloop.modules.protocol.instructions import Diagnostic
from forgeloop.modules.protocol.problem_reporter import ProblemReporter
from forgeloop.modules.protocol.tag_extractor import TagExtractor
from forgeloop.modules.workspace.backing_store import BackingStore, LocalFileStore, MemoryFileStore
from forgeloop.modules.workspace.workspace_lock import WorkspaceLockRegistry


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="forgeloop",
        description="ForgeLoop - apply tagged generation output to a workspace",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0   applied, or resolved after a fix round
  1   anything else (errors, remaining problems, aborted)
  2   invalid input
        """
    )
    parser.add_argument("--prefix", help="Tag prefix (default: FORGELOOP_TAG_PREFIX or 'forge')")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    extract_parser = subparsers.add_parser("extract", help="List instructions in a response")
    extract_parser.add_argument("response", help="Response text file ('-' for stdin)")

    apply_parser = subparsers.add_parser("apply", help="Apply a response to a workspace")
    apply_parser.add_argument("response", help="Response text file ('-' for stdin)")
    apply_parser.add_argument("-w", "--workspace", required=True, help="Workspace root directory")
    apply_parser.add_argument("--dry-run", action="store_true", help="Apply to an in-memory copy only")
    apply_parser.add_argument("--check", metavar="CMD", help="Checker command run after applying")
    apply_parser.add_argument("--json", action="store_true", help="Print the cycle result as JSON")

    report_parser = subparsers.add_parser("report", help="Render a problem report")
    report_parser.add_argument("diagnostics", help="JSON list of {file, line, column, code, message}")
    report_parser.add_argument("--summary", help="Report summary line")
    report_parser.add_argument("--prompt", action="store_true", help="Render the full fix prompt")

    return parser


def _read_input(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


async def _load_snapshot(root: Path) -> MemoryFileStore:
    """Copy the workspace into memory for dry runs"""
    disk = LocalFileStore(root)
    files = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            relative = path.relative_to(root).as_posix()
            files[relative] = await disk.read(relative)
    return MemoryFileStore(files)


def cmd_extract(args, renderer: CycleRenderer) -> int:
    extractor = TagExtractor(prefix=args.prefix)
    result = extractor.extract(_read_input(args.response))
    renderer.render_extraction(result)
    return 1 if result.warnings else 0


async def cmd_apply(args, renderer: CycleRenderer) -> int:
    root = Path(args.workspace).resolve()
    if not root.is_dir():
        renderer.console.print(f"[red]Workspace not found: {root}[/red]")
        return 2

    store: BackingStore = await _load_snapshot(root) if args.dry_run else LocalFileStore(root)
    checker = CommandChecker(args.check, cwd=root) if args.check else None

    runner = CycleRunner(
        workspace_id=root.name,
        store=store,
        lock_registry=WorkspaceLockRegistry(),
        checker=checker,
        extractor=TagExtractor(prefix=args.prefix),
        reporter=ProblemReporter(prefix=args.prefix),
    )
    result = await runner.process_response(_read_input(args.response))

    if args.json:
        renderer.console.print_json(json.dumps(result.to_dict(), default=str))
    else:
        renderer.render_cycle(result)
        if args.dry_run:
            renderer.console.print("[dim]Dry run: workspace left unchanged[/dim]")

    return 0 if result.succeeded and result.report.is_empty else 1


def cmd_report(args, renderer: CycleRenderer) -> int:
    data = json.loads(_read_input(args.diagnostics))
    if isinstance(data, dict):
        data = data.get("problems", [])
    diagnostics = [Diagnostic(**item) for item in data]
    reporter = ProblemReporter(prefix=args.prefix)
    report = reporter.build(diagnostics, summary=args.summary)

    if args.prompt:
        renderer.console.print(build_fix_prompt(report, reporter=reporter), markup=False, highlight=False)
    else:
        renderer.console.print(reporter.format(report), markup=False, highlight=False)
    return 0 if report.is_empty else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    renderer = CycleRenderer(Console())
    try:
        if args.command == "extract":
            return cmd_extract(args, renderer)
        if args.command == "apply":
            return asyncio.run(cmd_apply(args, renderer))
        return cmd_report(args, renderer)
    except (OSError, ValueError, ForgeLoopError) as e:
        logger.debug(f"[CLI] {args.command} failed: {e}")
        renderer.console.print(f"[red]Error:[/red] {e}")
        return 2
    except KeyboardInterrupt:
        renderer.console.print("\n[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
