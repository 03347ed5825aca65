"""
Command Checker
Runs a static checker process in the workspace and parses its diagnostics

Supported output shapes:

    src/App.tsx(12,5): error TS2304: Cannot find name 'foo'.     (tsc)
    src/App.tsx:12:5: E501 line too long                       (lint style)
    src/App.tsx:12:5 - error TS2304: Cannot find name 'foo'.     (tsc --pretty)
"""

import asyncio
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from forgeloop.core.config import settings
from forgeloop.core.exceptions import CheckerUnavailableError
from forgeloop.core.logging_config import logger
from forgeloop.modules.collaborators import Checker
from forgeloop.modules.protocol.instructions import Diagnostic
from forgeloop.modules.workspace.backing_store import BackingStore, LocalFileStore


@dataclass
class DiagnosticPattern:
    """Regex with named groups file, line, column, code, message"""
    pattern: str
    source: str

    def __post_init__(self):
        self.regex = re.compile(self.pattern)


DIAGNOSTIC_PATTERNS = [
    DiagnosticPattern(
        r"^(?P<file>[^\s(][^(]*?)\((?P<line>\d+),(?P<column>\d+)\): (?:error|warning) (?P<code>TS\d+): (?P<message>.+)$",
        "tsc",
    ),
    DiagnosticPattern(
        r"^(?P<file>[^\s:]+):(?P<line>\d+):(?P<column>\d+) - (?:error|warning) (?P<code>TS\d+): (?P<message>.+)$",
        "tsc-pretty",
    ),
    DiagnosticPattern(
        r"^(?P<file>[^\s:]+):(?P<line>\d+):(?P<column>\d+):\s+(?P<code>[A-Z]+\d+)\s+(?P<message>.+)$",
        "lint",
    ),
]

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def parse_diagnostics(output: str, root: Optional[Path] = None) -> List[Diagnostic]:
    """Parse checker output; lines matching no pattern are ignored"""
    diagnostics: List[Diagnostic] = []
    for raw_line in output.splitlines():
        line = _ANSI_RE.sub("", raw_line).rstrip()
        for pattern in DIAGNOSTIC_PATTERNS:
            match = pattern.regex.match(line)
            if not match:
                continue
            diagnostics.append(Diagnostic(
                file=_relative(match.group("file").strip(), root),
                line=int(match.group("line")),
                column=int(match.group("column")),
                code=match.group("code"),
                message=match.group("message").strip(),
            ))
            break
    return diagnostics


def _relative(file: str, root: Optional[Path]) -> str:
    file = file.replace("\\", "/")
    if root is not None and Path(file).is_absolute():
        try:
            return Path(file).relative_to(root).as_posix()
        except ValueError:
            return file
    return file[2:] if file.startswith("./") else file


class CommandChecker(Checker):
    """Checker backed by an external command such as ``npx tsc --noEmit``"""

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("Checker command is empty")
        self.cwd = Path(cwd).resolve() if cwd is not None else None
        self.timeout = timeout if timeout is not None else settings.CHECK_COMMAND_TIMEOUT

    async def check(self, store: BackingStore) -> List[Diagnostic]:
        cwd = self.cwd
        if cwd is None and isinstance(store, LocalFileStore):
            cwd = store.root
        if cwd is None:
            raise CheckerUnavailableError("No working directory for checker command")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except (FileNotFoundError, PermissionError) as e:
            raise CheckerUnavailableError(f"Cannot start {self.command[0]}: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CheckerUnavailableError(f"{self.command[0]} timed out after {self.timeout}s")

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        diagnostics = parse_diagnostics(output, cwd)

        if process.returncode != 0 and not diagnostics:
            logger.warning(
                f"[CommandChecker] {self.command[0]} exited {process.returncode} "
                f"without parseable diagnostics: {output[:200]}"
            )
        logger.info(f"[CommandChecker] {len(diagnostics)} diagnostic(s) from {self.command[0]}")
        return diagnostics
