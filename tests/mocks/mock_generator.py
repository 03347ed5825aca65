"""
Mock collaborators for testing
Scripted generator/checker plus recording installer, executor and runner
"""
from typing import AsyncIterator, Dict, List, Optional, Sequence, Union

from forgeloop.core.exceptions import CheckerUnavailableError
from forgeloop.modules.collaborators import (
    Checker,
    CommandRunner,
    GenerationClient,
    InstallResult,
    PackageInstaller,
    StatementExecutor,
    StatementResult,
)
from forgeloop.modules.protocol.instructions import CommandType, Diagnostic


def diagnostic(file: str = "src/App.tsx", line: int = 1, message: str = "Cannot find name 'foo'.",
               code: str = "TS2304", column: int = 1) -> Diagnostic:
    return Diagnostic(file=file, line=line, column=column, code=code, message=message)


class ScriptedGenerator(GenerationClient):
    """Returns predefined responses in order; repeats the last one when exhausted"""

    def __init__(self, responses: Sequence[str], stream: bool = False, chunk_size: int = 7):
        self.responses = list(responses)
        self.stream = stream
        self.chunk_size = chunk_size
        self.call_count = 0
        self.calls: List[List[Dict[str, str]]] = []

    def _next(self) -> str:
        index = min(self.call_count, len(self.responses) - 1)
        self.call_count += 1
        return self.responses[index]

    async def generate(self, messages) -> Union[str, AsyncIterator[str]]:
        self.calls.append([dict(m) for m in messages])
        text = self._next()
        if not self.stream:
            return text
        return self._chunks(text)

    async def _chunks(self, text: str) -> AsyncIterator[str]:
        for i in range(0, len(text), self.chunk_size):
            yield text[i:i + self.chunk_size]


class FailingGenerator(GenerationClient):

    def __init__(self, error: Exception):
        self.error = error
        self.call_count = 0

    async def generate(self, messages):
        self.call_count += 1
        raise self.error


class ScriptedChecker(Checker):
    """
    Returns one scripted result per call (last one repeats).

    A result is a list of diagnostics, or an exception instance to raise.
    """

    def __init__(self, results: Sequence[Union[List[Diagnostic], Exception]]):
        self.results = list(results)
        self.call_count = 0

    async def check(self, store) -> List[Diagnostic]:
        index = min(self.call_count, len(self.results) - 1)
        self.call_count += 1
        result = self.results[index]
        if isinstance(result, Exception):
            raise result
        return list(result)


class UnavailableChecker(ScriptedChecker):

    def __init__(self):
        super().__init__([CheckerUnavailableError("tsc not installed")])


class RecordingInstaller(PackageInstaller):

    def __init__(self, fail: Optional[str] = None, raises: Optional[Exception] = None):
        self.fail = fail
        self.raises = raises
        self.calls: List[tuple] = []

    async def install(self, names: List[str], dev: bool = False) -> InstallResult:
        self.calls.append((list(names), dev))
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return InstallResult(success=False, error=self.fail)
        return InstallResult(success=True, output=f"added {len(names)} packages")


class RecordingExecutor(StatementExecutor):

    def __init__(self, fail: Optional[str] = None, rows: Optional[List[dict]] = None,
                 raises: Optional[Exception] = None):
        self.fail = fail
        self.raises = raises
        self.rows = rows or []
        self.calls: List[tuple] = []

    async def execute(self, statement: str, target: Optional[str] = None) -> StatementResult:
        self.calls.append((statement, target))
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return StatementResult(success=False, error=self.fail)
        return StatementResult(success=True, rows=list(self.rows))


class RecordingCommandRunner(CommandRunner):

    def __init__(self, raises: Optional[Exception] = None):
        self.raises = raises
        self.calls: List[CommandType] = []

    async def run(self, command: CommandType) -> None:
        self.calls.append(command)
        if self.raises is not None:
            raise self.raises
