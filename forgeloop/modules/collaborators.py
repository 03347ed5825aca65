"""
External collaborators consumed by the core

Generation, checking, package installs, statement execution and workspace
commands all live outside ForgeLoop. Implement these base classes to plug
them in; the filesystem side is BackingStore in workspace.backing_store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from forgeloop.modules.protocol.instructions import CommandType, Diagnostic
from forgeloop.modules.workspace.backing_store import BackingStore


Message = Dict[str, str]  # {"role": "user" | "assistant" | "system", "content": "..."}
GenerationOutput = Union[str, AsyncIterator[str]]


@dataclass
class InstallResult:
    success: bool
    output: str = ""
    error: Optional[str] = None


@dataclass
class StatementResult:
    success: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


class GenerationClient(ABC):
    """Produces a response, either whole or as a stream of text fragments"""

    @abstractmethod
    async def generate(self, messages: List[Message]) -> GenerationOutput:
        pass


class Checker(ABC):
    """
    Static checker over the committed workspace.

    Raise CheckerUnavailableError when the checker cannot run at all.
    """

    @abstractmethod
    async def check(self, store: BackingStore) -> List[Diagnostic]:
        pass


class PackageInstaller(ABC):

    @abstractmethod
    async def install(self, names: List[str], dev: bool = False) -> InstallResult:
        pass


class StatementExecutor(ABC):

    @abstractmethod
    async def execute(self, statement: str, target: Optional[str] = None) -> StatementResult:
        pass


class CommandRunner(ABC):
    """Carries out rebuild / restart / refresh requests"""

    @abstractmethod
    async def run(self, command: CommandType) -> None:
        pass
