"""
Instruction Model

Typed, immutable representation of everything a response can ask for:
seven instruction kinds plus the problem-report structure the checker
feeds back into the next generation round.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from forgeloop.modules.protocol.paths import normalize_workspace_path


class InstructionKind(str, Enum):
    """Instruction discriminator values (also the protocol tag suffixes)"""
    WRITE = "write"
    DELETE = "delete"
    RENAME = "rename"
    ADD_DEPENDENCY = "add-dependency"
    EXECUTE_STATEMENT = "execute-statement"
    COMMAND = "command"
    SET_SUMMARY = "chat-summary"


class CommandType(str, Enum):
    """Closed set of workspace commands"""
    REBUILD = "rebuild"
    RESTART = "restart"
    REFRESH = "refresh"


class _Instruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def label(self) -> str:
        """Short label for logs and tables"""
        return ""


class Write(_Instruction):
    kind: Literal[InstructionKind.WRITE] = InstructionKind.WRITE
    path: str
    content: str
    description: Optional[str] = None

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return normalize_workspace_path(v)

    @property
    def label(self) -> str:
        return self.path


class Delete(_Instruction):
    kind: Literal[InstructionKind.DELETE] = InstructionKind.DELETE
    path: str

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return normalize_workspace_path(v)

    @property
    def label(self) -> str:
        return self.path


class Rename(_Instruction):
    kind: Literal[InstructionKind.RENAME] = InstructionKind.RENAME
    from_path: str
    to_path: str

    @field_validator("from_path", "to_path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return normalize_workspace_path(v)

    @property
    def label(self) -> str:
        return f"{self.from_path} -> {self.to_path}"


class AddDependency(_Instruction):
    kind: Literal[InstructionKind.ADD_DEPENDENCY] = InstructionKind.ADD_DEPENDENCY
    packages: Tuple[str, ...]
    dev: bool = False

    @field_validator("packages", mode="before")
    @classmethod
    def _ordered_set(cls, v):
        if isinstance(v, str):
            v = v.split()
        seen = []
        for name in v:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        if not seen:
            raise ValueError("at least one package is required")
        return tuple(seen)

    @property
    def label(self) -> str:
        return " ".join(self.packages) + (" (dev)" if self.dev else "")


class ExecuteStatement(_Instruction):
    kind: Literal[InstructionKind.EXECUTE_STATEMENT] = InstructionKind.EXECUTE_STATEMENT
    statement: str
    description: Optional[str] = None
    target: Optional[str] = None

    @field_validator("statement")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("statement is empty")
        return v

    @property
    def label(self) -> str:
        return self.description or self.statement.splitlines()[0][:60]


class Command(_Instruction):
    kind: Literal[InstructionKind.COMMAND] = InstructionKind.COMMAND
    command: CommandType

    @property
    def label(self) -> str:
        return self.command.value


class SetSummary(_Instruction):
    kind: Literal[InstructionKind.SET_SUMMARY] = InstructionKind.SET_SUMMARY
    text: str

    @property
    def label(self) -> str:
        return self.text


Instruction = Annotated[
    Union[Write, Delete, Rename, AddDependency, ExecuteStatement, Command, SetSummary],
    Field(discriminator="kind"),
]


class ParseWarning(BaseModel):
    """A tag block that was skipped during extraction"""
    model_config = ConfigDict(frozen=True)

    tag: str
    message: str
    offset: int


class Problem(BaseModel):
    """One checker finding"""
    model_config = ConfigDict(frozen=True)

    file: str
    line: int
    column: int
    code: str
    message: str

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, v) -> str:
        return str(v)

    def location(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


# The checker collaborator reports the same record
Diagnostic = Problem


class ProblemReport(BaseModel):
    """Ordered checker findings plus a one-line summary"""
    model_config = ConfigDict(frozen=True)

    summary: str = ""
    problems: Tuple[Problem, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.problems
