"""
Custom Exceptions for ForgeLoop
===============================

Use these instead of generic Exception so callers can tell a malformed
response from a busy workspace from a failing collaborator.

Usage:
    from forgeloop.core.exceptions import UnsafePathError, WorkspaceBusyError

    if path.startswith("/"):
        raise UnsafePathError(path, "absolute paths are not allowed")

    try:
        await installer.install(names, dev=False)
    except DependencyInstallError as e:
        logger.warning(f"Install failed: {e}")
"""

from typing import Optional, Any, Dict


class ForgeLoopError(Exception):
    """Base exception for all ForgeLoop errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Validation Errors
# ============================================

class ValidationError(ForgeLoopError):
    """Input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class UnsafePathError(ValidationError):
    """Path escapes the workspace root or is otherwise not workspace-relative"""

    def __init__(self, path: str, reason: str = "path escapes the workspace"):
        super().__init__(f"Unsafe path '{path}': {reason}", field="path")
        self.code = "UNSAFE_PATH"
        self.details.update({"path": path, "reason": reason})


# ============================================
# Protocol Errors
# ============================================

class ProtocolError(ForgeLoopError):
    """Tag protocol text could not be interpreted"""

    def __init__(self, message: str):
        super().__init__(message, code="PROTOCOL_ERROR")


class ProblemReportParseError(ProtocolError):
    """Problem report text is missing or malformed"""

    def __init__(self, message: str = "No problem report found"):
        super().__init__(message)
        self.code = "PROBLEM_REPORT_PARSE_ERROR"


class StreamClosedError(ProtocolError):
    """Fragment arrived after the stream was finalized"""

    def __init__(self):
        super().__init__("Stream already finalized")
        self.code = "STREAM_CLOSED"


# ============================================
# Workspace Errors
# ============================================

class WorkspaceError(ForgeLoopError):
    """Workspace operation failed"""

    def __init__(self, message: str, workspace_id: Optional[str] = None):
        super().__init__(message, code="WORKSPACE_ERROR")
        if workspace_id:
            self.details["workspace_id"] = workspace_id


class WorkspaceBusyError(WorkspaceError):
    """Another cycle holds mutating access to the workspace"""

    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace '{workspace_id}' already has a cycle in flight", workspace_id)
        self.code = "WORKSPACE_BUSY"


# ============================================
# Collaborator Errors
# ============================================

class CollaboratorError(ForgeLoopError):
    """An external collaborator call failed"""

    def __init__(self, message: str, collaborator: Optional[str] = None):
        super().__init__(message, code="COLLABORATOR_ERROR")
        if collaborator:
            self.details["collaborator"] = collaborator


class CheckerUnavailableError(CollaboratorError):
    """The checker could not run; treated as no diagnostics observed"""

    def __init__(self, message: str = "Checker unavailable"):
        super().__init__(message, collaborator="checker")
        self.code = "CHECKER_UNAVAILABLE"


class DependencyInstallError(CollaboratorError):
    """Dependency installation failed"""

    def __init__(self, packages: list, message: str = ""):
        super().__init__(f"Failed to install {' '.join(packages)}: {message}", collaborator="package_installer")
        self.code = "DEPENDENCY_INSTALL_FAILED"
        self.details["packages"] = list(packages)


class StatementExecutionError(CollaboratorError):
    """Statement execution against the data store failed"""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message, collaborator="statement_executor")
        self.code = "STATEMENT_FAILED"
        if target:
            self.details["target"] = target


class CommandRunError(CollaboratorError):
    """A rebuild/restart/refresh command failed"""

    def __init__(self, kind: str, message: str = ""):
        super().__init__(f"Command '{kind}' failed: {message}", collaborator="command_runner")
        self.code = "COMMAND_FAILED"
        self.details["command"] = kind

