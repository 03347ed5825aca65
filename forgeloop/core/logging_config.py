"""
ForgeLoop - Centralized Logging Configuration
Supports both development (plain text) and production (JSON structured) logging
"""

import logging
import sys
import json
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict
from contextvars import ContextVar

from forgeloop.core.config import settings


# Context variables for cycle tracing
cycle_id_var: ContextVar[str] = ContextVar('cycle_id', default='')
workspace_id_var: ContextVar[str] = ContextVar('workspace_id', default='')


def get_cycle_id() -> str:
    """Get current cycle ID from context"""
    return cycle_id_var.get() or ''


def set_cycle_id(cycle_id: str) -> None:
    """Set cycle ID in context"""
    cycle_id_var.set(cycle_id)


def get_workspace_id() -> str:
    """Get current workspace ID from context"""
    return workspace_id_var.get() or ''


def set_workspace_id(workspace_id: str) -> None:
    """Set workspace ID in context"""
    workspace_id_var.set(workspace_id)


def generate_cycle_id() -> str:
    """Generate a short unique cycle ID"""
    return str(uuid.uuid4())[:8]


_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'cycle_id', 'workspace_id',
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging in production
    One JSON object per line, ready for log aggregation tools
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        cycle_id = get_cycle_id()
        if cycle_id:
            log_data["cycle_id"] = cycle_id

        workspace_id = get_workspace_id()
        if workspace_id:
            log_data["workspace_id"] = workspace_id

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Formatter that includes context variables (cycle_id, workspace_id)
    Used for development with readable output
    """

    def format(self, record: logging.LogRecord) -> str:
        record.cycle_id = get_cycle_id() or '-'
        record.workspace_id = get_workspace_id() or '-'

        return super().format(record)


class ForgeLoopLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_cycle_event(self, event: str, status: str = None, **kwargs) -> None:
        """Log a processing-cycle lifecycle event"""
        self.info(
            f"Cycle {event}" + (f": {status}" if status else ""),
            extra={
                "event_type": "cycle",
                "cycle_event": event,
                "cycle_status": status,
                **kwargs
            }
        )

    def log_instruction_outcome(self, kind: str, target: str, status: str,
                                error: str = None, **kwargs) -> None:
        """Log the outcome of one applied instruction"""
        level = logging.WARNING if status == "failed" else logging.DEBUG
        self.log(
            level,
            f"Instruction {kind} {target}: {status}" + (f" - {error}" if error else ""),
            extra={
                "event_type": "instruction",
                "instruction_kind": kind,
                "instruction_target": target,
                "instruction_status": status,
                "instruction_error": error,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )

    def log_performance(self, operation: str, duration_ms: float,
                        threshold_ms: float = 1000, **kwargs) -> None:
        """Log performance metrics, warn if over threshold"""
        level = logging.WARNING if duration_ms > threshold_ms else logging.DEBUG
        self.log(
            level,
            f"Performance: {operation} took {duration_ms:.2f}ms" +
            (f" (threshold: {threshold_ms}ms)" if duration_ms > threshold_ms else ""),
            extra={
                "event_type": "performance",
                "operation": operation,
                "duration_ms": duration_ms,
                "threshold_ms": threshold_ms,
                "exceeded_threshold": duration_ms > threshold_ms,
                **kwargs
            }
        )


def setup_logging() -> ForgeLoopLogger:
    """Setup logging configuration based on environment"""

    logging.setLoggerClass(ForgeLoopLogger)

    logger = logging.getLogger("forgeloop")
    logger.__class__ = ForgeLoopLogger  # Ensure it's our custom class
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.propagate = False

    logger.handlers.clear()

    if settings.is_production:
        json_formatter = JSONFormatter()

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(json_formatter)
        logger.addHandler(console_handler)

        if settings.LOG_FILE:
            log_file = Path(settings.LOG_FILE)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(json_formatter)
            logger.addHandler(file_handler)

    else:
        detailed_format = (
            "%(asctime)s | %(levelname)-8s | "
            "[%(workspace_id)s] [%(cycle_id)s] | "
            "%(funcName)s:%(lineno)d | %(message)s"
        )
        simple_format = "%(levelname)-8s | %(message)s"

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(ContextualFormatter(simple_format))
        logger.addHandler(console_handler)

        if settings.LOG_FILE:
            log_file = Path(settings.LOG_FILE)
            log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10485760,  # 10MB
                backupCount=5
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(ContextualFormatter(detailed_format))
            logger.addHandler(file_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.debug(
        "Logging initialized",
        extra={
            "environment": settings.ENVIRONMENT,
            "log_level": settings.LOG_LEVEL,
            "json_logging": settings.is_production
        }
    )

    return logger


# Create logger instance
logger: ForgeLoopLogger = setup_logging()


__all__ = [
    'logger',
    'setup_logging',
    'get_cycle_id',
    'set_cycle_id',
    'get_workspace_id',
    'set_workspace_id',
    'generate_cycle_id',
    'ForgeLoopLogger',
    'JSONFormatter',
    'ContextualFormatter',
]
