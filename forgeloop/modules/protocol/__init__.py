"""
Protocol Module - instruction model, tag extraction and problem reports
"""

from forgeloop.modules.protocol.instructions import (
    AddDependency,
    Command,
    CommandType,
    Delete,
    Diagnostic,
    ExecuteStatement,
    Instruction,
    InstructionKind,
    ParseWarning,
    Problem,
    ProblemReport,
    Rename,
    SetSummary,
    Write,
)
from forgeloop.modules.protocol.tag_extractor import tag_extractor, TagExtractor, ExtractionResult, register_tag
from forgeloop.modules.protocol.stream_ingester import StreamIngester, StreamPreview
from forgeloop.modules.protocol.problem_reporter import problem_reporter, ProblemReporter

__all__ = [
    # Singleton instances (ready to use)
    'tag_extractor',
    'problem_reporter',

    # Classes (for custom instantiation)
    'TagExtractor',
    'StreamIngester',
    'ProblemReporter',
    'register_tag',

    # Data model
    'Instruction',
    'InstructionKind',
    'Write',
    'Delete',
    'Rename',
    'AddDependency',
    'ExecuteStatement',
    'Command',
    'CommandType',
    'SetSummary',
    'ParseWarning',
    'Problem',
    'Diagnostic',
    'ProblemReport',
    'ExtractionResult',
    'StreamPreview',
]
