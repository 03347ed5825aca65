"""
Tag Extractor
Turns free-form response text into an ordered list of Instructions

Response text interleaves prose with tag blocks:

    I'll add the page and drop the old one.
    <forge-write path="src/pages/About.tsx" description="About page">
    ```tsx
    export default function About() { ... }
    ```
    </forge-write>
    <forge-delete path="src/pages/Old.tsx"/>
    <forge-add-dependency packages="react-router-dom"/>
    <forge-chat-summary>Add about page</forge-chat-summary>

Extraction is a pure function of the text. It is re-run on the full text
after every streamed fragment for live preview; only the run over the final
text is ever applied.

Tolerance:
- a write, statement or summary block whose closing marker has not arrived
  yet is left out, together with everything after it (it may still be
  streaming); body-less kinds are complete at their opening marker
- an unknown tag skips only its opening marker and adds a ParseWarning
- unknown/missing attributes, bad values and unsafe paths skip
  that single block and add a ParseWarning
- extraction never raises on malformed input
"""

import html
import re
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from forgeloop.core.config import settings, parse_tag_prefix
from forgeloop.core.exceptions import ForgeLoopError
from forgeloop.core.logging_config import logger
from forgeloop.modules.protocol.instructions import (
    AddDependency,
    Command,
    CommandType,
    Delete,
    ExecuteStatement,
    Instruction,
    InstructionKind,
    ParseWarning,
    Rename,
    SetSummary,
    Write,
)


TagParser = Callable[[Dict[str, str], Optional[str]], Instruction]


@dataclass(frozen=True)
class TagSpec:
    """Registry entry: how to turn one tag block into an Instruction"""
    name: str
    parser: TagParser
    required: FrozenSet[str]
    optional: FrozenSet[str]
    # Body-less kinds are complete at their opening marker
    has_body: bool = False

    @property
    def allowed(self) -> FrozenSet[str]:
        return self.required | self.optional


TAG_REGISTRY: Dict[str, TagSpec] = {}


def register_tag(name: str, required: Tuple[str, ...] = (), optional: Tuple[str, ...] = (),
                 has_body: bool = False):
    """Register a parser for ``<prefix-{name}>`` blocks"""
    def decorator(fn: TagParser) -> TagParser:
        TAG_REGISTRY[name] = TagSpec(
            name=name,
            parser=fn,
            required=frozenset(required),
            optional=frozenset(optional),
            has_body=has_body,
        )
        return fn
    return decorator


class OpenBlock(BaseModel):
    """A block whose closing marker has not arrived (yet)"""
    model_config = ConfigDict(frozen=True)

    tag: str
    offset: int
    path: Optional[str] = None


class ExtractionResult(BaseModel):
    """Instructions in order of appearance plus skipped-block warnings"""
    model_config = ConfigDict(frozen=True)

    instructions: Tuple[Instruction, ...] = ()
    warnings: Tuple[ParseWarning, ...] = ()
    open_block: Optional[OpenBlock] = None


# ============================================
# Content helpers
# ============================================

_FENCE_OPEN = re.compile(r"^(`{3,})")
_FENCE_CLOSE = re.compile(r"^`{3,}$")


def strip_code_fence(content: str) -> str:
    """
    Remove one enclosing fenced code block, keeping inner lines exactly.

    Only the first and last non-blank lines are considered, so fence-looking
    lines inside the block survive untouched.
    """
    lines = content.split("\n")
    non_blank = [i for i, line in enumerate(lines) if line.strip()]
    if len(non_blank) < 2:
        return content

    first, last = non_blank[0], non_blank[-1]
    opener = _FENCE_OPEN.match(lines[first].strip())
    closer = lines[last].strip()
    if not opener or not _FENCE_CLOSE.match(closer) or len(closer) < len(opener.group(1)):
        return content

    return "".join(line + "\n" for line in lines[first + 1:last])


def _drop_leading_newline(body: str) -> str:
    if body.startswith("\r\n"):
        return body[2:]
    if body.startswith("\n"):
        return body[1:]
    return body


def _parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no", ""):
        return False
    raise ValueError(f"attribute '{name}' must be true or false, got '{value}'")


_ATTR_RE = re.compile(r'\s*([A-Za-z_][\w-]*)\s*=\s*"([^"]*)"')


def parse_attributes(raw: str) -> Dict[str, str]:
    """
    Parse ``key="value"`` pairs (any order, entity-escaped values).

    Raises:
        ValueError: anything other than well-formed, unique pairs
    """
    attrs: Dict[str, str] = {}
    pos = 0
    raw = raw or ""
    while pos < len(raw):
        if not raw[pos:].strip():
            break
        match = _ATTR_RE.match(raw, pos)
        if not match:
            raise ValueError(f"malformed attributes near '{raw[pos:pos + 30].strip()}'")
        key, value = match.group(1), html.unescape(match.group(2))
        if key in attrs:
            raise ValueError(f"duplicate attribute '{key}'")
        attrs[key] = value
        pos = match.end()
    return attrs


# ============================================
# Tag parsers (one registry entry per kind)
# ============================================

@register_tag(InstructionKind.WRITE.value, required=("path",), optional=("description",), has_body=True)
def _parse_write(attrs: Dict[str, str], body: Optional[str]) -> Write:
    content = strip_code_fence(_drop_leading_newline(body or ""))
    return Write(path=attrs["path"], content=content, description=attrs.get("description"))


@register_tag(InstructionKind.DELETE.value, required=("path",))
def _parse_delete(attrs: Dict[str, str], body: Optional[str]) -> Delete:
    return Delete(path=attrs["path"])


@register_tag(InstructionKind.RENAME.value, required=("from", "to"))
def _parse_rename(attrs: Dict[str, str], body: Optional[str]) -> Rename:
    return Rename(from_path=attrs["from"], to_path=attrs["to"])


@register_tag(InstructionKind.ADD_DEPENDENCY.value, required=("packages",), optional=("dev",))
def _parse_add_dependency(attrs: Dict[str, str], body: Optional[str]) -> AddDependency:
    return AddDependency(
        packages=attrs["packages"],
        dev=_parse_bool(attrs.get("dev", "false"), "dev"),
    )


@register_tag(InstructionKind.EXECUTE_STATEMENT.value, optional=("description", "target"), has_body=True)
def _parse_execute_statement(attrs: Dict[str, str], body: Optional[str]) -> ExecuteStatement:
    statement = strip_code_fence((body or "").strip()).strip()
    return ExecuteStatement(
        statement=statement,
        description=attrs.get("description"),
        target=attrs.get("target"),
    )


@register_tag(InstructionKind.COMMAND.value, required=("type",))
def _parse_command(attrs: Dict[str, str], body: Optional[str]) -> Command:
    return Command(command=CommandType(attrs["type"].strip().lower()))


@register_tag(InstructionKind.SET_SUMMARY.value, has_body=True)
def _parse_chat_summary(attrs: Dict[str, str], body: Optional[str]) -> SetSummary:
    text = (body or "").strip()
    if not text:
        raise ValueError("summary is empty")
    return SetSummary(text=text)


# ============================================
# Extractor
# ============================================

class TagExtractor:
    """Scans text for ``<prefix-kind ...>`` blocks and parses them via the registry"""

    def __init__(self, prefix: Optional[str] = None, registry: Optional[Dict[str, TagSpec]] = None):
        self.prefix = parse_tag_prefix(prefix or settings.TAG_PREFIX)
        self.registry = registry if registry is not None else TAG_REGISTRY
        self._open_re = re.compile(
            rf"<{re.escape(self.prefix)}-([a-z][a-z0-9-]*)(\s[^<>]*?)?(/?)>"
        )

    def close_marker(self, name: str) -> str:
        return f"</{self.prefix}-{name}>"

    def extract(self, text: str) -> ExtractionResult:
        """Extract instructions from the full text seen so far"""
        instructions: List[Instruction] = []
        warnings: List[ParseWarning] = []
        open_block: Optional[OpenBlock] = None
        text = text or ""
        pos = 0

        while True:
            match = self._open_re.search(text, pos)
            if not match:
                break

            name = match.group(1)
            raw_attrs = match.group(2) or ""
            self_closing = match.group(3) == "/"
            start, open_end = match.start(), match.end()

            spec = self.registry.get(name)
            if spec is None:
                # Only the marker is skipped; whatever follows is scanned as usual
                warnings.append(ParseWarning(tag=name, message=f"unknown tag '{self.prefix}-{name}'", offset=start))
                pos = open_end
                continue

            close_marker = self.close_marker(name)
            if self_closing:
                body = None
                block_end = open_end
            elif not spec.has_body:
                # <prefix-delete ...> and <prefix-delete ...></prefix-delete> are equivalent
                body = None
                rest = len(text) - len(text[open_end:].lstrip())
                block_end = rest + len(close_marker) if text.startswith(close_marker, rest) else open_end
            else:
                close_idx = text.find(close_marker, open_end)
                if close_idx == -1:
                    open_block = OpenBlock(tag=name, offset=start, path=self._peek_path(raw_attrs))
                    break
                body = text[open_end:close_idx]
                block_end = close_idx + len(close_marker)

            pos = block_end

            try:
                attrs = parse_attributes(raw_attrs)
                unknown = sorted(set(attrs) - spec.allowed)
                if unknown:
                    raise ValueError(f"unrecognized attribute(s): {', '.join(unknown)}")
                missing = sorted(spec.required - set(attrs))
                if missing:
                    raise ValueError(f"missing attribute(s): {', '.join(missing)}")
                instructions.append(spec.parser(attrs, body))
            except (ValueError, ForgeLoopError) as e:
                warnings.append(ParseWarning(tag=name, message=_warning_text(e), offset=start))

        return ExtractionResult(
            instructions=tuple(instructions),
            warnings=tuple(warnings),
            open_block=open_block,
        )

    @staticmethod
    def _peek_path(raw_attrs: str) -> Optional[str]:
        try:
            attrs = parse_attributes(raw_attrs)
        except ValueError:
            return None
        return attrs.get("path")


def _warning_text(error: Exception) -> str:
    if isinstance(error, ForgeLoopError):
        return error.message
    # pydantic ValidationError is a ValueError; keep its first line readable
    errors = getattr(error, "errors", None)
    if callable(errors):
        try:
            first = errors()[0]
            return f"{'.'.join(str(p) for p in first.get('loc', ()))}: {first.get('msg')}".lstrip(": ")
        except (IndexError, TypeError):
            pass
    return str(error)


# Singleton instance
tag_extractor = TagExtractor()


def extract(text: str) -> ExtractionResult:
    """Extract with the configured tag prefix"""
    result = tag_extractor.extract(text)
    if result.warnings:
        logger.debug(f"[TagExtractor] {len(result.warnings)} block(s) skipped")
    return result
