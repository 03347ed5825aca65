"""
Stream Ingester
Accumulates streamed response fragments into one growing buffer

The ingester never parses on its own; it only gives the extractor a stable,
totally ordered view of the text at any instant. preview() runs a throwaway
extraction for live display and has no side effects.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from forgeloop.core.exceptions import StreamClosedError
from forgeloop.modules.protocol.instructions import Instruction, ParseWarning
from forgeloop.modules.protocol.tag_extractor import OpenBlock, TagExtractor, tag_extractor


@dataclass(frozen=True)
class StreamPreview:
    """Speculative view of a stream that is still arriving"""
    text: str
    instructions: Tuple[Instruction, ...]
    warnings: Tuple[ParseWarning, ...]
    open_block: Optional[OpenBlock]

    @property
    def status_line(self) -> str:
        if self.open_block is None:
            return f"{len(self.instructions)} action(s) ready"
        target = f" {self.open_block.path}" if self.open_block.path else ""
        return f"Streaming {self.open_block.tag}{target}..."


class StreamIngester:
    """Append-only text buffer with an explicit end-of-stream signal"""

    def __init__(self, extractor: Optional[TagExtractor] = None):
        self._fragments: List[str] = []
        self._text = ""
        self._closed = False
        self._aborted = False
        self._extractor = extractor or tag_extractor

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    def append(self, fragment: str) -> None:
        """Append one fragment, in arrival order"""
        if self._closed:
            raise StreamClosedError()
        if not fragment:
            return
        self._fragments.append(fragment)
        self._text += fragment

    def current_text(self) -> str:
        return self._text

    def finalize(self, aborted: bool = False) -> Tuple[str, bool]:
        """Close the stream; returns (final text, aborted flag)"""
        if not self._closed:
            self._closed = True
            self._aborted = aborted
        return self._text, self._aborted

    def preview(self) -> StreamPreview:
        """Extract from the current text for display only"""
        result = self._extractor.extract(self._text)
        return StreamPreview(
            text=self._text,
            instructions=result.instructions,
            warnings=result.warnings,
            open_block=result.open_block,
        )
