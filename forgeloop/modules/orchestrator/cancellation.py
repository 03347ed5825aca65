"""
Cooperative cancellation

A token is checked only at boundaries (between stream fragments, applier
phases and fix-loop iterations), never in the middle of one instruction.
"""

from typing import Optional


class CancellationToken:

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled by user") -> None:
        # First reason wins
        if not self._cancelled:
            self.reason = reason
            self._cancelled = True
