"""
State Machine for the Auto-Fix Loop

    IDLE -> FIXING -> RESOLVED
                   -> EXHAUSTED   (attempt cap reached, problems remain)
                   -> ABORTED     (cancelled between iterations)

Transitions are validated against a table and recorded in a bounded
history, so a finished session can always explain how it got there.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from forgeloop.core.logging_config import logger


class AutoFixState(str, Enum):
    """Auto-fix session states"""
    IDLE = "idle"
    FIXING = "fixing"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


AUTO_FIX_TRANSITIONS: Dict[AutoFixState, Set[AutoFixState]] = {
    AutoFixState.IDLE: {AutoFixState.FIXING, AutoFixState.ABORTED},
    AutoFixState.FIXING: {AutoFixState.RESOLVED, AutoFixState.EXHAUSTED, AutoFixState.ABORTED},
    AutoFixState.RESOLVED: set(),
    AutoFixState.EXHAUSTED: set(),
    AutoFixState.ABORTED: set(),
}

TERMINAL_STATES = {AutoFixState.RESOLVED, AutoFixState.EXHAUSTED, AutoFixState.ABORTED}


@dataclass
class StateTransition:
    """Record of a state transition"""
    from_state: str
    to_state: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "metadata": self.metadata
        }


class StateMachine:
    """
    Generic state machine with validation and callbacks.

    - Validates transitions against the allowed table
    - Keeps a bounded transition history
    - Calls listeners outside the lock
    """

    def __init__(
        self,
        name: str,
        initial_state: Enum,
        transitions: Dict[Enum, Set[Enum]],
        max_history: int = 50
    ):
        self.name = name
        self._state = initial_state
        self._transitions = transitions
        self._lock = threading.RLock()
        self._history: deque = deque(maxlen=max_history)
        self._callbacks: List[Callable] = []

    @property
    def state(self) -> Enum:
        with self._lock:
            return self._state

    def can_transition(self, to_state: Enum) -> bool:
        with self._lock:
            return to_state in self._transitions.get(self._state, set())

    def transition(
        self,
        to_state: Enum,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move to to_state.

        Returns:
            True if the transition was allowed and recorded
        """
        with self._lock:
            if not self.can_transition(to_state):
                allowed = self._transitions.get(self._state, set())
                logger.warning(
                    f"[{self.name}] Invalid transition: {self._state.value} -> {to_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
                return False

            transition = StateTransition(
                from_state=self._state.value,
                to_state=to_state.value,
                reason=reason,
                metadata=metadata or {}
            )
            self._history.append(transition)

            old_state = self._state
            self._state = to_state

            logger.info(
                f"[{self.name}] State transition: {old_state.value} -> {to_state.value}"
                + (f" ({reason})" if reason else "")
            )

        for callback in self._callbacks:
            try:
                callback(old_state, to_state, transition)
            except Exception as e:
                logger.error(f"[{self.name}] Callback error: {e}")

        return True

    def on_transition(self, callback: Callable) -> None:
        """Register a listener called as callback(old_state, new_state, transition)"""
        self._callbacks.append(callback)

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        with self._lock:
            return list(self._history)[-limit:]


class AutoFixSession(StateMachine):
    """One bounded auto-fix run over a workspace"""

    def __init__(self, workspace_id: str, max_attempts: int):
        super().__init__(
            name=f"AutoFix:{workspace_id}",
            initial_state=AutoFixState.IDLE,
            transitions=AUTO_FIX_TRANSITIONS
        )
        self.workspace_id = workspace_id
        self.max_attempts = max_attempts
        self.attempts = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def start(self, problem_count: int) -> bool:
        return self.transition(
            AutoFixState.FIXING,
            reason=f"{problem_count} problem(s) reported",
            metadata={"problems": problem_count}
        )

    def record_attempt(self, problem_count: int) -> None:
        self.attempts += 1
        logger.info(
            f"[{self.name}] Attempt {self.attempts}/{self.max_attempts} left {problem_count} problem(s)"
        )

    def resolve(self) -> bool:
        return self.transition(
            AutoFixState.RESOLVED,
            reason=f"No problems after {self.attempts} attempt(s)"
        )

    def exhaust(self, problem_count: int) -> bool:
        return self.transition(
            AutoFixState.EXHAUSTED,
            reason=f"{problem_count} problem(s) remain after {self.attempts} attempt(s)"
        )

    def abort(self, reason: Optional[str] = None) -> bool:
        return self.transition(AutoFixState.ABORTED, reason=reason or "Cancelled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "state": self.state.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "transitions": [t.to_dict() for t in self.get_history()],
        }
