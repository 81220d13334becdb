from __future__ import annotations

from dataclasses import dataclass

from jobcodex.errors import InvalidTransition
from jobcodex.types import UnitStatus

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "error", "failed"})

TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "failed"}),
    "processing": frozenset({"extracting", "error"}),
    "extracting": frozenset({"validating", "error"}),
    "validating": frozenset({"completed", "error"}),
    "completed": frozenset(),
    "error": frozenset(),
    "failed": frozenset(),
}


@dataclass(slots=True)
class UnitLifecycle:
    status: UnitStatus

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def can_move_to(self, target: str) -> bool:
        if self.status not in TRANSITIONS:
            raise ValueError(f"unsupported unit status '{self.status}'")
        return target in TRANSITIONS[self.status]

    def move_to(self, target: UnitStatus) -> UnitStatus:
        if not self.can_move_to(target):
            raise InvalidTransition(self.status, target)
        self.status = target
        return target
