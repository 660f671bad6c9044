"""Bounded corrective re-prompting for unexpected assistant output."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class RetryController:
    """Tracks whether the current turn needs a corrective retry.

    ``attempts`` counts retries since the last valid record and is shared
    by all turns of a session; ``flagged`` only lives for one turn.
    """

    limit: int = 2
    attempts: int = 0
    flagged: bool = False
    reason: Optional[str] = None

    def flag(self, reason: str) -> None:
        self.flagged = True
        if self.reason is None:
            self.reason = reason

    def record_valid(self) -> None:
        self.attempts = 0

    def consume(self) -> bool:
        """Called at turn exit; True when a retry should be scheduled."""

        if not self.flagged:
            return False
        if self.attempts >= self.limit:
            return False
        self.attempts += 1
        self.flagged = False
        self.reason = None
        return True

    @property
    def exhausted(self) -> bool:
        return self.flagged and self.attempts >= self.limit

    def clear_turn(self) -> None:
        self.flagged = False
        self.reason = None

    def reset(self) -> None:
        self.attempts = 0
        self.clear_turn()
