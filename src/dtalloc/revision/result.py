from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from dtalloc.schemas import Decision


@dataclass
class RevisionResult:
    """Outcome of one reactivation or reassignment pass."""
    strategy: str
    decisions: List[Decision] = field(default_factory=list)
    profit_delta: float = 0.0
    budget_used: float = 0.0
    truncated: bool = False

    @property
    def count(self) -> int:
        return len(self.decisions)
