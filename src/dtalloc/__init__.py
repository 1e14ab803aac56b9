"""Online primal-dual allocation engine for budget-constrained data-trading queries."""

from __future__ import annotations

from .allocator import decide
from .engine import AllocationEngine, configure
from .errors import (
    AllocationError,
    ConcurrentRoundError,
    ConfigurationError,
    InvariantViolation,
    NonConvergenceError,
)
from .revision import reactivate, reassign
from .schemas import (
    Decision,
    EngineSnapshot,
    Mode,
    Outcome,
    Phase,
    PriceUpdateParams,
    QuerySpec,
    ResourceSpec,
    RoundReport,
    RunResult,
)
from .state import AllocationLedger, PriceState

__all__ = [
    "AllocationEngine",
    "configure",
    "decide",
    "reactivate",
    "reassign",
    "AllocationLedger",
    "PriceState",
    "AllocationError",
    "ConcurrentRoundError",
    "ConfigurationError",
    "InvariantViolation",
    "NonConvergenceError",
    "Decision",
    "EngineSnapshot",
    "Mode",
    "Outcome",
    "Phase",
    "PriceUpdateParams",
    "QuerySpec",
    "ResourceSpec",
    "RoundReport",
    "RunResult",
]
