"""Pydantic models for the dtalloc allocation engine."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Mode(str, Enum):
    """Which revision strategies run after the deciding pass of a round."""
    OFFLINE = "offline"
    NO_STRATEGY = "no_strategy"
    REACTIVATE_ONLY = "reactivate_only"
    REASSIGN_ONLY = "reassign_only"
    BOTH = "both"


class Outcome(str, Enum):
    """Outcome recorded for a query in a round."""
    ASSIGN = "ASSIGN"
    REJECT = "REJECT"
    DEFER = "DEFER"
    REACTIVATE = "REACTIVATE"
    REASSIGN = "REASSIGN"


class Phase(str, Enum):
    IDLE = "IDLE"
    INGESTING = "INGESTING"
    DECIDING = "DECIDING"
    REVISING = "REVISING"
    REPORTING = "REPORTING"


class QueryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


REASON_INFEASIBLE = "infeasible"
REASON_UNPROFITABLE = "unprofitable"
REASON_UNREVEALED = "costs_not_revealed"


class ResourceSpec(BaseModel):
    """A capacity-limited plan with a fixed budget."""
    id: Annotated[int, Field(ge=0, description="Resource identity; ties break towards the lowest id.")]
    budget: Annotated[float, Field(ge=0, description="Total capacity; a zero budget marks the resource infeasible.")]

    model_config = ConfigDict(frozen=True, extra="forbid", strict=True, allow_inf_nan=False)


class QuerySpec(BaseModel):
    """A revealed query. Immutable once submitted."""
    id: Annotated[str, Field(min_length=1)]
    value: Annotated[float, Field(ge=0, description="Value earned while the query is active.")]
    assignment_cost: Annotated[
        List[Optional[Annotated[float, Field(ge=0)]]],
        Field(
            alias="assignmentCost",
            min_length=1,
            description="Cost of serving the query on each resource, ordered by resource id. None means not yet revealed.",
        ),
    ]
    activation_cost: float = Field(
        default=0.0, alias="activationCost", ge=0, description="One-time cost paid on first activation."
    )

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        extra="forbid",
        strict=True,
        allow_inf_nan=False,
        str_strip_whitespace=True,
    )

    @property
    def fully_revealed(self) -> bool:
        return all(c is not None for c in self.assignment_cost)


class PriceUpdateParams(BaseModel):
    """
    Dual price update rule and iteration caps. Fixed at engine construction.

    A resource whose utilization is at or above ``high_utilization_threshold``
    after a charge has its price raised to ``phi * (1 + epsilon) + delta``; a
    resource that drops below the threshold after a release has it lowered to
    ``max(initial_price, (phi - delta) / (1 + epsilon))``.
    """
    epsilon: float = Field(default=0.1, ge=0, description="Multiplicative price step.")
    delta: float = Field(default=0.05, ge=0, description="Additive price step.")
    high_utilization_threshold: float = Field(default=0.8, gt=0, le=1)
    initial_price: float = Field(default=0.0, ge=0)
    max_iterations: int = Field(default=50, ge=1, description="Settling rounds allowed in batch runs.")
    convergence_tolerance: float = Field(default=1e-6, ge=0)
    max_revision_steps: int = Field(default=10_000, ge=1, description="Migrations allowed in one reassignment pass.")

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)


class Decision(BaseModel):
    """A single state transition taken by the engine in a round."""
    query_id: str
    outcome: Outcome
    resource_id: Optional[int] = Field(default=None, description="Resource the query ended up on, if any.")
    previous_resource_id: Optional[int] = Field(default=None, description="Source resource of a reassignment.")
    reduced_profit: Optional[float] = None
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RoundReport(BaseModel):
    """Committed result of one orchestrator round."""
    round_index: int = Field(ge=1)
    mode: Mode
    arrivals: List[str] = Field(default_factory=list)
    decisions: List[Decision] = Field(default_factory=list)
    promotions: int = Field(default=0, ge=0)
    migrations: int = Field(default=0, ge=0)
    profit: float
    profit_delta: float
    utilization: Dict[int, float] = Field(description="consumed / budget per resource id.")
    prices: Dict[int, float] = Field(description="Dual price per resource id at the end of the round.")
    deficit: float = Field(ge=0, description="L1 movement of the dual prices during the round.")
    infeasible_queries: List[str] = Field(default_factory=list)
    infeasible_resources: List[int] = Field(default_factory=list)
    pending: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class EngineSnapshot(BaseModel):
    """Read-only view of the engine state between rounds."""
    active: List[str]
    rejected: List[str]
    pending: List[str]
    assignment: Dict[str, Optional[int]]
    profit: float
    prices: Dict[int, float]
    consumed: Dict[int, float]
    budgets: Dict[int, float]

    model_config = ConfigDict(frozen=True)


class RunResult(BaseModel):
    """Outcome of a batch run over a full instance."""
    mode: Mode
    assignment: List[Optional[int]] = Field(description="Resource id per query index, None when unassigned.")
    duals: List[float]
    partitions: Dict[str, List[int]] = Field(description="Query indices per partition: active, rejected, pending.")
    profit: float
    utilization_trace: List[List[float]]
    deficit_trace: List[float]
    converged: bool
    rounds: int = Field(ge=0)
    reports: List[RoundReport] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ProblemInstance(BaseModel):
    """Resources plus the query stream, in arrival order."""
    resources: Annotated[List[ResourceSpec], Field(min_length=1)]
    queries: List[QuerySpec] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
