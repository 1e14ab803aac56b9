"""Round orchestrator for the online allocation engine."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from prometheus_client import CollectorRegistry
from pydantic import ValidationError

from . import metrics
from .allocator import decide
from .errors import ConcurrentRoundError, ConfigurationError, InvariantViolation
from .otel import tracer
from .revision import RevisionResult, reactivate, reassign
from .schemas import (
    Decision,
    EngineSnapshot,
    Mode,
    Outcome,
    Phase,
    PriceUpdateParams,
    QuerySpec,
    REASON_INFEASIBLE,
    ResourceSpec,
    RoundReport,
)
from .state import AllocationLedger, PriceState, check_invariants

log = logging.getLogger(__name__)

RevisionFn = Callable[[PriceState, AllocationLedger, Optional[float]], RevisionResult]

# Reactivation always runs before reassignment so that freshly promoted
# queries can be migrated in the same round.
REVISION_PLAN: Dict[Mode, Tuple[RevisionFn, ...]] = {
    Mode.OFFLINE: (),
    Mode.NO_STRATEGY: (),
    Mode.REACTIVATE_ONLY: (reactivate,),
    Mode.REASSIGN_ONLY: (reassign,),
    Mode.BOTH: (reactivate, reassign),
}


def _coerce_resource(resource: Union[ResourceSpec, Mapping[str, Any]]) -> ResourceSpec:
    if isinstance(resource, ResourceSpec):
        return resource
    try:
        return ResourceSpec.model_validate(dict(resource))
    except (ValidationError, TypeError) as exc:
        raise ConfigurationError(f"Malformed resource {resource!r}: {exc}") from exc


def _coerce_query(query: Union[QuerySpec, Mapping[str, Any]]) -> QuerySpec:
    if isinstance(query, QuerySpec):
        return query
    try:
        return QuerySpec.model_validate(dict(query))
    except (ValidationError, TypeError) as exc:
        raise ConfigurationError(f"Malformed query {query!r}: {exc}") from exc


class AllocationEngine:
    """
    One scheduler instance: private Price State and Ledger, driven round by round.

    Calls into a single instance must be serialized; ``run_round`` refuses to
    start while another round is in progress.
    """

    def __init__(
        self,
        resources: Sequence[Union[ResourceSpec, Mapping[str, Any]]],
        params: Optional[PriceUpdateParams] = None,
        *,
        revision_budget: Optional[float] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if revision_budget is not None and revision_budget < 0:
            raise ConfigurationError("revision_budget must be non-negative.")
        specs = [_coerce_resource(r) for r in resources]
        self.params = params if params is not None else PriceUpdateParams()
        self.price_state = PriceState(specs, self.params)
        self.ledger = AllocationLedger()
        self.revision_budget = revision_budget
        self.registry = registry

        self._phase = Phase.IDLE
        self._round_lock = threading.Lock()
        self._arrivals: List[str] = []
        self._trace: List[RoundReport] = []
        self._last_prices = self.price_state.prices.copy()

        if self.price_state.infeasible_resources:
            log.warning("Resources with no budget will never be used: %s", self.price_state.infeasible_resources)

    # ------------------------------------------------------------------ #
    # read-only views
    # ------------------------------------------------------------------ #
    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def trace(self) -> Tuple[RoundReport, ...]:
        return tuple(self._trace)

    @property
    def resource_ids(self) -> List[int]:
        return list(self.price_state.resource_ids)

    def inspect(self) -> EngineSnapshot:
        ids = self.price_state.resource_ids
        return EngineSnapshot(
            active=self.ledger.active,
            rejected=self.ledger.rejected,
            pending=self.ledger.pending,
            assignment={qid: (None if k is None else ids[k]) for qid, k in self.ledger.assignment.items()},
            profit=self.ledger.profit,
            prices=self.price_state.price_map(),
            consumed=self.price_state.consumed_map(),
            budgets=self.price_state.budget_map(),
        )

    # ------------------------------------------------------------------ #
    # inputs
    # ------------------------------------------------------------------ #
    def _require_idle(self, operation: str) -> None:
        if self._phase != Phase.IDLE:
            raise ConcurrentRoundError(f"{operation} called during phase {self._phase.value}")

    def submit(self, query: Union[QuerySpec, Mapping[str, Any]]) -> QuerySpec:
        """Validate a revealed query and enqueue it into Pending."""
        self._require_idle("submit")
        spec = _coerce_query(query)
        if len(spec.assignment_cost) != len(self.price_state):
            raise ConfigurationError(
                f"Query '{spec.id}' has {len(spec.assignment_cost)} costs for {len(self.price_state)} resources."
            )
        self.ledger.add_pending(spec)
        self._arrivals.append(spec.id)
        return spec

    def reveal_costs(self, query_id: str, costs: Sequence[Optional[float]]) -> QuerySpec:
        """Fill in unrevealed cost entries of a pending query. Revealed entries are immutable."""
        self._require_idle("reveal_costs")
        if query_id not in self.ledger:
            raise ConfigurationError(f"Unknown query '{query_id}'.")
        current = self.ledger.queries[query_id]
        if len(costs) != len(current.assignment_cost):
            raise ConfigurationError(f"Expected {len(current.assignment_cost)} costs for query '{query_id}'.")
        merged: List[Optional[float]] = []
        for old, new in zip(current.assignment_cost, costs):
            if old is not None and new is not None and new != old:
                raise ConfigurationError(f"Cost of query '{query_id}' was already revealed as {old}.")
            merged.append(old if old is not None else new)
        updated = _coerce_query(current.model_dump() | {"assignment_cost": merged})
        self.ledger.replace_pending(updated)
        return updated

    def withdraw(self, query_id: str) -> float:
        """Remove an active query from consideration; returns the profit delta."""
        self._require_idle("withdraw")
        k, freed, delta = self.ledger.withdraw(query_id)
        self.price_state.release(k, freed)
        log.info("Withdrew query %s from resource %s", query_id, self.price_state.resource_ids[k])
        return delta

    # ------------------------------------------------------------------ #
    # rounds
    # ------------------------------------------------------------------ #
    def _check(self, phase: Phase) -> None:
        try:
            check_invariants(self.price_state, self.ledger)
        except InvariantViolation:
            log.error("Invariant violated after %s phase", phase.value)
            raise

    def run_round(self, mode: Union[Mode, str] = Mode.BOTH) -> RoundReport:
        """Ingest, decide, revise and report one round."""
        mode = Mode(mode)
        if not self._round_lock.acquire(blocking=False):
            raise ConcurrentRoundError("run_round is already in progress on this engine")
        try:
            with tracer.start_as_current_span("dtalloc.round") as span:
                span.set_attribute("dtalloc.mode", mode.value)
                span.set_attribute("dtalloc.round_index", len(self._trace) + 1)
                return self._run_round(mode)
        except InvariantViolation:
            metrics.increment_invariant_violation(registry=self.registry)
            raise
        finally:
            self._phase = Phase.IDLE
            self._round_lock.release()

    def _run_round(self, mode: Mode) -> RoundReport:
        profit_before = self.ledger.profit

        self._phase = Phase.INGESTING
        arrivals, self._arrivals = self._arrivals, []

        self._phase = Phase.DECIDING
        decisions: List[Decision] = []
        with tracer.start_as_current_span("dtalloc.deciding"):
            for qid in self.ledger.pending:
                decisions.append(decide(self.ledger.queries[qid], self.price_state, self.ledger))
        self._check(Phase.DECIDING)

        self._phase = Phase.REVISING
        promotions = migrations = 0
        with tracer.start_as_current_span("dtalloc.revising"):
            for strategy in REVISION_PLAN[mode]:
                result = strategy(self.price_state, self.ledger, self.revision_budget)
                decisions.extend(result.decisions)
                if result.strategy == "reactivation":
                    promotions += result.count
                else:
                    migrations += result.count
        self._check(Phase.REVISING)

        self._phase = Phase.REPORTING
        deficit = float(np.abs(self.price_state.prices - self._last_prices).sum())
        self._last_prices = self.price_state.prices.copy()
        report = RoundReport(
            round_index=len(self._trace) + 1,
            mode=mode,
            arrivals=arrivals,
            decisions=decisions,
            promotions=promotions,
            migrations=migrations,
            profit=self.ledger.profit,
            profit_delta=self.ledger.profit - profit_before,
            utilization=self.price_state.utilization(),
            prices=self.price_state.price_map(),
            deficit=deficit,
            infeasible_queries=[
                d.query_id for d in decisions if d.outcome == Outcome.REJECT and d.reason == REASON_INFEASIBLE
            ],
            infeasible_resources=self.price_state.infeasible_resources,
            pending=len(self.ledger.pending),
        )
        self._trace.append(report)
        metrics.export_round(report, registry=self.registry)
        log.debug(
            "Round %d (%s): %d decisions, profit %.4f (%+.4f), deficit %.6g",
            report.round_index,
            mode.value,
            len(decisions),
            report.profit,
            report.profit_delta,
            deficit,
        )
        return report


def configure(
    resources: Sequence[Union[ResourceSpec, Mapping[str, Any]]],
    params: Optional[PriceUpdateParams] = None,
    *,
    revision_budget: Optional[float] = None,
    registry: Optional[CollectorRegistry] = None,
) -> AllocationEngine:
    """Build an engine over a fixed set of resources."""
    return AllocationEngine(resources, params, revision_budget=revision_budget, registry=registry)


__all__ = ["AllocationEngine", "configure", "REVISION_PLAN"]
