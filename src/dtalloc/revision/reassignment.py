from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from dtalloc.allocator import Candidate, best_resource
from dtalloc.errors import InvariantViolation
from dtalloc.schemas import Decision, Outcome, QuerySpec
from dtalloc.state import AllocationLedger, PriceState
from .result import RevisionResult

log = logging.getLogger(__name__)

# Minimum reduced-profit improvement that counts as a strict gain
MIN_GAIN = 1e-9


@dataclass(frozen=True)
class _Migration:
    target: Candidate
    source_index: int
    source_charge: float
    gain: float


def _placement(ledger: AllocationLedger, query_id: str) -> tuple[QuerySpec, int, float]:
    query = ledger.queries[query_id]
    k = ledger.assignment.get(query_id)
    if k is None:
        raise InvariantViolation("Active query without a resource", query_id=query_id)
    cost = query.assignment_cost[k]
    if cost is None:
        raise InvariantViolation("Active query with an unrevealed cost", query_id=query_id)
    return query, k, cost


def _best_migration(
    price_state: PriceState,
    ledger: AllocationLedger,
    query_id: str,
    remaining: float,
) -> Optional[_Migration]:
    """
    Both sides are scored at the prices the move would leave behind: the
    source as if the query's charge were already freed, every target as if
    the new charge were already applied. A query is never chased off a
    resource by congestion it causes itself.
    """
    query, k_cur, cur_cost = _placement(ledger, query_id)
    source_charge = ledger.charges[query_id]

    r_cur = query.value - cur_cost * (1.0 + price_state.price_after_release(k_cur, source_charge))
    costs = np.array([np.nan if c is None else c for c in query.assignment_cost], dtype=float)
    cand = best_resource(
        query,
        price_state,
        first_activation=False,
        exclude=k_cur,
        max_charge=remaining,
        max_cost=cur_cost,
        prices=price_state.prices_after_charge(costs),
    )
    if cand is None:
        return None
    gain = cand.reduced_profit - r_cur
    if gain <= MIN_GAIN:
        return None
    return _Migration(target=cand, source_index=k_cur, source_charge=source_charge, gain=gain)


def reassign(
    price_state: PriceState,
    ledger: AllocationLedger,
    threshold_budget: Optional[float] = None,
) -> RevisionResult:
    """
    Migrate active queries whose placement is no longer cost-optimal.

    A migration needs a strictly higher reduced profit on the target after
    the move, an assignment cost no higher than the current one (profit never
    falls), a feasible charge on the target and room under ``threshold_budget``.
    The largest gain is applied first; the pass repeats until no migration
    improves, so a second pass on the same state moves nothing. A pass that
    reaches ``max_revision_steps`` migrations stops and is flagged truncated.
    """
    remaining = math.inf if threshold_budget is None else threshold_budget
    max_steps = price_state.params.max_revision_steps
    result = RevisionResult(strategy="reassignment")

    while True:
        best: Optional[_Migration] = None
        for qid in ledger.active:
            move = _best_migration(price_state, ledger, qid, remaining)
            if move is not None and (best is None or move.gain > best.gain):
                best = move

        if best is None:
            break
        if result.count >= max_steps:
            result.truncated = True
            log.warning("Reassignment pass stopped after %d migrations", max_steps)
            break

        target = best.target
        price_state.transfer(best.source_index, best.source_charge, target.resource_index, target.charge, target.query_id)
        result.profit_delta += ledger.migrate(target.query_id, target.resource_index, target.charge)
        result.budget_used += target.charge
        remaining -= target.charge
        result.decisions.append(
            Decision(
                query_id=target.query_id,
                outcome=Outcome.REASSIGN,
                resource_id=target.resource_id,
                previous_resource_id=price_state.resource_ids[best.source_index],
                reduced_profit=target.reduced_profit,
            )
        )
        log.info(
            "Reassigned query %s from resource %s to %s (gain %.4f)",
            target.query_id,
            price_state.resource_ids[best.source_index],
            target.resource_id,
            best.gain,
        )

    return result
