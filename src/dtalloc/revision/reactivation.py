from __future__ import annotations

import logging
import math
from typing import Optional

from dtalloc.allocator import Candidate, best_resource
from dtalloc.schemas import Decision, Outcome
from dtalloc.state import AllocationLedger, PriceState
from .result import RevisionResult

log = logging.getLogger(__name__)


def reactivate(
    price_state: PriceState,
    ledger: AllocationLedger,
    threshold_budget: Optional[float] = None,
) -> RevisionResult:
    """
    Promote rejected queries that are profitable under the current prices.

    Greedy: the candidate with the highest reduced profit is promoted first,
    then every remaining candidate is re-priced against the updated state.
    ``threshold_budget`` caps the total charge this pass may allocate.
    Withdrawn queries are never reconsidered.
    """
    remaining = math.inf if threshold_budget is None else threshold_budget
    result = RevisionResult(strategy="reactivation")

    while True:
        best: Optional[Candidate] = None
        for qid in ledger.rejected:
            if qid in ledger.withdrawn:
                continue
            query = ledger.queries[qid]
            cand = best_resource(
                query,
                price_state,
                first_activation=ledger.is_first_activation(qid),
                max_charge=remaining,
            )
            if cand is None or cand.reduced_profit <= 0.0:
                continue
            # strict comparison keeps the earliest arrival on ties
            if best is None or cand.reduced_profit > best.reduced_profit:
                best = cand

        if best is None:
            break

        price_state.charge(best.resource_index, best.charge, best.query_id)
        result.profit_delta += ledger.activate(best.query_id, best.resource_index, best.charge)
        result.budget_used += best.charge
        remaining -= best.charge
        result.decisions.append(
            Decision(
                query_id=best.query_id,
                outcome=Outcome.REACTIVATE,
                resource_id=best.resource_id,
                reduced_profit=best.reduced_profit,
            )
        )
        log.info("Reactivated query %s on resource %s (reduced profit %.4f)", best.query_id, best.resource_id, best.reduced_profit)

    return result
