"""Dual-descent allocator: prices a revealed query against every resource and places it."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .schemas import (
    Decision,
    Outcome,
    QuerySpec,
    REASON_INFEASIBLE,
    REASON_UNPROFITABLE,
    REASON_UNREVEALED,
)
from .state import AllocationLedger, BUDGET_TOLERANCE, PriceState

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """Best placement of one query under the current prices."""
    query_id: str
    resource_index: int
    resource_id: int
    reduced_profit: float
    charge: float
    cost: float


def _costs(query: QuerySpec) -> np.ndarray:
    return np.array([np.nan if c is None else c for c in query.assignment_cost], dtype=float)


def reduced_profits(
    query: QuerySpec,
    price_state: PriceState,
    *,
    first_activation: bool,
    prices: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    r_ij = value - c_ij - phi_j * c_ij - activation_cost * [first activation],
    one entry per resource (NaN where the cost is not revealed). ``prices``
    replaces the current dual prices when given.
    """
    costs = _costs(query)
    activation = query.activation_cost if first_activation else 0.0
    phi = price_state.prices if prices is None else prices
    return query.value - costs * (1.0 + phi) - activation


def best_resource(
    query: QuerySpec,
    price_state: PriceState,
    *,
    first_activation: bool,
    exclude: Optional[int] = None,
    max_charge: float = math.inf,
    max_cost: float = math.inf,
    prices: Optional[np.ndarray] = None,
) -> Optional[Candidate]:
    """
    argmax of the reduced profit over feasible resources, lowest resource id on ties.

    A resource is feasible when it has a positive budget, the query's charge
    fits its spare capacity, the charge fits ``max_charge`` and the assignment
    cost does not exceed ``max_cost``. Returns None when nothing is feasible;
    the returned candidate may have a non-positive reduced profit. ``prices``
    overrides the dual prices used for scoring, not the feasibility check.
    """
    costs = _costs(query)
    activation = query.activation_cost if first_activation else 0.0
    charges = costs + activation
    revealed = ~np.isnan(costs)

    feasible = revealed & price_state.usable
    feasible &= price_state.consumed + np.where(revealed, charges, 0.0) <= price_state.budgets + BUDGET_TOLERANCE
    feasible &= np.where(revealed, charges, math.inf) <= max_charge + BUDGET_TOLERANCE
    feasible &= np.where(revealed, costs, math.inf) <= max_cost + BUDGET_TOLERANCE
    if exclude is not None:
        feasible[exclude] = False
    if not feasible.any():
        return None

    r = reduced_profits(query, price_state, first_activation=first_activation, prices=prices)
    k = int(np.argmax(np.where(feasible, r, -math.inf)))
    return Candidate(
        query_id=query.id,
        resource_index=k,
        resource_id=price_state.resource_ids[k],
        reduced_profit=float(r[k]),
        charge=float(charges[k]),
        cost=float(costs[k]),
    )


def decide(query: QuerySpec, price_state: PriceState, ledger: AllocationLedger) -> Decision:
    """
    Assign, reject or defer a pending query, updating Price State and Ledger.
    Only ``query`` changes partition; no other query is touched.
    """
    if not query.fully_revealed:
        log.debug("Deferring query %s: costs not yet revealed", query.id)
        return Decision(query_id=query.id, outcome=Outcome.DEFER, reason=REASON_UNREVEALED)

    first = ledger.is_first_activation(query.id)
    candidate = best_resource(query, price_state, first_activation=first)

    if candidate is None:
        ledger.reject(query.id)
        log.info("Rejected query %s: no resource can hold it", query.id)
        return Decision(query_id=query.id, outcome=Outcome.REJECT, reason=REASON_INFEASIBLE)

    if candidate.reduced_profit <= 0.0:
        ledger.reject(query.id)
        return Decision(
            query_id=query.id,
            outcome=Outcome.REJECT,
            reduced_profit=candidate.reduced_profit,
            reason=REASON_UNPROFITABLE,
        )

    price_state.charge(candidate.resource_index, candidate.charge, query.id)
    ledger.activate(query.id, candidate.resource_index, candidate.charge)
    return Decision(
        query_id=query.id,
        outcome=Outcome.ASSIGN,
        resource_id=candidate.resource_id,
        reduced_profit=candidate.reduced_profit,
    )


__all__ = ["Candidate", "reduced_profits", "best_resource", "decide"]
