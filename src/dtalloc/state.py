"""Price State and Allocation Ledger owned by one engine instance."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .errors import ConfigurationError, InvariantViolation
from .schemas import PriceUpdateParams, QuerySpec, QueryStatus, ResourceSpec

log = logging.getLogger(__name__)

# Tolerance for floating point budget comparisons
BUDGET_TOLERANCE = 1e-9


class PriceState:
    """
    Per-resource budgets, consumed capacity and dual prices.

    Arrays are indexed by position in ascending resource id order, so the
    first maximum found by ``np.argmax`` is always the lowest resource id.
    """

    def __init__(self, resources: Sequence[ResourceSpec], params: PriceUpdateParams):
        if not resources:
            raise ConfigurationError("At least one resource must be configured.")
        ordered = sorted(resources, key=lambda r: r.id)
        ids = [r.id for r in ordered]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate resource ids in {ids}.")

        self.params = params
        self.resource_ids: List[int] = ids
        self._index: Dict[int, int] = {rid: k for k, rid in enumerate(ids)}
        self.budgets = np.array([r.budget for r in ordered], dtype=float)
        self.consumed = np.zeros(len(ids), dtype=float)
        self.prices = np.full(len(ids), params.initial_price, dtype=float)
        # Resources with no capacity never receive a query
        self.usable = self.budgets > 0.0

    def __len__(self) -> int:
        return len(self.resource_ids)

    def index(self, resource_id: int) -> int:
        try:
            return self._index[resource_id]
        except KeyError:
            raise ConfigurationError(f"Unknown resource id {resource_id}.") from None

    @property
    def infeasible_resources(self) -> List[int]:
        return [rid for rid, ok in zip(self.resource_ids, self.usable) if not ok]

    def utilization_at(self, k: int) -> float:
        if self.budgets[k] <= 0.0:
            return 0.0
        return float(self.consumed[k] / self.budgets[k])

    def utilization(self) -> Dict[int, float]:
        return {rid: self.utilization_at(k) for k, rid in enumerate(self.resource_ids)}

    def price_map(self) -> Dict[int, float]:
        return {rid: float(p) for rid, p in zip(self.resource_ids, self.prices)}

    def consumed_map(self) -> Dict[int, float]:
        return {rid: float(c) for rid, c in zip(self.resource_ids, self.consumed)}

    def budget_map(self) -> Dict[int, float]:
        return {rid: float(b) for rid, b in zip(self.resource_ids, self.budgets)}

    def fits(self, k: int, amount: float) -> bool:
        return bool(self.usable[k]) and self.consumed[k] + amount <= self.budgets[k] + BUDGET_TOLERANCE

    def _validate_charge(self, k: int, amount: float, query_id: Optional[str]) -> None:
        if amount < 0:
            raise InvariantViolation(
                f"Negative charge {amount}", resource_id=self.resource_ids[k], query_id=query_id
            )
        if not self.fits(k, amount):
            raise InvariantViolation(
                f"Charge {amount:.6g} exceeds budget: consumed {self.consumed[k]:.6g} of {self.budgets[k]:.6g}",
                resource_id=self.resource_ids[k],
                query_id=query_id,
            )

    def _raised(self, phi):
        return phi * (1.0 + self.params.epsilon) + self.params.delta

    def _lowered(self, phi: float) -> float:
        return max(self.params.initial_price, (phi - self.params.delta) / (1.0 + self.params.epsilon))

    def prices_after_charge(self, amounts: np.ndarray) -> np.ndarray:
        """
        Price every resource would carry after consuming ``amounts[k]`` on it,
        under the same rule ``charge`` applies. NaN amounts leave the price as is.
        """
        after = np.minimum(self.consumed + amounts, self.budgets)
        with np.errstate(divide="ignore", invalid="ignore"):
            util = np.where(self.budgets > 0.0, after / self.budgets, 0.0)
        hot = util >= self.params.high_utilization_threshold
        return np.where(hot, self._raised(self.prices), self.prices)

    def price_after_release(self, k: int, amount: float) -> float:
        """Price resource ``k`` would carry after freeing ``amount``, as ``release`` computes it."""
        remaining = max(self.consumed[k] - amount, 0.0)
        util = remaining / self.budgets[k] if self.budgets[k] > 0.0 else 0.0
        if util < self.params.high_utilization_threshold:
            return self._lowered(float(self.prices[k]))
        return float(self.prices[k])

    def _raise_price_if_hot(self, k: int) -> None:
        if self.utilization_at(k) >= self.params.high_utilization_threshold:
            old = self.prices[k]
            self.prices[k] = self._raised(old)
            log.debug("Raised price of resource %s from %.6g to %.6g", self.resource_ids[k], old, self.prices[k])

    def _lower_price_if_cool(self, k: int) -> None:
        if self.utilization_at(k) < self.params.high_utilization_threshold:
            old = self.prices[k]
            self.prices[k] = self._lowered(float(old))
            if self.prices[k] != old:
                log.debug("Lowered price of resource %s from %.6g to %.6g", self.resource_ids[k], old, self.prices[k])

    def charge(self, k: int, amount: float, query_id: Optional[str] = None) -> None:
        """Consume ``amount`` on resource ``k``. Validated before commit."""
        self._validate_charge(k, amount, query_id)
        self.consumed[k] = min(self.consumed[k] + amount, self.budgets[k])
        self._raise_price_if_hot(k)

    def release(self, k: int, amount: float) -> None:
        self.consumed[k] = max(self.consumed[k] - amount, 0.0)
        self._lower_price_if_cool(k)

    def transfer(self, k_from: int, amount_from: float, k_to: int, amount_to: float, query_id: Optional[str] = None) -> None:
        """Free ``amount_from`` on ``k_from`` and consume ``amount_to`` on ``k_to`` as one update."""
        if k_from == k_to:
            raise InvariantViolation("Transfer onto the same resource", resource_id=self.resource_ids[k_to], query_id=query_id)
        self._validate_charge(k_to, amount_to, query_id)
        self.release(k_from, amount_from)
        self.charge(k_to, amount_to, query_id)

    def check_budgets(self) -> None:
        over = np.nonzero(self.consumed > self.budgets + BUDGET_TOLERANCE)[0]
        if over.size:
            k = int(over[0])
            raise InvariantViolation(
                f"Budget exceeded: consumed {self.consumed[k]:.6g} > budget {self.budgets[k]:.6g}",
                resource_id=self.resource_ids[k],
            )


class AllocationLedger:
    """
    Partition of every known query into Active, Rejected and Pending,
    the assignment map and the running profit.
    """

    def __init__(self) -> None:
        self.queries: Dict[str, QuerySpec] = {}  # arrival order
        self.status: Dict[str, QueryStatus] = {}
        self.assignment: Dict[str, Optional[int]] = {}  # resource index, not id
        self.charges: Dict[str, float] = {}
        self.ever_active: Set[str] = set()
        self.withdrawn: Set[str] = set()
        self.profit: float = 0.0

    def __contains__(self, query_id: object) -> bool:
        return query_id in self.queries

    def __len__(self) -> int:
        return len(self.queries)

    def _ids_with(self, status: QueryStatus) -> List[str]:
        return [qid for qid, s in self.status.items() if s == status]

    @property
    def active(self) -> List[str]:
        return self._ids_with(QueryStatus.ACTIVE)

    @property
    def rejected(self) -> List[str]:
        return self._ids_with(QueryStatus.REJECTED)

    @property
    def pending(self) -> List[str]:
        return self._ids_with(QueryStatus.PENDING)

    def is_first_activation(self, query_id: str) -> bool:
        return query_id not in self.ever_active

    def add_pending(self, query: QuerySpec) -> None:
        if query.id in self.queries:
            raise ConfigurationError(f"Query '{query.id}' was already submitted.")
        self.queries[query.id] = query
        self.status[query.id] = QueryStatus.PENDING
        self.assignment[query.id] = None

    def replace_pending(self, query: QuerySpec) -> None:
        if self.status.get(query.id) != QueryStatus.PENDING:
            raise ConfigurationError(f"Query '{query.id}' is not pending.")
        self.queries[query.id] = query

    def _expect(self, query_id: str, *allowed: QueryStatus) -> None:
        current = self.status.get(query_id)
        if current not in allowed:
            raise InvariantViolation(
                f"Illegal transition from {current} (expected one of {[s.value for s in allowed]})",
                query_id=query_id,
            )

    def activate(self, query_id: str, k: int, charge: float) -> float:
        """Move a pending or rejected query into Active on resource ``k``; returns the profit delta."""
        self._expect(query_id, QueryStatus.PENDING, QueryStatus.REJECTED)
        query = self.queries[query_id]
        cost = query.assignment_cost[k]
        if cost is None:
            raise InvariantViolation("Activation with an unrevealed cost", query_id=query_id)
        delta = query.value - cost
        if self.is_first_activation(query_id):
            delta -= query.activation_cost
            self.ever_active.add(query_id)
        self.status[query_id] = QueryStatus.ACTIVE
        self.assignment[query_id] = k
        self.charges[query_id] = charge
        self.profit += delta
        return delta

    def reject(self, query_id: str) -> None:
        self._expect(query_id, QueryStatus.PENDING)
        self.status[query_id] = QueryStatus.REJECTED

    def migrate(self, query_id: str, k_to: int, charge: float) -> float:
        """Point an active query at ``k_to``; returns the profit delta."""
        self._expect(query_id, QueryStatus.ACTIVE)
        query = self.queries[query_id]
        k_from = self.assignment[query_id]
        if k_from is None:
            raise InvariantViolation("Active query without a resource", query_id=query_id)
        old_cost = query.assignment_cost[k_from]
        new_cost = query.assignment_cost[k_to]
        if old_cost is None or new_cost is None:
            raise InvariantViolation("Migration with an unrevealed cost", query_id=query_id)
        delta = old_cost - new_cost
        self.assignment[query_id] = k_to
        self.charges[query_id] = charge
        self.profit += delta
        return delta

    def withdraw(self, query_id: str) -> Tuple[int, float, float]:
        """Take an active query out of consideration. Returns (resource index, freed charge, profit delta)."""
        if self.status.get(query_id) != QueryStatus.ACTIVE:
            raise ConfigurationError(f"Only active queries can be withdrawn; '{query_id}' is {self.status.get(query_id)}.")
        query = self.queries[query_id]
        k = self.assignment[query_id]
        if k is None:
            raise InvariantViolation("Active query without a resource", query_id=query_id)
        cost = query.assignment_cost[k]
        if cost is None:
            raise InvariantViolation("Active query with an unrevealed cost", query_id=query_id)
        # activation cost already paid stays paid
        delta = -(query.value - cost)
        freed = self.charges.pop(query_id)
        self.status[query_id] = QueryStatus.REJECTED
        self.assignment[query_id] = None
        self.withdrawn.add(query_id)
        self.profit += delta
        return k, freed, delta

    def check_partition(self, price_state: PriceState) -> None:
        """Validate the partition, the assignment map and the per-resource sums."""
        if set(self.status) != set(self.queries) or set(self.assignment) != set(self.queries):
            raise InvariantViolation("Partition does not cover the known query set")
        totals = np.zeros(len(price_state), dtype=float)
        for qid, st in self.status.items():
            k = self.assignment[qid]
            if (st == QueryStatus.ACTIVE) != (k is not None):
                raise InvariantViolation(f"Assignment inconsistent with status {st.value}", query_id=qid)
            if (st == QueryStatus.ACTIVE) != (qid in self.charges):
                raise InvariantViolation("Charge bookkeeping inconsistent with status", query_id=qid)
            if k is not None:
                totals[k] += self.charges[qid]
        drift = np.nonzero(np.abs(totals - price_state.consumed) > 1e-6)[0]
        if drift.size:
            k = int(drift[0])
            raise InvariantViolation(
                f"Consumed {price_state.consumed[k]:.6g} does not match active charges {totals[k]:.6g}",
                resource_id=price_state.resource_ids[k],
            )


def check_invariants(price_state: PriceState, ledger: AllocationLedger) -> None:
    price_state.check_budgets()
    ledger.check_partition(price_state)


__all__ = ["PriceState", "AllocationLedger", "check_invariants", "BUDGET_TOLERANCE"]
