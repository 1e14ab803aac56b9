from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from prometheus_client import CollectorRegistry

from dtalloc.engine import AllocationEngine, configure
from dtalloc.errors import ConfigurationError, NonConvergenceError
from dtalloc.schemas import Mode, PriceUpdateParams, ProblemInstance, RoundReport, RunResult

log = logging.getLogger(__name__)

ArrayLike = Union[Sequence[float], np.ndarray]


def _as_vector(name: str, data: ArrayLike) -> np.ndarray:
    arr = np.asarray(data, dtype=float)
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be one-dimensional, got shape {arr.shape}.")
    return arr


def _collect(
    engine: AllocationEngine,
    mode: Mode,
    query_ids: List[str],
    converged: bool,
) -> RunResult:
    snapshot = engine.inspect()
    index_of = {qid: i for i, qid in enumerate(query_ids)}
    reports: List[RoundReport] = list(engine.trace)
    rids = engine.resource_ids
    return RunResult(
        mode=mode,
        assignment=[snapshot.assignment.get(qid) for qid in query_ids],
        duals=[snapshot.prices[rid] for rid in rids],
        partitions={
            "active": [index_of[q] for q in snapshot.active],
            "rejected": [index_of[q] for q in snapshot.rejected],
            "pending": [index_of[q] for q in snapshot.pending],
        },
        profit=snapshot.profit,
        utilization_trace=[[r.utilization[rid] for rid in rids] for r in reports],
        deficit_trace=[r.deficit for r in reports],
        converged=converged,
        rounds=len(reports),
        reports=reports,
    )


def run(
    values: ArrayLike,
    cost_matrix: Union[Sequence[Sequence[float]], np.ndarray],
    activation_costs: ArrayLike,
    budgets: ArrayLike,
    mode: Union[Mode, str] = Mode.BOTH,
    params: Optional[PriceUpdateParams] = None,
    *,
    revision_budget: Optional[float] = None,
    registry: Optional[CollectorRegistry] = None,
    raise_on_nonconvergence: bool = False,
) -> RunResult:
    """
    Drive an engine over a whole instance.

    Online modes reveal one query per round, in index order, then keep running
    rounds with no arrivals until the price deficit drops to
    ``params.convergence_tolerance`` or ``params.max_iterations`` settling rounds
    have run. OFFLINE submits everything and runs a single round.
    ``NaN`` entries in ``cost_matrix`` are costs not yet revealed.

    Args:
        values: Value per query.
        cost_matrix: Assignment cost, shape (queries, resources).
        activation_costs: One-time activation cost per query.
        budgets: Budget per resource; resource ids are the column indices.
        mode: Which revision strategies run each round.

    Returns:
        A RunResult; ``converged`` is False when the iteration cap was hit.
    """
    mode = Mode(mode)
    params = params if params is not None else PriceUpdateParams()
    vals = _as_vector("values", values)
    acts = _as_vector("activation_costs", activation_costs)
    caps = _as_vector("budgets", budgets)
    costs = np.asarray(cost_matrix, dtype=float)
    if costs.size == 0:
        costs = costs.reshape(len(vals), len(caps))
    if costs.ndim != 2:
        raise ConfigurationError(f"cost_matrix must be two-dimensional, got shape {costs.shape}.")
    if costs.shape != (len(vals), len(caps)):
        raise ConfigurationError(
            f"cost_matrix shape {costs.shape} does not match {len(vals)} queries x {len(caps)} resources."
        )
    if len(acts) != len(vals):
        raise ConfigurationError(f"Got {len(acts)} activation costs for {len(vals)} queries.")

    engine = configure(
        [{"id": j, "budget": float(b)} for j, b in enumerate(caps)],
        params,
        revision_budget=revision_budget,
        registry=registry,
    )
    query_ids = [str(i) for i in range(len(vals))]
    queries = [
        {
            "id": qid,
            "value": float(vals[i]),
            "assignment_cost": [None if math.isnan(c) else float(c) for c in costs[i]],
            "activation_cost": float(acts[i]),
        }
        for i, qid in enumerate(query_ids)
    ]

    if mode == Mode.OFFLINE:
        for q in queries:
            engine.submit(q)
        engine.run_round(mode)
        return _collect(engine, mode, query_ids, converged=True)

    for q in queries:
        engine.submit(q)
        engine.run_round(mode)

    settling = 0
    while engine.trace and engine.trace[-1].deficit > params.convergence_tolerance and settling < params.max_iterations:
        engine.run_round(mode)
        settling += 1

    converged = not engine.trace or engine.trace[-1].deficit <= params.convergence_tolerance
    result = _collect(engine, mode, query_ids, converged=converged)
    if not converged:
        msg = (
            f"Dual prices did not settle after {settling} extra rounds "
            f"(deficit {engine.trace[-1].deficit:.6g} > {params.convergence_tolerance:.6g})"
        )
        log.warning(msg)
        if raise_on_nonconvergence:
            raise NonConvergenceError(msg, result=result)
    return result


def _instance_arrays(instance: ProblemInstance) -> Tuple[List[float], np.ndarray, List[float], List[float]]:
    resources = sorted(instance.resources, key=lambda r: r.id)
    if not instance.queries:
        costs = np.zeros((0, len(resources)))
    else:
        costs = np.array(
            [[np.nan if c is None else c for c in q.assignment_cost] for q in instance.queries],
            dtype=float,
        )
    return (
        [q.value for q in instance.queries],
        costs,
        [q.activation_cost for q in instance.queries],
        [r.budget for r in resources],
    )


def run_instance(
    instance: ProblemInstance,
    mode: Union[Mode, str] = Mode.BOTH,
    params: Optional[PriceUpdateParams] = None,
    *,
    revision_budget: Optional[float] = None,
    registry: Optional[CollectorRegistry] = None,
    raise_on_nonconvergence: bool = False,
) -> RunResult:
    """
    run() over a loaded ProblemInstance. Query indices follow the instance
    order and resource ids in the result are positions in ascending id order.
    """
    values, costs, activation, budgets = _instance_arrays(instance)
    return run(
        values,
        costs,
        activation,
        budgets,
        mode,
        params,
        revision_budget=revision_budget,
        registry=registry,
        raise_on_nonconvergence=raise_on_nonconvergence,
    )


def run_ablation(
    values: ArrayLike,
    cost_matrix: Union[Sequence[Sequence[float]], np.ndarray],
    activation_costs: ArrayLike,
    budgets: ArrayLike,
    params: Optional[PriceUpdateParams] = None,
    modes: Iterable[Mode] = tuple(Mode),
    *,
    revision_budget: Optional[float] = None,
    registry: Optional[CollectorRegistry] = None,
    raise_on_nonconvergence: bool = False,
) -> Dict[Mode, RunResult]:
    """Run the same instance under every mode for comparison."""
    return {
        m: run(
            values,
            cost_matrix,
            activation_costs,
            budgets,
            m,
            params,
            revision_budget=revision_budget,
            registry=registry,
            raise_on_nonconvergence=raise_on_nonconvergence,
        )
        for m in modes
    }


def ablate_instance(
    instance: ProblemInstance,
    params: Optional[PriceUpdateParams] = None,
    modes: Iterable[Mode] = tuple(Mode),
    *,
    revision_budget: Optional[float] = None,
    registry: Optional[CollectorRegistry] = None,
    raise_on_nonconvergence: bool = False,
) -> Dict[Mode, RunResult]:
    """run_ablation() over a loaded ProblemInstance."""
    values, costs, activation, budgets = _instance_arrays(instance)
    return run_ablation(
        values,
        costs,
        activation,
        budgets,
        params,
        modes,
        revision_budget=revision_budget,
        registry=registry,
        raise_on_nonconvergence=raise_on_nonconvergence,
    )


__all__ = ["run", "run_instance", "run_ablation", "ablate_instance"]
