from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from dtalloc.schemas import Mode, RoundReport, RunResult


class RunSummary(BaseModel):
    """Headline figures of a batch run."""
    mode: Mode
    social_welfare: float = Field(description="Accumulated profit of the active queries.")
    acceptance_ratio: Optional[float] = Field(default=None, ge=0, le=1, description="Active queries over known queries.")
    mean_utilization: Optional[float] = None
    peak_utilization: Optional[float] = None
    final_deficit: Optional[float] = None
    converged: bool
    rounds: int

    model_config = ConfigDict(frozen=True)


def trace_frame(reports: Sequence[RoundReport]) -> pd.DataFrame:
    """
    One row per round: profit, profit delta, deficit, revision counts and
    one ``util_<resource>`` / ``price_<resource>`` column per resource.
    """
    rows: List[Dict[str, float]] = []
    for r in reports:
        row: Dict[str, float] = {
            "round": r.round_index,
            "profit": r.profit,
            "profit_delta": r.profit_delta,
            "deficit": r.deficit,
            "promotions": r.promotions,
            "migrations": r.migrations,
            "pending": r.pending,
        }
        for rid, ratio in sorted(r.utilization.items()):
            row[f"util_{rid}"] = ratio
        for rid, phi in sorted(r.prices.items()):
            row[f"price_{rid}"] = phi
        rows.append(row)
    frame = pd.DataFrame(rows)
    if not frame.empty:
        frame = frame.set_index("round")
    return frame


def summarize(result: RunResult) -> RunSummary:
    known = sum(len(ids) for ids in result.partitions.values())
    acceptance = len(result.partitions.get("active", [])) / known if known else None

    mean_util: Optional[float] = None
    peak_util: Optional[float] = None
    if result.utilization_trace:
        final = np.asarray(result.utilization_trace[-1], dtype=float)
        mean_util = float(final.mean())
        peak_util = float(np.asarray(result.utilization_trace, dtype=float).max())

    return RunSummary(
        mode=result.mode,
        social_welfare=result.profit,
        acceptance_ratio=acceptance,
        mean_utilization=mean_util,
        peak_utilization=peak_util,
        final_deficit=result.deficit_trace[-1] if result.deficit_trace else None,
        converged=result.converged,
        rounds=result.rounds,
    )


def ablation_frame(results: Mapping[Mode, RunResult]) -> pd.DataFrame:
    """Summaries of an ablation run indexed by mode."""
    frame = pd.DataFrame([summarize(res).model_dump() for res in results.values()])
    if frame.empty:
        return frame
    frame["mode"] = [Mode(m).value for m in frame["mode"]]
    return frame.set_index("mode")


__all__ = ["RunSummary", "trace_frame", "summarize", "ablation_frame"]
