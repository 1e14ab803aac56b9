from __future__ import annotations

from .runner import run, run_instance, run_ablation, ablate_instance
from .metrics import RunSummary, trace_frame, summarize, ablation_frame

__all__ = [
    "run",
    "run_instance",
    "run_ablation",
    "ablate_instance",
    "RunSummary",
    "trace_frame",
    "summarize",
    "ablation_frame",
]
