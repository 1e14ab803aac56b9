from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .batch import ablate_instance, ablation_frame, run_instance, summarize, trace_frame
from .config import EngineSettings
from .errors import AllocationError
from .loader import load_instance, load_queries_csv
from .schemas import Mode, ProblemInstance, ResourceSpec

log = logging.getLogger(__name__)


def _build_instance(args: argparse.Namespace) -> ProblemInstance:
    if args.instance is not None:
        return load_instance(args.instance)
    if not args.budgets:
        raise SystemExit("--budgets is required together with --queries")
    resources = [ResourceSpec(id=j, budget=b) for j, b in enumerate(args.budgets)]
    return ProblemInstance(resources=resources, queries=load_queries_csv(args.queries))


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Run the online allocation engine over an instance.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--instance", type=Path, help="JSON instance with 'resources' and 'queries'.")
    source.add_argument("--queries", type=Path, help="CSV file of queries (id,value,activation_cost,cost_<j>...).")
    parser.add_argument("--budgets", type=float, nargs="+", help="Resource budgets, used with --queries.")
    parser.add_argument(
        "--mode",
        type=Mode,
        choices=list(Mode),
        default=None,
        help="Revision strategies to run each round (default from DTALLOC_MODE).",
    )
    parser.add_argument("--out", type=Path, help="Write the JSON result (or the ablation summaries) here instead of stdout.")
    parser.add_argument("--trace-csv", type=Path, help="Write the per-round trace as CSV.")
    parser.add_argument("--ablation", action="store_true", help="Run every mode and print a comparison table.")
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings.from_env()
        instance = _build_instance(args)
        if args.ablation:
            results = ablate_instance(instance, settings.params, revision_budget=settings.revision_budget)
            print(ablation_frame(results).to_string())
            if args.out is not None:
                summaries = {m.value: summarize(r).model_dump(mode="json") for m, r in results.items()}
                args.out.write_text(json.dumps(summaries, indent=2), encoding="utf-8")
                log.info("Wrote ablation summaries to %s", args.out)
            return 0

        result = run_instance(
            instance,
            args.mode if args.mode is not None else settings.mode,
            settings.params,
            revision_budget=settings.revision_budget,
        )
    except (AllocationError, ValidationError) as exc:
        log.error("Run failed: %s", exc)
        return 1

    summary = summarize(result)
    log.info(
        "Mode %s: welfare %.4f over %d rounds (converged=%s)",
        summary.mode.value,
        summary.social_welfare,
        summary.rounds,
        summary.converged,
    )

    payload = result.model_dump(mode="json", exclude={"reports"})
    payload["summary"] = summary.model_dump(mode="json")
    if args.out is not None:
        args.out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        log.info("Wrote run result to %s", args.out)
    else:
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")

    if args.trace_csv is not None:
        trace_frame(result.reports).to_csv(args.trace_csv)
        log.info("Wrote round trace to %s", args.trace_csv)
    return 0


if __name__ == "__main__":
    sys.exit(main())
