from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .errors import ConfigurationError
from .schemas import Mode, PriceUpdateParams

_PARAM_ENV: Dict[str, tuple[str, Callable[[str], Any]]] = {
    "epsilon": ("DTALLOC_EPSILON", float),
    "delta": ("DTALLOC_DELTA", float),
    "high_utilization_threshold": ("DTALLOC_UTILIZATION_THRESHOLD", float),
    "initial_price": ("DTALLOC_INITIAL_PRICE", float),
    "max_iterations": ("DTALLOC_MAX_ITERATIONS", int),
    "convergence_tolerance": ("DTALLOC_TOLERANCE", float),
    "max_revision_steps": ("DTALLOC_MAX_REVISION_STEPS", int),
}


@dataclass
class EngineSettings:
    """Runtime settings for an engine run, usually read from the environment."""

    params: PriceUpdateParams
    mode: Mode = Mode.BOTH
    revision_budget: Optional[float] = None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for field_name, (var, parse) in _PARAM_ENV.items():
            raw = env.get(var)
            if raw is None or not raw.strip():
                continue
            try:
                overrides[field_name] = parse(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{var}={raw!r} is not a valid {parse.__name__}") from exc
        try:
            params = PriceUpdateParams(**overrides)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid price update parameters: {exc}") from exc

        raw_mode = env.get("DTALLOC_MODE", Mode.BOTH.value)
        try:
            mode = Mode(raw_mode.strip().lower())
        except ValueError as exc:
            raise ConfigurationError(f"DTALLOC_MODE={raw_mode!r} is not one of {[m.value for m in Mode]}") from exc

        raw_budget = env.get("DTALLOC_REVISION_BUDGET")
        revision_budget: Optional[float] = None
        if raw_budget is not None and raw_budget.strip():
            try:
                revision_budget = float(raw_budget)
            except ValueError as exc:
                raise ConfigurationError(f"DTALLOC_REVISION_BUDGET={raw_budget!r} is not a number") from exc
            if revision_budget < 0:
                raise ConfigurationError("DTALLOC_REVISION_BUDGET must be non-negative")

        return cls(params=params, mode=mode, revision_budget=revision_budget)


__all__ = ["EngineSettings"]
