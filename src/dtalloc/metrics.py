from __future__ import annotations

from typing import Dict, List, Optional, Union

from prometheus_client import CollectorRegistry, Counter, Gauge, REGISTRY as DEFAULT_REGISTRY

from .schemas import Mode, RoundReport

_DECISIONS = "dtalloc_decisions_total"
_REVISIONS = "dtalloc_revisions_total"
_ROUNDS = "dtalloc_rounds_total"
_INVARIANT_VIOLATIONS = "dtalloc_invariant_violations_total"
_UTILIZATION = "dtalloc_resource_utilization"
_DUAL_PRICE = "dtalloc_dual_price"

Metric = Union[Counter, Gauge]

# Metrics are singletons per registry
_metrics: Dict[CollectorRegistry, Dict[str, Metric]] = {}


def _get_or_create(kind: type, name: str, labels: List[str], help_text: str, registry: CollectorRegistry) -> Metric:
    if registry not in _metrics:
        _metrics[registry] = {}
    metric = _metrics[registry].get(name)
    if metric is None:
        metric = kind(name, help_text, labels, registry=registry)
        _metrics[registry][name] = metric
    if not isinstance(metric, kind):
        raise TypeError(f"Metric {name} in registry is not a {kind.__name__}")
    return metric


def _registry(registry: Optional[CollectorRegistry]) -> CollectorRegistry:
    return registry if registry is not None else DEFAULT_REGISTRY


def increment_invariant_violation(*, registry: Optional[CollectorRegistry] = None) -> None:
    c = _get_or_create(Counter, _INVARIANT_VIOLATIONS, [], "Rounds aborted by an invariant violation", _registry(registry))
    c.inc()


def export_round(report: RoundReport, *, registry: Optional[CollectorRegistry] = None) -> None:
    """Publish one committed round to Prometheus."""
    reg = _registry(registry)
    decisions = _get_or_create(Counter, _DECISIONS, ["outcome"], "Allocation decisions by outcome", reg)
    revisions = _get_or_create(Counter, _REVISIONS, ["strategy"], "Revisions applied by strategy", reg)
    rounds = _get_or_create(Counter, _ROUNDS, ["mode"], "Completed rounds by mode", reg)
    utilization = _get_or_create(Gauge, _UTILIZATION, ["resource"], "consumed / budget per resource", reg)
    prices = _get_or_create(Gauge, _DUAL_PRICE, ["resource"], "Dual price per resource", reg)

    for decision in report.decisions:
        decisions.labels(outcome=decision.outcome.value).inc()
    if report.promotions:
        revisions.labels(strategy="reactivation").inc(report.promotions)
    if report.migrations:
        revisions.labels(strategy="reassignment").inc(report.migrations)
    rounds.labels(mode=Mode(report.mode).value).inc()
    for rid, ratio in report.utilization.items():
        utilization.labels(resource=str(rid)).set(ratio)
    for rid, phi in report.prices.items():
        prices.labels(resource=str(rid)).set(phi)


__all__ = ["export_round", "increment_invariant_violation"]
