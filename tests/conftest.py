"""
tests/conftest.py
───────────────────────────────────────────────────────────────────────────────
 Pytest bootstrap for the dtalloc test-suite.

 • Adds the project's *src/* directory to ``sys.path`` (idempotent).
 • Registers a Hypothesis "ci" profile without deadlines; the engine runs
   whole rounds per example and timing varies between machines.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict, Optional

import pytest
from hypothesis import settings
from prometheus_client import CollectorRegistry

settings.register_profile("ci", deadline=None)
settings.load_profile("ci")

# ──────────────────────────────────────────────────────────────────────────────
# ensure  src/  is importable before site-packages
# ──────────────────────────────────────────────────────────────────────────────
SRC_DIR = (Path(__file__).resolve().parent.parent / "src").resolve()
SRC_STR = str(SRC_DIR)

if SRC_STR in sys.path:
    sys.path.remove(SRC_STR)
sys.path.insert(0, SRC_STR)


@pytest.fixture
def registry() -> CollectorRegistry:
    """Fresh Prometheus registry so counter assertions never leak across tests."""
    return CollectorRegistry()


@pytest.fixture
def get_metric_value() -> Callable[..., Optional[float]]:
    def _get(registry: CollectorRegistry, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        return registry.get_sample_value(name, labels or {})

    return _get

