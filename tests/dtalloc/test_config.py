from __future__ import annotations

import pytest

from dtalloc.config import EngineSettings
from dtalloc.errors import ConfigurationError
from dtalloc.schemas import Mode


def test_defaults_from_empty_environment() -> None:
    settings = EngineSettings.from_env({})
    assert settings.mode is Mode.BOTH
    assert settings.revision_budget is None
    assert settings.params.epsilon == pytest.approx(0.1)
    assert settings.params.max_iterations == 50


def test_overrides_from_environment() -> None:
    settings = EngineSettings.from_env({
        "DTALLOC_EPSILON": "0.2",
        "DTALLOC_DELTA": "0.01",
        "DTALLOC_UTILIZATION_THRESHOLD": "0.9",
        "DTALLOC_MAX_ITERATIONS": "7",
        "DTALLOC_MAX_REVISION_STEPS": "3",
        "DTALLOC_MODE": " Reassign_Only ",
        "DTALLOC_REVISION_BUDGET": "12.5",
    })
    assert settings.params.epsilon == pytest.approx(0.2)
    assert settings.params.delta == pytest.approx(0.01)
    assert settings.params.high_utilization_threshold == pytest.approx(0.9)
    assert settings.params.max_iterations == 7
    assert settings.params.max_revision_steps == 3
    assert settings.mode is Mode.REASSIGN_ONLY
    assert settings.revision_budget == pytest.approx(12.5)


def test_blank_values_are_ignored() -> None:
    settings = EngineSettings.from_env({"DTALLOC_EPSILON": "  ", "DTALLOC_REVISION_BUDGET": ""})
    assert settings.params.epsilon == pytest.approx(0.1)
    assert settings.revision_budget is None


@pytest.mark.parametrize("env, match", [
    ({"DTALLOC_EPSILON": "abc"}, "DTALLOC_EPSILON"),
    ({"DTALLOC_MAX_ITERATIONS": "2.5"}, "DTALLOC_MAX_ITERATIONS"),
    ({"DTALLOC_UTILIZATION_THRESHOLD": "1.5"}, "Invalid price update parameters"),
    ({"DTALLOC_MODE": "sometimes"}, "DTALLOC_MODE"),
    ({"DTALLOC_REVISION_BUDGET": "-1"}, "non-negative"),
    ({"DTALLOC_REVISION_BUDGET": "lots"}, "not a number"),
])
def test_invalid_environment(env: dict, match: str) -> None:
    with pytest.raises(ConfigurationError, match=match):
        EngineSettings.from_env(env)


def test_reads_process_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DTALLOC_MODE", "offline")
    assert EngineSettings.from_env().mode is Mode.OFFLINE
