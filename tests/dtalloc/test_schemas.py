from __future__ import annotations

import math

import pytest
from pydantic import TypeAdapter, ValidationError

from dtalloc.schemas import (
    Decision,
    Mode,
    Outcome,
    PriceUpdateParams,
    ProblemInstance,
    QuerySpec,
    ResourceSpec,
)


# --- ResourceSpec ---
def test_resource_spec_valid() -> None:
    r = ResourceSpec(id=3, budget=10)
    assert r.id == 3
    assert r.budget == 10.0


@pytest.mark.parametrize("payload, match", [
    ({"id": 0, "budget": -1.0}, "greater than or equal to 0"),
    ({"id": -1, "budget": 1.0}, "greater than or equal to 0"),
    ({"id": 0, "budget": math.inf}, "finite number"),
    ({"id": "0", "budget": 1.0}, "valid integer"),
    ({"id": 0, "budget": 1.0, "name": "x"}, "Extra inputs are not permitted"),
])
def test_resource_spec_invalid(payload: dict, match: str) -> None:
    with pytest.raises(ValidationError, match=match):
        ResourceSpec.model_validate(payload)


def test_resource_spec_is_frozen() -> None:
    r = ResourceSpec(id=0, budget=1.0)
    with pytest.raises(ValidationError):
        r.budget = 2.0  # type: ignore[misc]


# --- QuerySpec ---
def test_query_spec_accepts_alias_and_field_names() -> None:
    by_alias = QuerySpec.model_validate(
        {"id": "q1", "value": 8.0, "assignmentCost": [5.0], "activationCost": 1.0}
    )
    by_name = QuerySpec.model_validate(
        {"id": "q1", "value": 8.0, "assignment_cost": [5.0], "activation_cost": 1.0}
    )
    assert by_alias == by_name
    dumped = by_alias.model_dump(by_alias=True)
    assert dumped["assignmentCost"] == [5.0]
    assert dumped["activationCost"] == 1.0


def test_query_spec_activation_cost_defaults_to_zero() -> None:
    q = QuerySpec(id="q", value=1.0, assignment_cost=[0.5, 0.5])
    assert q.activation_cost == 0.0


def test_query_spec_fully_revealed() -> None:
    assert QuerySpec(id="q", value=1.0, assignment_cost=[1.0, 2.0]).fully_revealed
    assert not QuerySpec(id="q", value=1.0, assignment_cost=[1.0, None]).fully_revealed


@pytest.mark.parametrize("payload, match", [
    ({"id": "q", "value": -1.0, "assignment_cost": [1.0]}, "greater than or equal to 0"),
    ({"id": "q", "value": 1.0, "assignment_cost": [-0.5]}, "greater than or equal to 0"),
    ({"id": "q", "value": 1.0, "assignment_cost": []}, "at least 1 item"),
    ({"id": "", "value": 1.0, "assignment_cost": [1.0]}, "at least 1 character"),
    ({"id": "q", "value": math.nan, "assignment_cost": [1.0]}, "finite number"),
    ({"id": "q", "value": "8", "assignment_cost": [1.0]}, "valid number"),
    ({"id": "q", "value": 1.0, "assignment_cost": [1.0], "activation_cost": -2.0}, "greater than or equal to 0"),
])
def test_query_spec_invalid(payload: dict, match: str) -> None:
    with pytest.raises(ValidationError, match=match):
        QuerySpec.model_validate(payload)


# --- PriceUpdateParams ---
def test_price_update_params_defaults() -> None:
    p = PriceUpdateParams()
    assert p.epsilon == pytest.approx(0.1)
    assert p.delta == pytest.approx(0.05)
    assert p.high_utilization_threshold == pytest.approx(0.8)
    assert p.initial_price == 0.0
    assert p.max_iterations == 50
    assert p.convergence_tolerance == pytest.approx(1e-6)
    assert p.max_revision_steps == 10_000


@pytest.mark.parametrize("field, value", [
    ("high_utilization_threshold", 1.5),
    ("high_utilization_threshold", 0.0),
    ("epsilon", -0.1),
    ("max_iterations", 0),
    ("max_revision_steps", 0),
])
def test_price_update_params_bounds(field: str, value: float) -> None:
    with pytest.raises(ValidationError):
        PriceUpdateParams(**{field: value})


# --- Enums / Decision / ProblemInstance ---
def test_mode_from_value() -> None:
    assert Mode("reactivate_only") is Mode.REACTIVATE_ONLY
    assert TypeAdapter(Mode).validate_python("both") is Mode.BOTH
    with pytest.raises(ValueError):
        Mode("sometimes")


def test_decision_json_round_trip() -> None:
    d = Decision(query_id="q", outcome=Outcome.REASSIGN, resource_id=1, previous_resource_id=0, reduced_profit=0.2)
    again = Decision.model_validate_json(d.model_dump_json())
    assert again == d
    assert again.outcome is Outcome.REASSIGN


def test_problem_instance_requires_a_resource() -> None:
    with pytest.raises(ValidationError, match="at least 1 item"):
        ProblemInstance(resources=[], queries=[])


def test_problem_instance_from_json_uses_aliases() -> None:
    raw = '{"resources": [{"id": 0, "budget": 10}], "queries": [{"id": "a", "value": 3, "assignmentCost": [null]}]}'
    inst = ProblemInstance.model_validate_json(raw)
    assert inst.resources[0].budget == 10.0
    assert inst.queries[0].assignment_cost == [None]
    assert not inst.queries[0].fully_revealed
