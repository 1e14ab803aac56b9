from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest

from dtalloc.errors import ConfigurationError
from dtalloc.loader import iter_queries_csv, load_instance, load_queries_csv

INSTANCE = {
    "resources": [{"id": 0, "budget": 10}, {"id": 1, "budget": 4.5}],
    "queries": [
        {"id": "a", "value": 8, "assignmentCost": [5, 2], "activationCost": 1},
        {"id": "b", "value": 3, "assignment_cost": [None, 1.5]},
    ],
}


# --- JSON instances ---
def test_load_instance_json(tmp_path: Path) -> None:
    path = tmp_path / "instance.json"
    path.write_text(json.dumps(INSTANCE), encoding="utf-8")
    instance = load_instance(path)
    assert [r.budget for r in instance.resources] == [10.0, 4.5]
    assert instance.queries[0].activation_cost == 1.0
    assert instance.queries[1].assignment_cost == [None, 1.5]


def test_load_instance_gzip(tmp_path: Path) -> None:
    path = tmp_path / "instance.json.gz"
    with gzip.open(path, "wt", encoding="utf-8") as f:
        json.dump(INSTANCE, f)
    assert len(load_instance(str(path)).queries) == 2


def test_load_instance_rejects_other_suffix(tmp_path: Path) -> None:
    path = tmp_path / "instance.yaml"
    path.write_text("resources: []", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Unsupported instance file"):
        load_instance(path)


def test_load_instance_invalid_content(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"resources": [{"id": 0, "budget": -1}], "queries": []}), encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid instance file"):
        load_instance(path)


# --- CSV queries ---
def test_load_queries_csv_with_header_variants(tmp_path: Path) -> None:
    path = tmp_path / "queries.csv"
    path.write_text(
        "query_id,bid,activationCost,cost_0,cost_1\n"
        "a,8,1,5,2\n"
        "\n"
        "b,3,,,1.5\n",
        encoding="utf-8",
    )
    queries = load_queries_csv(path)
    assert [q.id for q in queries] == ["a", "b"]
    assert queries[0].value == 8.0
    assert queries[0].activation_cost == 1.0
    assert queries[0].assignment_cost == [5.0, 2.0]
    assert queries[1].activation_cost == 0.0
    assert queries[1].assignment_cost == [None, 1.5]


def test_load_queries_csv_gzip_and_bracket_columns(tmp_path: Path) -> None:
    path = tmp_path / "queries.csv.gz"
    with gzip.open(path, "wt", encoding="utf-8", newline="") as f:
        f.write("id,value,cost[1],cost[0]\nq,4,3,2\n")
    (query,) = load_queries_csv(path)
    assert query.assignment_cost == [2.0, 3.0]


def test_empty_csv_yields_nothing(tmp_path: Path) -> None:
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    assert list(iter_queries_csv(path)) == []


@pytest.mark.parametrize("content, match", [
    ("name,value,cost_0\nq,1,1\n", "Mandatory columns"),
    ("id,value\nq,1\n", "No cost columns"),
    ("id,value,cost_0,cost_2\nq,1,1,1\n", "must cover resources"),
    ("id,value,cost_0\nq,abc,1\n", "Line 2: field 'value'"),
    ("id,value,cost_0\nq,1,1\nr,,1\n", "Line 3: field 'value' is empty"),
    ("id,value,cost_0\nq,-4,1\n", "Line 2: invalid query"),
])
def test_malformed_csv(tmp_path: Path, content: str, match: str) -> None:
    path = tmp_path / "bad.csv"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError, match=match):
        load_queries_csv(path)


def test_csv_rejects_other_suffix(tmp_path: Path) -> None:
    path = tmp_path / "queries.tsv"
    path.write_text("id\tvalue\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Unsupported query file"):
        load_queries_csv(path)
