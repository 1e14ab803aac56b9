from __future__ import annotations

import csv
import gzip
import logging
import re
from pathlib import Path
from typing import Any, Dict, IO, Iterator, List, Optional, Union, cast

from pydantic import ValidationError

from dtalloc.errors import ConfigurationError
from dtalloc.schemas import ProblemInstance, QuerySpec

log = logging.getLogger(__name__)

EXPECTED_COLUMNS = {
    "id": ["id", "ID", "query_id", "queryId", "query"],
    "value": ["value", "Value", "VALUE", "bid", "v"],
    "activation_cost": ["activation_cost", "activationCost", "activation", "a"],
}
# cost_0, cost_1, ... or cost[0], cost[1], ...
_COST_COLUMN = re.compile(r"^(?:cost|assignment_cost|c)[_\[]?(\d+)\]?$", re.IGNORECASE)


def _open_text(file_path: Path) -> IO[str]:
    if file_path.name.endswith(".gz"):
        return cast(IO[str], gzip.open(file_path, "rt", encoding="utf-8", newline=""))
    return open(file_path, "r", encoding="utf-8", newline="")


def load_instance(file_path_input: Union[str, Path]) -> ProblemInstance:
    """Load resources and queries from a ``.json`` or ``.json.gz`` instance file."""
    file_path = Path(file_path_input).expanduser().resolve()
    actual_filename = file_path.name.replace(".gz", "")
    if not actual_filename.endswith(".json"):
        raise ConfigurationError(f"Unsupported instance file: {file_path}. Supported: .json, .json.gz")
    with _open_text(file_path) as f:
        raw = f.read()
    try:
        instance = ProblemInstance.model_validate_json(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid instance file {file_path}: {exc}") from exc
    log.info("Loaded %d resources and %d queries from %s", len(instance.resources), len(instance.queries), file_path)
    return instance


def _map_headers(header_row: List[str]) -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for header in header_row:
        for canonical, variants in EXPECTED_COLUMNS.items():
            if header.strip() in variants and canonical not in mapping.values():
                mapping[header] = canonical
                break
    missing = {"id", "value"} - set(mapping.values())
    if missing:
        raise ConfigurationError(f"Mandatory columns {sorted(missing)} not found in headers {header_row}.")
    return mapping


def _cost_columns(header_row: List[str]) -> Dict[int, str]:
    columns: Dict[int, str] = {}
    for header in header_row:
        m = _COST_COLUMN.match(header.strip())
        if m:
            columns[int(m.group(1))] = header
    if not columns:
        raise ConfigurationError(f"No cost columns (cost_<resource>) found in headers {header_row}.")
    if sorted(columns) != list(range(len(columns))):
        raise ConfigurationError(f"Cost columns must cover resources 0..{len(columns) - 1}, got {sorted(columns)}.")
    return columns


def _parse_float(raw: Optional[str], field: str, line_no: int, optional: bool = False) -> Optional[float]:
    if raw is None or not raw.strip():
        if optional:
            return None
        raise ConfigurationError(f"Line {line_no}: field '{field}' is empty.")
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Line {line_no}: field '{field}' value {raw!r} is not a number.") from exc


def iter_queries_csv(file_path_input: Union[str, Path]) -> Iterator[QuerySpec]:
    """
    Yield queries from a ``.csv``/``.csv.gz`` file with ``id``, ``value``,
    optional ``activation_cost`` and one ``cost_<resource>`` column per resource.
    An empty cost cell is a cost not yet revealed.
    """
    file_path = Path(file_path_input).expanduser().resolve()
    if not file_path.name.replace(".gz", "").endswith(".csv"):
        raise ConfigurationError(f"Unsupported query file: {file_path}. Supported: .csv, .csv.gz")

    with _open_text(file_path) as f:
        reader = csv.reader(f)
        try:
            header_row = next(reader)
        except StopIteration:
            return
        mapping = _map_headers(header_row)
        cost_columns = _cost_columns(header_row)
        positions = {h: i for i, h in enumerate(header_row)}

        for line_no, row in enumerate(reader, start=2):
            if not row or all(not cell.strip() for cell in row):
                continue
            cells: Dict[str, Any] = {}
            for header, canonical in mapping.items():
                idx = positions[header]
                cells[canonical] = row[idx] if idx < len(row) else None
            costs = []
            for j in sorted(cost_columns):
                idx = positions[cost_columns[j]]
                costs.append(_parse_float(row[idx] if idx < len(row) else None, cost_columns[j], line_no, optional=True))
            try:
                yield QuerySpec(
                    id=str(cells["id"]).strip(),
                    value=_parse_float(cells["value"], "value", line_no),
                    assignment_cost=costs,
                    activation_cost=_parse_float(cells.get("activation_cost"), "activation_cost", line_no, optional=True) or 0.0,
                )
            except ValidationError as exc:
                raise ConfigurationError(f"Line {line_no}: invalid query: {exc}") from exc


def load_queries_csv(file_path_input: Union[str, Path]) -> List[QuerySpec]:
    return list(iter_queries_csv(file_path_input))


__all__ = ["load_instance", "iter_queries_csv", "load_queries_csv", "EXPECTED_COLUMNS"]
