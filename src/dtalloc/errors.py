from __future__ import annotations

from typing import Any, Optional


class AllocationError(Exception):
    """Base class for every error raised by the allocation engine."""


class ConfigurationError(AllocationError, ValueError):
    """Malformed resource, query or parameter input."""


class InvariantViolation(AllocationError):
    """
    A state update would break the budget or partition invariant.
    This is a defect in the engine, never a recoverable runtime condition.
    """

    def __init__(
        self,
        message: str,
        *,
        resource_id: Optional[int] = None,
        query_id: Optional[str] = None,
    ) -> None:
        details = []
        if resource_id is not None:
            details.append(f"resource={resource_id}")
        if query_id is not None:
            details.append(f"query={query_id}")
        suffix = f" ({', '.join(details)})" if details else ""
        super().__init__(f"{message}{suffix}")
        self.resource_id = resource_id
        self.query_id = query_id


class NonConvergenceError(AllocationError):
    """Dual prices did not settle within the configured iteration cap."""

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class ConcurrentRoundError(AllocationError, RuntimeError):
    """run_round was entered while another round was in progress."""


__all__ = [
    "AllocationError",
    "ConfigurationError",
    "InvariantViolation",
    "NonConvergenceError",
    "ConcurrentRoundError",
]
