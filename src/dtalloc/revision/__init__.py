from __future__ import annotations

from .reactivation import reactivate
from .reassignment import reassign
from .result import RevisionResult

__all__ = [
    "reactivate",
    "reassign",
    "RevisionResult",
]
