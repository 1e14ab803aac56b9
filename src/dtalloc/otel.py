from __future__ import annotations

from opentelemetry import trace
from opentelemetry.trace import Tracer

# No-op unless the host installs an SDK tracer provider
tracer: Tracer = trace.get_tracer("dtalloc")

__all__ = ["tracer"]
