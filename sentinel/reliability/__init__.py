"""Rolling-window reliability scores."""

from .slo_engine import SLOEngine

__all__ = ["SLOEngine"]
