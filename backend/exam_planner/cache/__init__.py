"""In-memory caches shared across planner services."""

from .plan_cache import PlanCache

__all__ = ["PlanCache"]
