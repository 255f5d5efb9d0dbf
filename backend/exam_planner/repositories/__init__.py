"""SQL repositories for planner aggregates."""

from .plans import PlanRepository, plan_repository

__all__ = ["PlanRepository", "plan_repository"]
