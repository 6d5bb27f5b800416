"""Exact budget composition helpers."""
from .budget_scheduler import BOUNDS_STAGE, REFERENCE_STAGES, STAGES, BudgetScheduler

__all__ = ["BudgetScheduler", "STAGES", "BOUNDS_STAGE", "REFERENCE_STAGES"]
