"""Usage accounting against subscription plan limits."""

from .accountant import UsageAccountant, billing_period_start, percentages
from .plans import UNLIMITED, Plan, PlanCatalog, usage_percentage

__all__ = [
    "UNLIMITED",
    "Plan",
    "PlanCatalog",
    "UsageAccountant",
    "billing_period_start",
    "percentages",
    "usage_percentage",
]
