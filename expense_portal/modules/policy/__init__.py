"""Spending policy caps and the pure item evaluator."""

from expense_portal.modules.policy.engine import cap_active, current_fiscal_year, evaluate_item
from expense_portal.modules.policy.models import PolicyCap, PolicyEvaluation
from expense_portal.modules.policy.service import PolicyCapService

__all__ = [
    "PolicyCap",
    "PolicyCapService",
    "PolicyEvaluation",
    "cap_active",
    "current_fiscal_year",
    "evaluate_item",
]
