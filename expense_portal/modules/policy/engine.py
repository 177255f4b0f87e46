"""Pure policy rules for expense line items. No I/O happens here."""

from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional

from expense_portal.modules.expenses.models import ExpenseCategory
from expense_portal.modules.policy.models import PolicyEvaluation

FISCAL_YEAR_START_MONTH = 10


def format_cents(amount_cents: int) -> str:
    """Render integer cents as dollars, e.g. 5000 -> ``$50.00``."""
    return f"${amount_cents / 100:.2f}"


def cap_active(cap: Any, on: dt.date) -> bool:
    """A cap applies from ``active_from`` through ``active_to`` inclusive; no end means open."""
    return on >= cap.active_from and (cap.active_to is None or on <= cap.active_to)


def _category(value: Any) -> Optional[ExpenseCategory]:
    try:
        return ExpenseCategory(value)
    except ValueError:
        return None


def _active_caps(caps: Iterable[Any], category: ExpenseCategory, on: dt.date) -> list[Any]:
    return [cap for cap in caps if _category(cap.category) == category and cap_active(cap, on)]


def evaluate_item(item: Any, caps: Iterable[Any]) -> PolicyEvaluation:
    """Check one line item against the category caps.

    Meal items are checked against every active meal cap. Mileage items only
    against the first active mileage cap, since the amount is already the
    computed reimbursement. Other categories carry no rules yet.
    """
    category = _category(item.category)
    result = PolicyEvaluation.ok()

    if category == ExpenseCategory.MEAL:
        for cap in _active_caps(caps, ExpenseCategory.MEAL, item.expense_date):
            if item.amount_cents > cap.amount_cents:
                result = result.merge(PolicyEvaluation.with_violation(
                    f"Meal exceeds per-diem limit of {format_cents(cap.amount_cents)}"
                ))
    elif category == ExpenseCategory.MILEAGE:
        active = _active_caps(caps, ExpenseCategory.MILEAGE, item.expense_date)
        if active and item.amount_cents > active[0].amount_cents:
            result = PolicyEvaluation.with_violation(
                "Mileage exceeds configured reimbursement rate of "
                f"{format_cents(active[0].amount_cents)}"
            )

    return result


def current_fiscal_year(on: dt.date) -> tuple[int, int]:
    """Return (start_year, end_year) of the fiscal year that contains ``on``."""
    if on.month >= FISCAL_YEAR_START_MONTH:
        return on.year, on.year + 1
    return on.year - 1, on.year
