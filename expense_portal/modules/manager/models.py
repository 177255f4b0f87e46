"""Views returned by the manager review queue."""

from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from expense_portal.modules.expenses.models import ExpenseCategory


class QueueLineItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    report_id: str
    expense_date: dt.date
    category: ExpenseCategory
    description: Optional[str] = None
    amount_cents: int
    reimbursable: bool
    payment_method: Optional[str] = None
    is_policy_exception: bool = False


class PolicyFlag(BaseModel):
    """An item a reviewer marked as an approved policy exception."""

    item_id: str
    category: ExpenseCategory
    expense_date: dt.date
    description: Optional[str] = None


class QueueReport(BaseModel):
    id: str
    employee_id: str
    employee_hr_identifier: str
    reporting_period_start: dt.date
    reporting_period_end: dt.date
    total_amount_cents: int
    total_reimbursable_cents: int
    currency: str
    submitted_at: dt.datetime


class QueueEntry(BaseModel):
    report: QueueReport
    line_items: list[QueueLineItem] = Field(default_factory=list)
    policy_flags: list[PolicyFlag] = Field(default_factory=list)
