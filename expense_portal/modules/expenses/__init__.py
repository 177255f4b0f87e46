"""Expense reports, line items and receipts."""

from expense_portal.modules.expenses.models import (
    CreateExpenseItem,
    CreateReceiptReference,
    CreateReportRequest,
    ExpenseCategory,
    ExpenseItem,
    ExpenseReport,
    Receipt,
    ReportStatus,
)
from expense_portal.modules.expenses.service import ExpenseService, aggregate_policy_evaluation

__all__ = [
    "CreateExpenseItem",
    "CreateReceiptReference",
    "CreateReportRequest",
    "ExpenseCategory",
    "ExpenseItem",
    "ExpenseReport",
    "ExpenseService",
    "Receipt",
    "ReportStatus",
    "aggregate_policy_evaluation",
]
