"""Database models and Pydantic schemas for expense reports."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text

from expense_portal.database import Base
from expense_portal.enums import LowercaseStrEnum


class ReportStatus(LowercaseStrEnum):
    """Lifecycle states of an expense report."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    MANAGER_APPROVED = "manager_approved"
    FINANCE_FINALIZED = "finance_finalized"
    NEEDS_CHANGES = "needs_changes"
    DENIED = "denied"


class ExpenseCategory(LowercaseStrEnum):
    """Categories an expense line item may be booked under."""

    AIRFARE = "airfare"
    LODGING = "lodging"
    MEAL = "meal"
    GROUND_TRANSPORT = "ground_transport"
    MILEAGE = "mileage"
    SUPPLIES = "supplies"
    OTHER = "other"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class ExpenseReport(Base):
    """SQLAlchemy model for an expense report aggregate root."""

    __tablename__ = "expense_reports"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    employee_id = Column(String(36), ForeignKey("employees.id"), nullable=False, index=True)
    reporting_period_start = Column(Date, nullable=False)
    reporting_period_end = Column(Date, nullable=False)
    status = Column(String(32), nullable=False, default=ReportStatus.DRAFT.value, index=True)
    total_amount_cents = Column(Integer, nullable=False, default=0)
    total_reimbursable_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ExpenseReport(id={self.id}, employee_id={self.employee_id}, "
            f"status={self.status}, version={self.version})>"
        )


class ExpenseItem(Base):
    """A single line item; owned by its report."""

    __tablename__ = "expense_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    report_id = Column(
        String(36), ForeignKey("expense_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expense_date = Column(Date, nullable=False)
    category = Column(String(32), nullable=False)
    gl_account_id = Column(String(36), nullable=True)
    description = Column(Text, nullable=True)
    attendees = Column(Text, nullable=True)
    location = Column(String(256), nullable=True)
    amount_cents = Column(Integer, nullable=False)
    reimbursable = Column(Boolean, nullable=False, default=True)
    payment_method = Column(String(64), nullable=True)
    is_policy_exception = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_expense_items_report_date", "report_id", "expense_date"),
    )


class Receipt(Base):
    """Receipt metadata; the bytes live in receipt storage under ``file_key``."""

    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    expense_item_id = Column(
        String(36), ForeignKey("expense_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_key = Column(String(512), nullable=False)
    file_name = Column(String(256), nullable=False)
    mime_type = Column(String(128), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    uploaded_by = Column(String(36), ForeignKey("employees.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


# =============================================================================
# Pydantic request / response schemas
# =============================================================================


class CreateReceiptReference(BaseModel):
    """Receipt already uploaded to storage, referenced while drafting."""

    file_key: str
    file_name: str
    mime_type: str
    size_bytes: int


class CreateExpenseItem(BaseModel):
    """Line item supplied with ``POST /reports``."""

    expense_date: dt.date
    category: ExpenseCategory
    description: Optional[str] = None
    attendees: Optional[str] = None
    location: Optional[str] = None
    amount_cents: int
    reimbursable: bool
    payment_method: Optional[str] = None
    receipts: list[CreateReceiptReference] = Field(default_factory=list)


class CreateReportRequest(BaseModel):
    """Payload that starts a draft report."""

    reporting_period_start: dt.date
    reporting_period_end: dt.date
    currency: str = ""
    items: list[CreateExpenseItem] = Field(default_factory=list)


class ReceiptView(BaseModel):
    """Receipt as returned to API callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    expense_item_id: str
    file_key: str
    file_name: str
    mime_type: str
    size_bytes: int
    uploaded_by: str
    created_at: dt.datetime


class ExpenseItemView(BaseModel):
    """Line item as returned to API callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    report_id: str
    expense_date: dt.date
    category: ExpenseCategory
    gl_account_id: Optional[str] = None
    description: Optional[str] = None
    attendees: Optional[str] = None
    location: Optional[str] = None
    amount_cents: int
    reimbursable: bool
    payment_method: Optional[str] = None
    is_policy_exception: bool = False


class ExpenseReportView(BaseModel):
    """Report header as returned to API callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    employee_id: str
    reporting_period_start: dt.date
    reporting_period_end: dt.date
    status: ReportStatus
    total_amount_cents: int
    total_reimbursable_cents: int
    currency: str
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime


class ExpenseReportDetail(BaseModel):
    """Report header with its line items."""

    report: ExpenseReportView
    items: list[ExpenseItemView] = Field(default_factory=list)
