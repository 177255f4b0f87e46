"""Approval decision records."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from expense_portal.database import Base
from expense_portal.enums import LowercaseStrEnum
from expense_portal.security.rbac import Role


class ApprovalStatus(LowercaseStrEnum):
    """Decision a reviewer can record."""

    APPROVED = "approved"
    DENIED = "denied"
    NEEDS_CHANGES = "needs_changes"


class Approval(Base):
    """Immutable reviewer decision. Reports accumulate many over their lifetime."""

    __tablename__ = "approvals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    report_id = Column(String(36), ForeignKey("expense_reports.id"), nullable=False)
    approver_id = Column(String(36), ForeignKey("employees.id"), nullable=False)
    role = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    comments = Column(Text, nullable=True)
    policy_exception_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: dt.datetime.now(dt.UTC), nullable=False)

    __table_args__ = (
        Index("ix_approvals_report_created", "report_id", "created_at"),
    )


class DecisionRequest(BaseModel):
    """Body of ``POST /approvals/{report_id}``."""

    status: ApprovalStatus
    comments: Optional[str] = None
    policy_exception_notes: Optional[str] = None


class ApprovalView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    report_id: str
    approver_id: str
    role: Role
    status: ApprovalStatus
    comments: Optional[str] = None
    policy_exception_notes: Optional[str] = None
    created_at: dt.datetime
