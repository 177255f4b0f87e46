"""Policy cap table and evaluation result schema."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Column, Date, Index, Integer, String, Text

from expense_portal.database import Base
from expense_portal.modules.expenses.models import ExpenseCategory


class PolicyCap(Base):
    """A category spending limit valid over an inclusive date range."""

    __tablename__ = "policy_caps"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    policy_key = Column(String(64), nullable=False)
    category = Column(String(32), nullable=False)
    limit_type = Column(String(32), nullable=False, default="per_item")
    amount_cents = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    active_from = Column(Date, nullable=False)
    active_to = Column(Date, nullable=True)

    __table_args__ = (
        Index("ix_policy_caps_category_from", "category", "active_from"),
    )

    def __repr__(self) -> str:
        return (
            f"<PolicyCap(category={self.category}, amount_cents={self.amount_cents}, "
            f"active_from={self.active_from}, active_to={self.active_to})>"
        )


class PolicyCapView(BaseModel):
    """Cap as shown to operators."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    policy_key: str
    category: ExpenseCategory
    limit_type: str
    amount_cents: int
    notes: Optional[str] = None
    active_from: dt.date
    active_to: Optional[dt.date] = None


class PolicyEvaluation(BaseModel):
    """Outcome of checking one item, or a whole report, against policy."""

    is_valid: bool = True
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls) -> PolicyEvaluation:
        return cls()

    @classmethod
    def with_violation(cls, message: str) -> PolicyEvaluation:
        return cls(is_valid=False, violations=[message])

    def merge(self, other: PolicyEvaluation) -> PolicyEvaluation:
        """Combine two results; any invalid side makes the whole invalid."""
        return PolicyEvaluation(
            is_valid=self.is_valid and other.is_valid,
            violations=[*self.violations, *other.violations],
            warnings=[*self.warnings, *other.warnings],
        )
