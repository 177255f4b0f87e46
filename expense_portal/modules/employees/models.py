"""Database model for employees."""

from __future__ import annotations

import datetime as dt
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String

from expense_portal.database import Base


class Employee(Base):
    """An employee known to the HR directory."""

    __tablename__ = "employees"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    hr_identifier = Column(String(64), nullable=False, unique=True)
    manager_id = Column(String(36), ForeignKey("employees.id"), nullable=True)
    department = Column(String(128), nullable=True)
    role = Column(String(16), nullable=False, default="employee")
    created_at = Column(DateTime(timezone=True), default=lambda: dt.datetime.now(dt.UTC), nullable=False)

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, hr_identifier={self.hr_identifier}, role={self.role})>"
