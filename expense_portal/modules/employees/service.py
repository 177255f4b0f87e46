"""Employee directory lookups and operator inserts."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.database import get_session_factory, service_session
from expense_portal.errors import ConflictError, ValidationFailedError
from expense_portal.logging_config import get_logger
from expense_portal.modules.employees.models import Employee
from expense_portal.security.rbac import Role

logger = get_logger(__name__)


class EmployeeService:
    """Employees are provisioned from HR; this only mirrors what the workflows need."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def add_employee(
        self,
        hr_identifier: str,
        role: Role = Role.EMPLOYEE,
        department: Optional[str] = None,
        manager_id: Optional[str] = None,
    ) -> Employee:
        hr_identifier = hr_identifier.strip()
        if not hr_identifier:
            raise ValidationFailedError.single("hr_identifier", "HR identifier is required")

        employee = Employee(
            id=str(uuid4()),
            hr_identifier=hr_identifier,
            manager_id=manager_id,
            department=department,
            role=Role(role).value,
            created_at=dt.datetime.now(dt.UTC),
        )
        async with self._session_factory() as session:
            session.add(employee)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(f"employee '{hr_identifier}' already exists") from exc

        logger.info("employee_added", employee_id=employee.id, role=employee.role)
        return employee

    async def find_by_hr_identifier(self, hr_identifier: str) -> Optional[Employee]:
        """Case-insensitive lookup."""
        async with service_session(self._session_factory, "find_employee") as session:
            result = await session.execute(
                select(Employee).where(
                    func.upper(Employee.hr_identifier) == hr_identifier.strip().upper()
                )
            )
            return result.scalars().first()
