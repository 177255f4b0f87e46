"""Shared test fixtures and configuration."""

from __future__ import annotations

import datetime as dt
import os
from typing import Any, AsyncGenerator, Iterable, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("EXPENSE_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-do-not-use")
os.environ.setdefault("EXPENSE_LOG_LEVEL", "WARNING")
os.environ.setdefault("STORAGE_PROVIDER", "memory")

from expense_portal.config import Settings
from expense_portal.database import Base, import_models
from expense_portal.modules.employees.models import Employee
from expense_portal.modules.expenses.models import ExpenseItem, ExpenseReport, ReportStatus
from expense_portal.modules.policy.models import PolicyCap
from expense_portal.security.rbac import AuthenticatedUser, Role

import_models()

MAY_START = dt.date(2024, 5, 1)
MAY_END = dt.date(2024, 5, 31)


@pytest.fixture
def settings() -> Settings:
    """Return test settings."""
    return Settings(
        _env_file=None,
        expense_env="test",
        expense_log_level="WARNING",
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-secret-key",
        storage_provider="memory",
        receipt_max_bytes=1024,
        receipt_max_files_per_item=2,
        recent_batches_limit=20,
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A clean in-memory database per test; every session shares one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A file-backed database with foreign keys enforced; each session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _enforce_foreign_keys(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


class Seeder:
    """Writes fixture rows directly, bypassing the services under test."""

    def __init__(self, factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = factory

    async def employee(
        self, role: Role = Role.EMPLOYEE, hr_identifier: Optional[str] = None,
    ) -> AuthenticatedUser:
        employee = Employee(
            id=str(uuid4()),
            hr_identifier=hr_identifier or f"HR-{uuid4().hex[:8]}",
            role=role.value,
        )
        async with self._factory() as session:
            session.add(employee)
            await session.commit()
        return AuthenticatedUser(employee_id=employee.id, role=role)

    async def report(
        self,
        owner: AuthenticatedUser,
        status: ReportStatus = ReportStatus.DRAFT,
        items: Iterable[dict[str, Any]] = (),
        start: dt.date = MAY_START,
        end: dt.date = MAY_END,
        updated_at: Optional[dt.datetime] = None,
    ) -> str:
        now = updated_at or dt.datetime.now(dt.UTC)
        report = ExpenseReport(
            id=str(uuid4()),
            employee_id=owner.employee_id,
            reporting_period_start=start,
            reporting_period_end=end,
            status=status.value,
            total_amount_cents=0,
            total_reimbursable_cents=0,
            currency="USD",
            version=1,
            created_at=now,
            updated_at=now,
        )
        async with self._factory() as session:
            session.add(report)
            for fields in items:
                session.add(ExpenseItem(
                    id=fields.get("id", str(uuid4())),
                    report_id=report.id,
                    expense_date=fields.get("expense_date", start),
                    category=str(fields.get("category", "meal")),
                    description=fields.get("description"),
                    amount_cents=fields.get("amount_cents", 1000),
                    reimbursable=fields.get("reimbursable", True),
                    is_policy_exception=fields.get("is_policy_exception", False),
                ))
            await session.commit()
        return report.id

    async def cap(
        self,
        category: str,
        amount_cents: int,
        active_from: dt.date,
        active_to: Optional[dt.date] = None,
    ) -> None:
        async with self._factory() as session:
            session.add(PolicyCap(
                id=str(uuid4()),
                policy_key=f"{category}_cap",
                category=category,
                limit_type="per_item",
                amount_cents=amount_cents,
                active_from=active_from,
                active_to=active_to,
            ))
            await session.commit()

    async def count(self, model: type, *criteria: Any) -> int:
        async with self._factory() as session:
            return await session.scalar(select(func.count()).select_from(model).where(*criteria))

    async def report_row(self, report_id: str) -> ExpenseReport:
        async with self._factory() as session:
            return await session.get(ExpenseReport, report_id)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def file_seed(file_session_factory) -> Seeder:
    return Seeder(file_session_factory)
