"""Tests for the manager review queue."""

from __future__ import annotations

import datetime as dt

import pytest

from expense_portal.errors import ForbiddenError
from expense_portal.modules.expenses.models import ReportStatus
from expense_portal.modules.manager.service import ManagerService
from expense_portal.security.rbac import Role


@pytest.fixture
def service(session_factory) -> ManagerService:
    return ManagerService(session_factory)


class TestFetchQueue:
    """Tests for fetch_queue."""

    @pytest.mark.asyncio
    async def test_submitted_reports_oldest_first(self, service, seed) -> None:
        """Only submitted reports appear, ordered by submission time."""
        manager = await seed.employee(Role.MANAGER)
        alice = await seed.employee(hr_identifier="E-ALICE")
        bob = await seed.employee(hr_identifier="E-BOB")
        late = await seed.report(
            alice, status=ReportStatus.SUBMITTED, updated_at=dt.datetime(2024, 6, 3, tzinfo=dt.UTC),
        )
        early = await seed.report(
            bob, status=ReportStatus.SUBMITTED, updated_at=dt.datetime(2024, 6, 1, tzinfo=dt.UTC),
        )
        await seed.report(alice, status=ReportStatus.DRAFT)
        await seed.report(bob, status=ReportStatus.MANAGER_APPROVED)

        queue = await service.fetch_queue(manager)

        assert [entry.report.id for entry in queue] == [early, late]
        assert [entry.report.employee_hr_identifier for entry in queue] == ["E-BOB", "E-ALICE"]

    @pytest.mark.asyncio
    async def test_items_and_policy_flags(self, service, seed) -> None:
        """Items come sorted by date; exception items are flagged."""
        manager = await seed.employee(Role.MANAGER)
        owner = await seed.employee()
        await seed.report(owner, status=ReportStatus.SUBMITTED, items=[
            {"id": "late", "expense_date": dt.date(2024, 5, 20), "category": "lodging"},
            {
                "id": "early",
                "expense_date": dt.date(2024, 5, 2),
                "category": "meal",
                "description": "client dinner",
                "is_policy_exception": True,
            },
        ])

        [entry] = await service.fetch_queue(manager)

        assert [item.id for item in entry.line_items] == ["early", "late"]
        assert len(entry.policy_flags) == 1
        flag = entry.policy_flags[0]
        assert flag.item_id == "early"
        assert flag.description == "client dinner"

    @pytest.mark.asyncio
    async def test_empty_queue(self, service, seed) -> None:
        """No submitted reports gives an empty list."""
        manager = await seed.employee(Role.MANAGER)
        assert await service.fetch_queue(manager) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [Role.EMPLOYEE, Role.FINANCE, Role.ADMIN])
    async def test_managers_only(self, service, seed, role) -> None:
        """Every other role is refused."""
        actor = await seed.employee(role)
        with pytest.raises(ForbiddenError):
            await service.fetch_queue(actor)
