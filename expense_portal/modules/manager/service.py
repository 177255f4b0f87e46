"""Queue of submitted reports awaiting manager review."""

from __future__ import annotations

from collections import defaultdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.database import get_session_factory, service_session
from expense_portal.logging_config import get_logger
from expense_portal.modules.employees.models import Employee
from expense_portal.modules.expenses.models import ExpenseReport, ReportStatus
from expense_portal.modules.expenses.service import load_items
from expense_portal.modules.manager.models import PolicyFlag, QueueEntry, QueueLineItem, QueueReport
from expense_portal.security.rbac import AuthenticatedUser, Permission

logger = get_logger(__name__)


class ManagerService:
    """Read-only aggregates for managers."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def fetch_queue(self, actor: AuthenticatedUser) -> list[QueueEntry]:
        """Submitted reports, oldest submission first, with items and exception flags."""
        actor.require_permission(Permission.REVIEW_QUEUE)

        async with service_session(self._session_factory, "fetch_queue") as session:
            rows = (await session.execute(
                select(ExpenseReport, Employee.hr_identifier)
                .join(Employee, Employee.id == ExpenseReport.employee_id)
                .where(ExpenseReport.status == ReportStatus.SUBMITTED.value)
                .order_by(ExpenseReport.updated_at, ExpenseReport.id)
            )).all()
            if not rows:
                return []
            items = await load_items(session, [report.id for report, _ in rows])

        items_by_report: dict[str, list[QueueLineItem]] = defaultdict(list)
        for item in items:
            items_by_report[item.report_id].append(QueueLineItem.model_validate(item))

        queue: list[QueueEntry] = []
        for report, hr_identifier in rows:
            line_items = items_by_report.get(report.id, [])
            queue.append(QueueEntry(
                report=QueueReport(
                    id=report.id,
                    employee_id=report.employee_id,
                    employee_hr_identifier=hr_identifier,
                    reporting_period_start=report.reporting_period_start,
                    reporting_period_end=report.reporting_period_end,
                    total_amount_cents=report.total_amount_cents,
                    total_reimbursable_cents=report.total_reimbursable_cents,
                    currency=report.currency,
                    submitted_at=report.updated_at,
                ),
                line_items=line_items,
                policy_flags=[
                    PolicyFlag(
                        item_id=item.id,
                        category=item.category,
                        expense_date=item.expense_date,
                        description=item.description,
                    )
                    for item in line_items
                    if item.is_policy_exception
                ],
            ))

        logger.debug("manager_queue_fetched", employee_id=actor.employee_id, reports=len(queue))
        return queue
