"""Reviewer decisions and the report transitions they drive."""

from __future__ import annotations

import datetime as dt
from typing import Optional
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.database import get_session_factory, service_session
from expense_portal.errors import ForbiddenError, NotFoundError
from expense_portal.logging_config import get_logger
from expense_portal.modules.approvals.models import Approval, ApprovalStatus, DecisionRequest
from expense_portal.modules.expenses.models import ExpenseReport, ReportStatus
from expense_portal.modules.expenses.service import transition_report
from expense_portal.security.audit import record_audit
from expense_portal.security.rbac import AuthenticatedUser, Permission, Role

logger = get_logger(__name__)

# role -> (statuses the report must be in, status it moves to) for an approval
APPROVAL_TRANSITIONS: dict[Role, tuple[tuple[ReportStatus, ...], ReportStatus]] = {
    Role.MANAGER: ((ReportStatus.SUBMITTED,), ReportStatus.MANAGER_APPROVED),
    Role.FINANCE: (
        (ReportStatus.MANAGER_APPROVED, ReportStatus.FINANCE_FINALIZED),
        ReportStatus.FINANCE_FINALIZED,
    ),
}


class ApprovalService:
    """Records manager and finance decisions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def record_decision(
        self, actor: AuthenticatedUser, report_id: str, decision: DecisionRequest,
    ) -> Approval:
        """Insert the approval row and apply its transition as one unit.

        If the transition fails (report gone, or no longer in the expected
        state) the approval row is rolled back with it.
        """
        actor.require_permission(Permission.RECORD_DECISION)
        status = ApprovalStatus(decision.status)

        async with service_session(self._session_factory, "record_decision") as session:
            # the report must be resolved before the row referencing it is flushed
            transition = APPROVAL_TRANSITIONS.get(actor.role)
            if status == ApprovalStatus.APPROVED and transition is not None:
                expected, target = transition
                await transition_report(
                    session, report_id, expected=expected, new_status=target,
                    actor_id=actor.employee_id,
                )
            else:
                exists = await session.scalar(
                    select(func.count()).select_from(ExpenseReport).where(ExpenseReport.id == report_id)
                )
                if not exists:
                    raise NotFoundError(f"expense report {report_id} not found")

            approval = Approval(
                id=str(uuid4()),
                report_id=report_id,
                approver_id=actor.employee_id,
                role=actor.role.value,
                status=status.value,
                comments=decision.comments,
                policy_exception_notes=decision.policy_exception_notes,
                created_at=dt.datetime.now(dt.UTC),
            )
            session.add(approval)
            await session.flush()

            record_audit(
                session,
                entity_type="approval",
                entity_id=approval.id,
                event_type="decision_recorded",
                performed_by=actor.employee_id,
                new_value={"report_id": report_id, "role": actor.role.value, "status": status.value},
            )
            await session.commit()

        logger.info(
            "decision_recorded",
            approval_id=approval.id,
            report_id=report_id,
            approver_id=actor.employee_id,
            role=actor.role.value,
            status=status.value,
        )
        return approval

    async def list_approvals(self, actor: AuthenticatedUser, report_id: str) -> list[Approval]:
        """Decision history of a report, oldest first."""
        async with service_session(self._session_factory, "list_approvals") as session:
            owner_id = await session.scalar(
                select(ExpenseReport.employee_id).where(ExpenseReport.id == report_id)
            )
            if owner_id is None:
                raise NotFoundError(f"expense report {report_id} not found")
            if not actor.can_view(owner_id):
                logger.warning("approval_history_denied", report_id=report_id, employee_id=actor.employee_id)
                raise ForbiddenError(f"employee {actor.employee_id} may not view report {report_id}")

            result = await session.execute(
                select(Approval)
                .where(Approval.report_id == report_id)
                .order_by(Approval.created_at, Approval.id)
            )
            return list(result.scalars().all())
