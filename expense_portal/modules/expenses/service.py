"""Expense report aggregate: drafting, submission, receipts and policy evaluation."""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.config import Settings, get_settings
from expense_portal.database import get_session_factory, service_session
from expense_portal.errors import ConflictError, ForbiddenError, InternalError, NotFoundError
from expense_portal.logging_config import get_logger
from expense_portal.modules.expenses.models import (
    CreateExpenseItem,
    CreateReportRequest,
    ExpenseCategory,
    ExpenseItem,
    ExpenseItemView,
    ExpenseReport,
    ExpenseReportDetail,
    ExpenseReportView,
    Receipt,
    ReportStatus,
)
from expense_portal.modules.expenses.validators import (
    normalize_currency,
    sanitize_file_name,
    validate_create_report,
    validate_receipt_upload,
)
from expense_portal.modules.policy.engine import evaluate_item
from expense_portal.modules.policy.models import PolicyCap, PolicyEvaluation
from expense_portal.modules.policy.service import load_caps
from expense_portal.modules.storage.service import StorageBackend, build_storage
from expense_portal.security.audit import record_audit
from expense_portal.security.rbac import AuthenticatedUser, Permission

logger = get_logger(__name__)


def calculate_totals(items: Iterable[CreateExpenseItem]) -> tuple[int, int]:
    """Return (total, reimbursable subset) in cents."""
    total = 0
    reimbursable = 0
    for item in items:
        total += item.amount_cents
        if item.reimbursable:
            reimbursable += item.amount_cents
    return total, reimbursable


def aggregate_policy_evaluation(
    items: Sequence[ExpenseItem], caps: Sequence[PolicyCap],
) -> PolicyEvaluation:
    """Evaluate every item and fold the results into one.

    Items already flagged as policy exceptions add a warning, never a violation.
    """
    result = PolicyEvaluation.ok()
    for item in items:
        result = result.merge(evaluate_item(item, caps))
        if item.is_policy_exception:
            result.warnings.append(f"Expense item {item.id} marked as a policy exception")
    return result


async def load_items(session: AsyncSession, report_ids: Sequence[str]) -> list[ExpenseItem]:
    """Items of the given reports ordered by date, then id."""
    if not report_ids:
        return []
    result = await session.execute(
        select(ExpenseItem)
        .where(ExpenseItem.report_id.in_(list(report_ids)))
        .order_by(ExpenseItem.expense_date, ExpenseItem.id)
    )
    return list(result.scalars().all())


async def transition_report(
    session: AsyncSession,
    report_id: str,
    expected: Sequence[ReportStatus],
    new_status: ReportStatus,
    actor_id: str,
    owner_id: Optional[str] = None,
) -> ExpenseReport:
    """Move a report to ``new_status`` if its status is still one of ``expected``.

    One conditional UPDATE; when it matches nothing a follow-up existence check
    tells NotFound apart from Conflict. The caller owns the transaction.
    """
    conditions = [
        ExpenseReport.id == report_id,
        ExpenseReport.status.in_([status.value for status in expected]),
    ]
    scope = [ExpenseReport.id == report_id]
    if owner_id is not None:
        conditions.append(ExpenseReport.employee_id == owner_id)
        scope.append(ExpenseReport.employee_id == owner_id)

    result = await session.execute(
        update(ExpenseReport)
        .where(*conditions)
        .values(
            status=new_status.value,
            version=ExpenseReport.version + 1,
            updated_at=dt.datetime.now(dt.UTC),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        exists = await session.scalar(
            select(func.count()).select_from(ExpenseReport).where(*scope)
        )
        if not exists:
            raise NotFoundError(f"expense report {report_id} not found")
        logger.info(
            "report_transition_conflict",
            report_id=report_id,
            expected=[status.value for status in expected],
            target=new_status.value,
        )
        raise ConflictError(f"expense report {report_id} is not in an expected state")

    old_value = (
        {"status": expected[0].value}
        if len(expected) == 1
        else {"status_in": [status.value for status in expected]}
    )
    record_audit(
        session,
        entity_type="expense_report",
        entity_id=report_id,
        event_type="status_changed",
        performed_by=actor_id,
        old_value=old_value,
        new_value={"status": new_status.value},
    )
    return await _reload_report(session, report_id)


async def _reload_report(session: AsyncSession, report_id: str) -> ExpenseReport:
    result = await session.execute(
        select(ExpenseReport)
        .where(ExpenseReport.id == report_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class ExpenseService:
    """Persistence boundary for reports, their items and receipts."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
        storage: Optional[StorageBackend] = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._settings = settings or get_settings()
        self._storage = storage or build_storage(self._settings)

    async def create_report(
        self, actor: AuthenticatedUser, request: CreateReportRequest,
    ) -> ExpenseReportDetail:
        """Validate and persist a new Draft report with its items and receipt rows."""
        actor.require_permission(Permission.CREATE_REPORT)
        validate_create_report(request, self._settings)

        total, reimbursable = calculate_totals(request.items)
        now = dt.datetime.now(dt.UTC)
        report = ExpenseReport(
            id=str(uuid4()),
            employee_id=actor.employee_id,
            reporting_period_start=request.reporting_period_start,
            reporting_period_end=request.reporting_period_end,
            status=ReportStatus.DRAFT.value,
            total_amount_cents=total,
            total_reimbursable_cents=reimbursable,
            currency=normalize_currency(request.currency),
            version=1,
            created_at=now,
            updated_at=now,
        )

        items: list[ExpenseItem] = []
        async with service_session(self._session_factory, "create_report") as session:
            session.add(report)
            for payload in request.items:
                item = ExpenseItem(
                    id=str(uuid4()),
                    report_id=report.id,
                    expense_date=payload.expense_date,
                    category=ExpenseCategory(payload.category).value,
                    gl_account_id=None,
                    description=payload.description,
                    attendees=payload.attendees,
                    location=payload.location,
                    amount_cents=payload.amount_cents,
                    reimbursable=payload.reimbursable,
                    payment_method=payload.payment_method,
                    is_policy_exception=False,
                )
                items.append(item)
                session.add(item)
                for receipt in payload.receipts:
                    session.add(Receipt(
                        id=str(uuid4()),
                        expense_item_id=item.id,
                        file_key=receipt.file_key,
                        file_name=receipt.file_name,
                        mime_type=receipt.mime_type.strip().lower(),
                        size_bytes=receipt.size_bytes,
                        uploaded_by=actor.employee_id,
                    ))
            record_audit(
                session,
                entity_type="expense_report",
                entity_id=report.id,
                event_type="created",
                performed_by=actor.employee_id,
                new_value={"status": ReportStatus.DRAFT.value, "items": len(items)},
            )
            await session.commit()

        logger.info(
            "report_created",
            report_id=report.id,
            employee_id=actor.employee_id,
            items=len(items),
            total_amount_cents=total,
        )
        return ExpenseReportDetail(
            report=ExpenseReportView.model_validate(report),
            items=[ExpenseItemView.model_validate(item) for item in items],
        )

    async def submit_report(self, actor: AuthenticatedUser, report_id: str) -> ExpenseReport:
        """Draft -> Submitted, only for the owning employee."""
        async with service_session(self._session_factory, "submit_report") as session:
            report = await transition_report(
                session,
                report_id,
                expected=[ReportStatus.DRAFT],
                new_status=ReportStatus.SUBMITTED,
                actor_id=actor.employee_id,
                owner_id=actor.employee_id,
            )
            await session.commit()

        logger.info(
            "report_submitted",
            report_id=report_id,
            employee_id=actor.employee_id,
            version=report.version,
        )
        return report

    async def get_report(self, actor: AuthenticatedUser, report_id: str) -> ExpenseReportDetail:
        """Report header plus items, for its owner or any reviewer."""
        async with service_session(self._session_factory, "get_report") as session:
            report = await session.get(ExpenseReport, report_id)
            if report is None:
                raise NotFoundError(f"expense report {report_id} not found")
            self._authorize_view(actor, report.employee_id, report_id)
            items = await load_items(session, [report_id])

        return ExpenseReportDetail(
            report=ExpenseReportView.model_validate(report),
            items=[ExpenseItemView.model_validate(item) for item in items],
        )

    async def attach_receipt(
        self,
        actor: AuthenticatedUser,
        report_id: str,
        item_id: str,
        file_name: str,
        content_type: str,
        data: bytes,
    ) -> Receipt:
        """Store an uploaded receipt and record it against a Draft report's item.

        The checks run in a read-only transaction that is closed before the
        bytes go to storage. The insert transaction repeats them, since the
        report may have been submitted while the upload was being stored.
        """
        async with service_session(self._session_factory, "attach_receipt") as session:
            existing = await self._receipt_target(session, actor, report_id, item_id)
        validate_receipt_upload(file_name, content_type, len(data), existing, self._settings)

        mime_type = content_type.strip().lower()
        key = f"receipts/{report_id}/{item_id}/{uuid4().hex}-{sanitize_file_name(file_name)}"
        try:
            await self._storage.put(key, data, mime_type)
        except (OSError, ValueError) as exc:
            logger.error("receipt_store_failed", key=key, error=str(exc))
            raise InternalError(f"failed to store receipt: {exc}") from exc

        receipt = Receipt(
            id=str(uuid4()),
            expense_item_id=item_id,
            file_key=key,
            file_name=file_name,
            mime_type=mime_type,
            size_bytes=len(data),
            uploaded_by=actor.employee_id,
        )
        try:
            async with service_session(self._session_factory, "attach_receipt") as session:
                existing = await self._receipt_target(session, actor, report_id, item_id)
                validate_receipt_upload(file_name, content_type, len(data), existing, self._settings)
                session.add(receipt)
                await session.commit()
        except BaseException:
            await self._discard_object(key)
            raise

        logger.info(
            "receipt_attached",
            report_id=report_id,
            item_id=item_id,
            receipt_id=receipt.id,
            size_bytes=receipt.size_bytes,
        )
        return receipt

    async def _receipt_target(
        self, session: AsyncSession, actor: AuthenticatedUser, report_id: str, item_id: str,
    ) -> int:
        """Ownership, draft state and item membership; returns the item's receipt count."""
        report = await session.get(ExpenseReport, report_id)
        if report is None:
            raise NotFoundError(f"expense report {report_id} not found")
        if report.employee_id != actor.employee_id:
            logger.warning("receipt_upload_denied", report_id=report_id, employee_id=actor.employee_id)
            raise ForbiddenError("only the report owner may attach receipts")
        if report.status != ReportStatus.DRAFT.value:
            raise ConflictError(f"expense report {report_id} is no longer a draft")

        item = await session.get(ExpenseItem, item_id)
        if item is None or item.report_id != report_id:
            raise NotFoundError(f"expense item {item_id} not found")

        existing = await session.scalar(
            select(func.count()).select_from(Receipt).where(Receipt.expense_item_id == item_id)
        )
        return existing or 0

    async def _discard_object(self, key: str) -> None:
        try:
            await self._storage.delete(key)
        except (OSError, ValueError) as exc:
            logger.error("receipt_cleanup_failed", key=key, error=str(exc))

    async def evaluate_report(self, actor: AuthenticatedUser, report_id: str) -> PolicyEvaluation:
        """Check every item of a report against the caps for its categories. Read-only."""
        async with service_session(self._session_factory, "evaluate_report") as session:
            owner_id = await session.scalar(
                select(ExpenseReport.employee_id).where(ExpenseReport.id == report_id)
            )
            if owner_id is None:
                raise NotFoundError(f"expense report {report_id} not found")
            self._authorize_view(actor, owner_id, report_id)

            items = await load_items(session, [report_id])
            if not items:
                return PolicyEvaluation.ok()

            try:
                categories = {ExpenseCategory(item.category) for item in items}
            except ValueError as exc:
                logger.error("stored_category_invalid", report_id=report_id, error=str(exc))
                raise InternalError(f"report {report_id} has an item with an unknown category") from exc
            caps = await load_caps(session, categories)

        evaluation = aggregate_policy_evaluation(items, caps)
        logger.debug(
            "report_evaluated",
            report_id=report_id,
            is_valid=evaluation.is_valid,
            violations=len(evaluation.violations),
            warnings=len(evaluation.warnings),
        )
        return evaluation

    @staticmethod
    def _authorize_view(actor: AuthenticatedUser, owner_id: str, report_id: str) -> None:
        if not actor.can_view(owner_id):
            logger.warning(
                "report_access_denied",
                report_id=report_id,
                employee_id=actor.employee_id,
                role=str(actor.role),
            )
            raise ForbiddenError(f"employee {actor.employee_id} may not view report {report_id}")
