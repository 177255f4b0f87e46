"""Finance finalization: batch, journal lines, report status and NetSuite export in one transaction."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import NoReturn, Optional
from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.config import Settings, get_settings
from expense_portal.database import get_session_factory, service_session
from expense_portal.errors import FieldError, InternalError, NotFoundError, ServiceError, ValidationFailedError
from expense_portal.logging_config import get_logger
from expense_portal.modules.expenses.models import ExpenseReport, ReportStatus
from expense_portal.modules.finance.models import (
    DEFAULT_GL_ACCOUNT,
    BatchStatus,
    BatchSummary,
    FinalizeRequest,
    JournalLine,
    NetSuiteBatch,
)
from expense_portal.modules.netsuite.client import ExportAdapter, ExportTransportError, StubExportAdapter
from expense_portal.security.audit import record_audit
from expense_portal.security.rbac import AuthenticatedUser, Permission

logger = get_logger(__name__)


def journal_amount_cents(report: ExpenseReport) -> int:
    """Amount posted for a report. Placeholder until GL mapping rules exist."""
    return 0


def validate_finalize_request(request: FinalizeRequest) -> None:
    errors: list[FieldError] = []
    if not request.report_ids:
        errors.append(FieldError(field="report_ids", message="at least one report is required"))
    seen: set[str] = set()
    for index, report_id in enumerate(request.report_ids):
        if report_id in seen:
            errors.append(FieldError(field=f"report_ids[{index}]", message="duplicate report id"))
        seen.add(report_id)
    if not request.batch_reference.strip():
        errors.append(FieldError(field="batch_reference", message="batch reference is required"))
    if errors:
        raise ValidationFailedError(errors)


class FinanceService:
    """Posts approved reports to NetSuite as all-or-nothing batches."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        adapter: Optional[ExportAdapter] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._adapter = adapter or StubExportAdapter()
        self._settings = settings or get_settings()

    async def finalize_reports(
        self, actor: AuthenticatedUser, request: FinalizeRequest,
    ) -> NetSuiteBatch:
        """Create the batch and its lines, finalize the reports, then export.

        Nothing is committed unless the adapter reports success. On adapter
        failure the transaction is rolled back; if that rollback fails too,
        the error names both causes.
        """
        actor.require_permission(Permission.FINALIZE_BATCH)
        validate_finalize_request(request)

        async with self._session_factory() as session:
            batch, lines = await self._stage_batch(session, actor, request)

            try:
                response = await self._adapter.export(batch, lines)
            except asyncio.CancelledError:
                logger.warning("finalize_cancelled", batch_id=batch.id)
                await asyncio.shield(session.rollback())
                raise
            except Exception as exc:
                await self._abort(session, batch.id, exc)

            if not response.succeeded:
                await self._abort(
                    session,
                    batch.id,
                    ExportTransportError(response.message or "NetSuite rejected the batch"),
                )

            try:
                batch.status = BatchStatus.EXPORTED.value
                batch.exported_at = dt.datetime.now(dt.UTC)
                batch.netsuite_response = response.model_dump(mode="json")
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("finalize_commit_failed", batch_id=batch.id, error=str(exc))
                raise InternalError(str(exc)) from exc

        logger.info(
            "batch_finalized",
            batch_id=batch.id,
            batch_reference=batch.batch_reference,
            reports=len(lines),
            reference=response.reference,
        )
        return batch

    async def _stage_batch(
        self, session: AsyncSession, actor: AuthenticatedUser, request: FinalizeRequest,
    ) -> tuple[NetSuiteBatch, list[JournalLine]]:
        now = dt.datetime.now(dt.UTC)
        try:
            batch = NetSuiteBatch(
                id=str(uuid4()),
                batch_reference=request.batch_reference.strip(),
                finalized_by=actor.employee_id,
                finalized_at=now,
                status=BatchStatus.PENDING.value,
            )
            session.add(batch)

            lines: list[JournalLine] = []
            for line_number, report_id in enumerate(request.report_ids, start=1):
                result = await session.execute(
                    update(ExpenseReport)
                    .where(ExpenseReport.id == report_id)
                    .values(
                        status=ReportStatus.FINANCE_FINALIZED.value,
                        version=ExpenseReport.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"expense report {report_id} not found")
                record_audit(
                    session,
                    entity_type="expense_report",
                    entity_id=report_id,
                    event_type="status_changed",
                    performed_by=actor.employee_id,
                    new_value={"status": ReportStatus.FINANCE_FINALIZED.value, "batch_id": batch.id},
                )

                report = await session.get(ExpenseReport, report_id, populate_existing=True)
                line = JournalLine(
                    id=str(uuid4()),
                    batch_id=batch.id,
                    report_id=report_id,
                    line_number=line_number,
                    gl_account=DEFAULT_GL_ACCOUNT,
                    amount_cents=journal_amount_cents(report),
                )
                session.add(line)
                lines.append(line)

            await session.flush()
        except ServiceError:
            await session.rollback()
            raise
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("finalize_stage_failed", error=str(exc))
            raise InternalError(str(exc)) from exc

        logger.debug("batch_staged", batch_id=batch.id, lines=len(lines))
        return batch, lines

    async def _abort(self, session: AsyncSession, batch_id: str, cause: Exception) -> NoReturn:
        """Roll back after an export failure and raise the matching InternalError."""
        try:
            await session.rollback()
        except Exception as rollback_exc:
            logger.error(
                "finalize_rollback_failed",
                batch_id=batch_id,
                error=str(rollback_exc),
                original=str(cause),
            )
            raise InternalError(
                f"failed to rollback after NetSuite export error: {rollback_exc} (original: {cause})"
            ) from cause

        logger.error("netsuite_export_failed", batch_id=batch_id, error=str(cause))
        raise InternalError(str(cause)) from cause

    async def recent_batches(
        self, actor: AuthenticatedUser, limit: Optional[int] = None,
    ) -> list[BatchSummary]:
        """Newest batches first, with distinct report count and summed amount."""
        actor.require_permission(Permission.VIEW_BATCHES)
        if limit is None:
            limit = self._settings.recent_batches_limit

        stmt = (
            select(
                NetSuiteBatch.id,
                NetSuiteBatch.batch_reference,
                NetSuiteBatch.status,
                NetSuiteBatch.finalized_at,
                NetSuiteBatch.exported_at,
                func.count(func.distinct(JournalLine.report_id)).label("report_count"),
                func.coalesce(func.sum(JournalLine.amount_cents), 0).label("total_amount_cents"),
            )
            .select_from(NetSuiteBatch)
            .outerjoin(JournalLine, JournalLine.batch_id == NetSuiteBatch.id)
            .group_by(
                NetSuiteBatch.id,
                NetSuiteBatch.batch_reference,
                NetSuiteBatch.status,
                NetSuiteBatch.finalized_at,
                NetSuiteBatch.exported_at,
            )
            .order_by(NetSuiteBatch.finalized_at.desc(), NetSuiteBatch.id.desc())
            .limit(limit)
        )
        async with service_session(self._session_factory, "recent_batches") as session:
            rows = (await session.execute(stmt)).all()

        return [
            BatchSummary(
                id=row.id,
                batch_reference=row.batch_reference,
                status=row.status,
                finalized_at=row.finalized_at,
                exported_at=row.exported_at,
                report_count=row.report_count,
                total_amount_cents=row.total_amount_cents,
            )
            for row in rows
        ]
