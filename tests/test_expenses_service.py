"""Tests for the expense report service."""

from __future__ import annotations

import asyncio
import datetime as dt
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_portal.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationFailedError,
)
from expense_portal.modules.expenses.models import (
    CreateExpenseItem,
    CreateReceiptReference,
    CreateReportRequest,
    ExpenseItem,
    ExpenseReport,
    Receipt,
    ReportStatus,
)
from expense_portal.modules.expenses.service import ExpenseService, calculate_totals
from expense_portal.modules.storage.service import MemoryStorage
from expense_portal.security.audit import AuditLog
from expense_portal.security.rbac import Role


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def service(session_factory, settings, storage) -> ExpenseService:
    return ExpenseService(session_factory, settings=settings, storage=storage)


def _request(**overrides) -> CreateReportRequest:
    data = {
        "reporting_period_start": dt.date(2024, 5, 1),
        "reporting_period_end": dt.date(2024, 5, 31),
        "currency": "usd",
        "items": [
            CreateExpenseItem(
                expense_date=dt.date(2024, 5, 2),
                category="meal",
                amount_cents=4200,
                reimbursable=True,
                receipts=[CreateReceiptReference(
                    file_key="receipts/lunch.pdf",
                    file_name="lunch.pdf",
                    mime_type="application/pdf",
                    size_bytes=512,
                )],
            ),
            CreateExpenseItem(
                expense_date=dt.date(2024, 5, 3),
                category="supplies",
                amount_cents=1300,
                reimbursable=False,
            ),
        ],
    }
    data.update(overrides)
    return CreateReportRequest(**data)


class TestCalculateTotals:
    """Tests for report totals."""

    def test_total_and_reimbursable_subset(self) -> None:
        """Non-reimbursable items count toward the total only."""
        assert calculate_totals(_request().items) == (5500, 4200)


class TestCreateReport:
    """Tests for drafting reports."""

    @pytest.mark.asyncio
    async def test_persists_draft_with_items_and_receipts(self, service, seed) -> None:
        """A valid request creates a Draft at version 1 with cached totals."""
        owner = await seed.employee()
        detail = await service.create_report(owner, _request())

        assert detail.report.status == ReportStatus.DRAFT
        assert detail.report.version == 1
        assert detail.report.currency == "USD"
        assert detail.report.total_amount_cents == 5500
        assert detail.report.total_reimbursable_cents == 4200
        assert len(detail.items) == 2
        assert await seed.count(ExpenseItem, ExpenseItem.report_id == detail.report.id) == 2
        assert await seed.count(Receipt) == 1

    @pytest.mark.asyncio
    async def test_collects_every_validation_error(self, service, seed) -> None:
        """All field problems are reported together and nothing is written."""
        owner = await seed.employee()
        request = _request(
            currency=" ",
            items=[
                CreateExpenseItem(
                    expense_date=dt.date(2024, 6, 2),
                    category="meal",
                    amount_cents=0,
                    reimbursable=True,
                    receipts=[CreateReceiptReference(
                        file_key="../etc/passwd",
                        file_name="x.exe",
                        mime_type="application/x-msdownload",
                        size_bytes=4096,
                    )],
                ),
            ],
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_report(owner, request)

        fields = {error.field for error in exc_info.value.errors}
        assert fields == {
            "currency",
            "items[0].expense_date",
            "items[0].amount_cents",
            "items[0].receipts[0].size_bytes",
            "items[0].receipts[0].mime_type",
            "items[0].receipts[0].file_key",
        }
        assert await seed.count(ExpenseReport) == 0

    @pytest.mark.asyncio
    async def test_inverted_period_rejected(self, service, seed) -> None:
        """The reporting period must not end before it starts."""
        owner = await seed.employee()
        request = _request(
            reporting_period_start=dt.date(2024, 5, 31),
            reporting_period_end=dt.date(2024, 5, 1),
            items=[],
        )
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_report(owner, request)
        assert [e.field for e in exc_info.value.errors] == ["reporting_period_end"]

    @pytest.mark.asyncio
    async def test_too_many_receipts(self, service, seed) -> None:
        """Receipt count per item is limited."""
        owner = await seed.employee()
        receipt = CreateReceiptReference(
            file_key="receipts/a.png", file_name="a.png", mime_type="image/png", size_bytes=10,
        )
        item = CreateExpenseItem(
            expense_date=dt.date(2024, 5, 2),
            category="other",
            amount_cents=100,
            reimbursable=True,
            receipts=[receipt, receipt, receipt],
        )
        with pytest.raises(ValidationFailedError) as exc_info:
            await service.create_report(owner, _request(items=[item]))
        assert [e.field for e in exc_info.value.errors] == ["items[0].receipts"]


class TestSubmitReport:
    """Tests for the Draft -> Submitted transition."""

    @pytest.mark.asyncio
    async def test_owner_submits_draft(self, service, seed) -> None:
        """Submission moves the status and bumps the version."""
        owner = await seed.employee()
        report_id = await seed.report(owner)

        report = await service.submit_report(owner, report_id)

        assert report.status == ReportStatus.SUBMITTED.value
        assert report.version == 2
        assert await seed.count(
            AuditLog, AuditLog.entity_id == report_id, AuditLog.event_type == "status_changed",
        ) == 1

    @pytest.mark.asyncio
    async def test_resubmit_conflicts(self, service, seed) -> None:
        """Submitting an already submitted report is a Conflict."""
        owner = await seed.employee()
        report_id = await seed.report(owner)

        await service.submit_report(owner, report_id)
        with pytest.raises(ConflictError):
            await service.submit_report(owner, report_id)

        row = await seed.report_row(report_id)
        assert row.version == 2

    @pytest.mark.asyncio
    async def test_concurrent_submits_have_one_winner(
        self, file_session_factory, file_seed, settings, storage,
    ) -> None:
        """Two parallel submissions on separate connections: one succeeds, one gets Conflict."""
        service = ExpenseService(file_session_factory, settings=settings, storage=storage)
        owner = await file_seed.employee()
        report_id = await file_seed.report(owner)

        results = await asyncio.gather(
            service.submit_report(owner, report_id),
            service.submit_report(owner, report_id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ExpenseReport) for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        row = await file_seed.report_row(report_id)
        assert row.status == ReportStatus.SUBMITTED.value
        assert row.version == 2
        assert await file_seed.count(
            AuditLog, AuditLog.entity_id == report_id, AuditLog.event_type == "status_changed",
        ) == 1

    @pytest.mark.asyncio
    async def test_missing_report_is_not_found(self, service, seed) -> None:
        """An unknown id is NotFound, not Conflict."""
        owner = await seed.employee()
        with pytest.raises(NotFoundError):
            await service.submit_report(owner, "does-not-exist")

    @pytest.mark.asyncio
    async def test_other_employee_sees_not_found(self, service, seed) -> None:
        """Ownership scopes the existence check."""
        owner = await seed.employee()
        stranger = await seed.employee()
        report_id = await seed.report(owner)

        with pytest.raises(NotFoundError):
            await service.submit_report(stranger, report_id)
        assert (await seed.report_row(report_id)).status == ReportStatus.DRAFT.value


class TestGetReport:
    """Tests for reading a report."""

    @pytest.mark.asyncio
    async def test_reviewer_may_read(self, service, seed) -> None:
        """Managers see reports they do not own, items sorted by date."""
        owner = await seed.employee()
        manager = await seed.employee(Role.MANAGER)
        report_id = await seed.report(owner, items=[
            {"expense_date": dt.date(2024, 5, 9), "category": "other"},
            {"expense_date": dt.date(2024, 5, 2), "category": "meal"},
        ])

        detail = await service.get_report(manager, report_id)
        assert [item.expense_date.day for item in detail.items] == [2, 9]

    @pytest.mark.asyncio
    async def test_stranger_forbidden(self, service, seed) -> None:
        """Plain employees cannot read other people's reports."""
        owner = await seed.employee()
        stranger = await seed.employee()
        report_id = await seed.report(owner)
        with pytest.raises(ForbiddenError):
            await service.get_report(stranger, report_id)


class TestEvaluateReport:
    """Tests for the policy evaluation orchestrator."""

    @pytest.mark.asyncio
    async def test_meal_over_cap(self, service, seed) -> None:
        """The $50 meal cap scenario yields one violation."""
        owner = await seed.employee()
        await seed.cap("meal", 5000, dt.date(2024, 1, 1))
        report_id = await seed.report(owner, items=[
            {"expense_date": dt.date(2024, 5, 1), "category": "meal", "amount_cents": 7500},
        ])

        evaluation = await service.evaluate_report(owner, report_id)

        assert evaluation.is_valid is False
        assert len(evaluation.violations) == 1
        assert "$50.00" in evaluation.violations[0]

    @pytest.mark.asyncio
    async def test_idempotent(self, service, seed) -> None:
        """Two evaluations in a row return identical results."""
        owner = await seed.employee()
        await seed.cap("meal", 5000, dt.date(2024, 1, 1))
        report_id = await seed.report(owner, items=[
            {"category": "meal", "amount_cents": 7500},
            {"category": "supplies", "amount_cents": 100, "is_policy_exception": True},
        ])

        first = await service.evaluate_report(owner, report_id)
        second = await service.evaluate_report(owner, report_id)
        assert first == second
        assert len(first.warnings) == 1

    @pytest.mark.asyncio
    async def test_no_items_is_valid(self, service, seed) -> None:
        """An empty report evaluates as valid."""
        owner = await seed.employee()
        report_id = await seed.report(owner)
        evaluation = await service.evaluate_report(owner, report_id)
        assert evaluation.is_valid is True
        assert evaluation.violations == []

    @pytest.mark.asyncio
    async def test_access_rules(self, service, seed) -> None:
        """Strangers are Forbidden, reviewers allowed, missing ids NotFound."""
        owner = await seed.employee()
        stranger = await seed.employee()
        admin = await seed.employee(Role.ADMIN)
        report_id = await seed.report(owner, items=[{"category": "meal"}])

        with pytest.raises(ForbiddenError):
            await service.evaluate_report(stranger, report_id)
        assert (await service.evaluate_report(admin, report_id)).is_valid is True
        with pytest.raises(NotFoundError):
            await service.evaluate_report(owner, "missing")


    @pytest.mark.asyncio
    async def test_unknown_stored_category_is_internal(self, service, seed) -> None:
        """A category no enum member matches surfaces as InternalError."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"category": "yacht"}])
        with pytest.raises(InternalError):
            await service.evaluate_report(owner, report_id)

class TestAttachReceipt:
    """Tests for receipt uploads."""

    @pytest.mark.asyncio
    async def test_stores_bytes_and_row(self, service, seed, storage) -> None:
        """Upload lands in storage under the report/item prefix."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"id": "item-1"}])

        receipt = await service.attach_receipt(
            owner, report_id, "item-1", "Dinner Receipt.PDF", "application/pdf", b"%PDF-1.4",
        )

        assert receipt.file_key.startswith(f"receipts/{report_id}/item-1/")
        assert receipt.file_key.endswith("-Dinner_Receipt.PDF")
        assert storage.objects[receipt.file_key] == b"%PDF-1.4"
        assert await seed.count(Receipt) == 1

    @pytest.mark.asyncio
    async def test_only_drafts_accept_receipts(self, service, seed, storage) -> None:
        """Submitted reports are frozen."""
        owner = await seed.employee()
        report_id = await seed.report(owner, status=ReportStatus.SUBMITTED, items=[{"id": "item-1"}])
        with pytest.raises(ConflictError):
            await service.attach_receipt(owner, report_id, "item-1", "a.png", "image/png", b"x")
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_non_owner_forbidden(self, service, seed) -> None:
        """Only the owner may upload."""
        owner = await seed.employee()
        manager = await seed.employee(Role.MANAGER)
        report_id = await seed.report(owner, items=[{"id": "item-1"}])
        with pytest.raises(ForbiddenError):
            await service.attach_receipt(manager, report_id, "item-1", "a.png", "image/png", b"x")

    @pytest.mark.asyncio
    async def test_rejects_oversized_and_unknown_item(self, service, seed, settings) -> None:
        """Size limits and item membership are enforced."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"id": "item-1"}])
        with pytest.raises(ValidationFailedError):
            await service.attach_receipt(
                owner, report_id, "item-1", "big.png", "image/png", b"x" * (settings.receipt_max_bytes + 1),
            )
        with pytest.raises(NotFoundError):
            await service.attach_receipt(owner, report_id, "other-item", "a.png", "image/png", b"x")

    @pytest.mark.asyncio
    async def test_failed_insert_removes_stored_object(self, service, seed, storage) -> None:
        """If the row cannot be committed the uploaded bytes are deleted again."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"id": "item-1"}])

        failure = OperationalError("INSERT INTO receipts", {}, Exception("disk I/O error"))
        with patch.object(AsyncSession, "commit", AsyncMock(side_effect=failure)):
            with pytest.raises(InternalError):
                await service.attach_receipt(owner, report_id, "item-1", "a.png", "image/png", b"x")

        assert storage.objects == {}
        assert await seed.count(Receipt) == 0

    @pytest.mark.asyncio
    async def test_submit_during_upload_discards_object(self, session_factory, settings, seed) -> None:
        """A report submitted while its receipt is being stored rejects the insert and cleans up."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"id": "item-1"}])

        class SubmittingStorage(MemoryStorage):
            async def put(self, key: str, data: bytes, content_type: str) -> None:
                await super().put(key, data, content_type)
                await ExpenseService(session_factory, settings=settings, storage=self).submit_report(
                    owner, report_id,
                )

        storage = SubmittingStorage()
        service = ExpenseService(session_factory, settings=settings, storage=storage)

        with pytest.raises(ConflictError):
            await service.attach_receipt(owner, report_id, "item-1", "a.png", "image/png", b"x")

        assert storage.objects == {}
        assert await seed.count(Receipt) == 0
        assert (await seed.report_row(report_id)).status == ReportStatus.SUBMITTED.value

    @pytest.mark.asyncio
    async def test_receipt_limit_rechecked_on_insert(self, session_factory, settings, seed) -> None:
        """Receipts added by a parallel upload count against the per-item limit."""
        owner = await seed.employee()
        report_id = await seed.report(owner, items=[{"id": "item-1"}])

        class CrowdingStorage(MemoryStorage):
            async def put(self, key: str, data: bytes, content_type: str) -> None:
                await super().put(key, data, content_type)
                async with session_factory() as session:
                    for index in range(settings.receipt_max_files_per_item):
                        session.add(Receipt(
                            id=f"other-{index}",
                            expense_item_id="item-1",
                            file_key=f"receipts/other-{index}.png",
                            file_name="other.png",
                            mime_type="image/png",
                            size_bytes=1,
                            uploaded_by=owner.employee_id,
                        ))
                    await session.commit()

        storage = CrowdingStorage()
        service = ExpenseService(session_factory, settings=settings, storage=storage)

        with pytest.raises(ValidationFailedError):
            await service.attach_receipt(owner, report_id, "item-1", "a.png", "image/png", b"x")

        assert storage.objects == {}
        assert await seed.count(Receipt) == settings.receipt_max_files_per_item
