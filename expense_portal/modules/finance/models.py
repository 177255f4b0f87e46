"""Export batches and the journal lines posted in them."""

from __future__ import annotations

import datetime as dt
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from expense_portal.database import Base
from expense_portal.enums import LowercaseStrEnum

DEFAULT_GL_ACCOUNT = "EXPENSES"


class BatchStatus(LowercaseStrEnum):
    PENDING = "pending"
    EXPORTED = "exported"
    FAILED = "failed"


class NetSuiteBatch(Base):
    """One finalization call; groups the journal lines it produced."""

    __tablename__ = "netsuite_batches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    batch_reference = Column(String(128), nullable=False)
    finalized_by = Column(String(36), ForeignKey("employees.id"), nullable=False)
    finalized_at = Column(DateTime(timezone=True), default=lambda: dt.datetime.now(dt.UTC), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=BatchStatus.PENDING.value)
    exported_at = Column(DateTime(timezone=True), nullable=True)
    netsuite_response = Column(JSON, nullable=True)


class JournalLine(Base):
    """Immutable GL posting for one report inside a batch."""

    __tablename__ = "journal_lines"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    batch_id = Column(String(36), ForeignKey("netsuite_batches.id"), nullable=False, index=True)
    report_id = Column(String(36), ForeignKey("expense_reports.id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    gl_account = Column(String(64), nullable=False, default=DEFAULT_GL_ACCOUNT)
    amount_cents = Column(Integer, nullable=False, default=0)
    department = Column(String(64), nullable=True)
    class_ = Column("class", String(64), nullable=True)
    memo = Column(Text, nullable=True)
    tax_code = Column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("batch_id", "line_number"),
    )


# =============================================================================
# Pydantic schemas
# =============================================================================


class FinalizeRequest(BaseModel):
    """Body of ``POST /finance/finalize``."""

    report_ids: list[str] = Field(default_factory=list)
    batch_reference: str = ""


class JournalLineView(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    batch_id: str
    report_id: str
    line_number: int
    gl_account: str
    amount_cents: int
    department: Optional[str] = None
    class_: Optional[str] = Field(default=None, serialization_alias="class")
    memo: Optional[str] = None
    tax_code: Optional[str] = None


class BatchView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_reference: str
    finalized_by: str
    finalized_at: dt.datetime
    status: BatchStatus
    exported_at: Optional[dt.datetime] = None
    netsuite_response: Optional[dict[str, Any]] = None


class BatchSummary(BaseModel):
    """Row of ``recent_batches``: a batch with its aggregated lines."""

    id: str
    batch_reference: str
    status: BatchStatus
    finalized_at: dt.datetime
    exported_at: Optional[dt.datetime] = None
    report_count: int = 0
    total_amount_cents: int = 0
