"""Append-only audit trail written inside the caller's transaction."""

from __future__ import annotations

import datetime as dt
import hashlib
import json
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.ext.asyncio import AsyncSession

from expense_portal.database import Base
from expense_portal.logging_config import get_logger

logger = get_logger(__name__)


class AuditLog(Base):
    """Persistent audit log entry."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(36), nullable=False)
    event_type = Column(String(64), nullable=False, index=True)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    performed_by = Column(String(36), nullable=True)
    performed_at = Column(DateTime(timezone=True), default=lambda: dt.datetime.now(dt.UTC), nullable=False)
    signature_hash = Column(String(64), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )


def compute_signature(
    entity_type: str,
    entity_id: str,
    event_type: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    performed_by: Optional[str],
    performed_at: dt.datetime,
) -> str:
    """SHA-256 over the canonical JSON form of an entry."""
    canonical = json.dumps(
        {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "event_type": event_type,
            "old_value": old_value,
            "new_value": new_value,
            "performed_by": performed_by,
            "performed_at": performed_at.isoformat(),
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def record_audit(
    session: AsyncSession,
    entity_type: str,
    entity_id: str,
    event_type: str,
    performed_by: Optional[str],
    old_value: Optional[dict[str, Any]] = None,
    new_value: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row on ``session``; it commits or rolls back with the change it describes."""
    performed_at = dt.datetime.now(dt.UTC)
    entry = AuditLog(
        id=str(uuid4()),
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type,
        old_value=old_value,
        new_value=new_value,
        performed_by=performed_by,
        performed_at=performed_at,
        signature_hash=compute_signature(
            entity_type, entity_id, event_type, old_value, new_value, performed_by, performed_at,
        ),
    )
    session.add(entry)
    logger.debug("audit_staged", entity_type=entity_type, entity_id=entity_id, event_type=event_type)
    return entry
