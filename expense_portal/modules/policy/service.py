"""Policy cap administration and lookup."""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal.database import get_session_factory
from expense_portal.errors import FieldError, ValidationFailedError
from expense_portal.logging_config import get_logger
from expense_portal.modules.expenses.models import ExpenseCategory
from expense_portal.modules.policy.models import PolicyCap

logger = get_logger(__name__)


async def load_caps(
    session: AsyncSession, categories: Optional[Iterable[ExpenseCategory | str]] = None,
) -> list[PolicyCap]:
    """Load caps, restricted to ``categories`` when given."""
    stmt = select(PolicyCap).order_by(PolicyCap.category, PolicyCap.active_from, PolicyCap.id)
    if categories is not None:
        wanted = sorted({ExpenseCategory(c).value for c in categories})
        if not wanted:
            return []
        stmt = stmt.where(PolicyCap.category.in_(wanted))
    result = await session.execute(stmt)
    return list(result.scalars().all())


class PolicyCapService:
    """Operator-facing management of category caps."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def add_cap(
        self,
        category: ExpenseCategory,
        amount_cents: int,
        active_from: dt.date,
        active_to: Optional[dt.date] = None,
        policy_key: Optional[str] = None,
        limit_type: str = "per_item",
        notes: Optional[str] = None,
    ) -> PolicyCap:
        """Insert a new cap after checking amount and range."""
        errors: list[FieldError] = []
        if amount_cents <= 0:
            errors.append(FieldError(field="amount_cents", message="must be greater than zero"))
        if active_to is not None and active_to < active_from:
            errors.append(FieldError(field="active_to", message="must not be before active_from"))
        if errors:
            raise ValidationFailedError(errors)

        category = ExpenseCategory(category)
        cap = PolicyCap(
            id=str(uuid4()),
            policy_key=policy_key or f"{category.value}_cap",
            category=category.value,
            limit_type=limit_type,
            amount_cents=amount_cents,
            notes=notes,
            active_from=active_from,
            active_to=active_to,
        )
        async with self._session_factory() as session:
            session.add(cap)
            await session.commit()

        logger.info(
            "policy_cap_added",
            cap_id=cap.id,
            category=category.value,
            amount_cents=amount_cents,
            active_from=active_from.isoformat(),
        )
        return cap

    async def list_caps(
        self, categories: Optional[Iterable[ExpenseCategory | str]] = None,
    ) -> list[PolicyCap]:
        async with self._session_factory() as session:
            return await load_caps(session, categories)
