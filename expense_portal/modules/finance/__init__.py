"""Finance finalization pipeline."""

from expense_portal.modules.finance.models import (
    BatchStatus,
    BatchSummary,
    FinalizeRequest,
    JournalLine,
    NetSuiteBatch,
)
from expense_portal.modules.finance.service import FinanceService, journal_amount_cents

__all__ = [
    "BatchStatus",
    "BatchSummary",
    "FinalizeRequest",
    "FinanceService",
    "JournalLine",
    "NetSuiteBatch",
    "journal_amount_cents",
]
