"""Expense Portal: expense report approvals and finance finalization."""

__version__ = "0.1.0"
