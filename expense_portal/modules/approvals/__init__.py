"""Approval workflow."""

from expense_portal.modules.approvals.models import Approval, ApprovalStatus, DecisionRequest
from expense_portal.modules.approvals.service import ApprovalService

__all__ = ["Approval", "ApprovalService", "ApprovalStatus", "DecisionRequest"]
