"""Role-based access control for expense workflows."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel

from expense_portal.enums import LowercaseStrEnum
from expense_portal.errors import ForbiddenError
from expense_portal.logging_config import get_logger

logger = get_logger(__name__)


class Role(LowercaseStrEnum):
    """Employee roles recognised by the approval workflow."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    FINANCE = "finance"
    ADMIN = "admin"


class Permission(StrEnum):
    """Granular permissions for workflow actions."""

    CREATE_REPORT = "create_report"
    VIEW_ANY_REPORT = "view_any_report"
    RECORD_DECISION = "record_decision"
    REVIEW_QUEUE = "review_queue"
    FINALIZE_BATCH = "finalize_batch"
    VIEW_BATCHES = "view_batches"


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.EMPLOYEE: {
        Permission.CREATE_REPORT,
    },
    Role.MANAGER: {
        Permission.CREATE_REPORT,
        Permission.VIEW_ANY_REPORT,
        Permission.RECORD_DECISION,
        Permission.REVIEW_QUEUE,
    },
    Role.FINANCE: {
        Permission.CREATE_REPORT,
        Permission.VIEW_ANY_REPORT,
        Permission.RECORD_DECISION,
        Permission.FINALIZE_BATCH,
        Permission.VIEW_BATCHES,
    },
    Role.ADMIN: {
        Permission.CREATE_REPORT,
        Permission.VIEW_ANY_REPORT,
    },
}

REVIEWER_ROLES: frozenset[Role] = frozenset({Role.MANAGER, Role.FINANCE, Role.ADMIN})


class AuthenticatedUser(BaseModel):
    """Identity handed to the core by the auth collaborator; trusted as verified."""

    employee_id: str
    role: Role = Role.EMPLOYEE

    model_config = {"frozen": True}

    @property
    def is_reviewer(self) -> bool:
        """Managers, finance and admins may look at reports they do not own."""
        return self.role in REVIEWER_ROLES

    def has_permission(self, permission: Permission) -> bool:
        """Check if the user's role grants the given permission."""
        return permission in ROLE_PERMISSIONS.get(self.role, set())

    def require_permission(self, permission: Permission) -> None:
        """Raise ForbiddenError if the user lacks the required permission."""
        if not self.has_permission(permission):
            logger.warning(
                "permission_denied",
                employee_id=self.employee_id,
                role=str(self.role),
                permission=str(permission),
            )
            raise ForbiddenError(
                f"Employee '{self.employee_id}' with role '{self.role}' lacks permission '{permission}'"
            )

    def can_view(self, owner_id: str) -> bool:
        """Owners see their own reports; reviewers see everyone's."""
        return self.employee_id == owner_id or self.is_reviewer
