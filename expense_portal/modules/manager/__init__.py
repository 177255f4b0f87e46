"""Manager review queue."""

from expense_portal.modules.manager.models import PolicyFlag, QueueEntry
from expense_portal.modules.manager.service import ManagerService

__all__ = ["ManagerService", "PolicyFlag", "QueueEntry"]
