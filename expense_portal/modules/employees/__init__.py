"""Employee directory."""

from expense_portal.modules.employees.models import Employee
from expense_portal.modules.employees.service import EmployeeService

__all__ = ["Employee", "EmployeeService"]
