"""Operator CLI for the expense portal."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from expense_portal.config import get_settings
from expense_portal.database import close_db, init_db
from expense_portal.errors import ServiceError
from expense_portal.logging_config import setup_logging
from expense_portal.modules.expenses.models import ExpenseCategory
from expense_portal.security.rbac import AuthenticatedUser, Role

app = typer.Typer(help="Expense portal operator CLI", no_args_is_help=True)
console = Console()


@app.callback()
def _configure() -> None:
    setup_logging()


def _async_run(coro):
    """Run an async coroutine."""
    return asyncio.run(coro)


def _parse_date(value: Optional[str], option: str) -> Optional[dt.date]:
    if value is None:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got '{value}'", param_hint=option)


def _fail(exc: ServiceError) -> None:
    console.print(f"[red]✗[/red] {exc.message}")
    raise typer.Exit(code=1)


@app.command()
def serve() -> None:
    """Start the API server."""
    from expense_portal.main import main

    main()


@app.command("init-db")
def init_database() -> None:
    """Create all tables."""

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    _async_run(_run())
    console.print(f"[green]✓[/green] Database ready: {get_settings().database_url}")


@app.command("add-employee")
def add_employee(
    hr_identifier: str = typer.Argument(..., help="HR directory identifier"),
    role: Role = typer.Option(Role.EMPLOYEE, "--role", "-r", help="Workflow role"),
    department: Optional[str] = typer.Option(None, "--department", "-d"),
    manager_id: Optional[str] = typer.Option(None, "--manager-id", help="Employee id of the manager"),
) -> None:
    """Register an employee."""
    from expense_portal.modules.employees.service import EmployeeService

    async def _run():
        try:
            await init_db()
            return await EmployeeService().add_employee(hr_identifier, role, department, manager_id)
        finally:
            await close_db()

    try:
        employee = _async_run(_run())
    except ServiceError as exc:
        _fail(exc)
    console.print(f"[green]✓[/green] {employee.hr_identifier} ({employee.role}) id={employee.id}")


@app.command("add-cap")
def add_cap(
    category: ExpenseCategory = typer.Argument(..., help="Expense category the cap applies to"),
    amount_cents: int = typer.Argument(..., help="Limit in cents"),
    active_from: str = typer.Option(..., "--from", help="First day the cap applies (YYYY-MM-DD)"),
    active_to: Optional[str] = typer.Option(None, "--to", help="Last day the cap applies (YYYY-MM-DD)"),
    notes: Optional[str] = typer.Option(None, "--notes"),
) -> None:
    """Add a category spending cap."""
    from expense_portal.modules.policy.engine import format_cents
    from expense_portal.modules.policy.service import PolicyCapService

    start = _parse_date(active_from, "--from")
    end = _parse_date(active_to, "--to")

    async def _run():
        try:
            await init_db()
            return await PolicyCapService().add_cap(
                category, amount_cents, start, end, notes=notes,
            )
        finally:
            await close_db()

    try:
        cap = _async_run(_run())
    except ServiceError as exc:
        _fail(exc)
    until = cap.active_to.isoformat() if cap.active_to else "open"
    console.print(
        f"[green]✓[/green] {cap.category} cap {format_cents(cap.amount_cents)} "
        f"from {cap.active_from.isoformat()} to {until}"
    )


@app.command("issue-token")
def issue_token_command(
    employee_id: str = typer.Argument(..., help="Employee id for the token subject"),
    role: Role = typer.Option(Role.EMPLOYEE, "--role", "-r"),
    ttl: Optional[int] = typer.Option(None, "--ttl", help="Lifetime in seconds"),
) -> None:
    """Print a bearer token for local development."""
    from expense_portal.security.auth import issue_token

    settings = get_settings()
    if not settings.jwt_secret:
        console.print("[red]✗[/red] JWT_SECRET is not configured")
        raise typer.Exit(code=1)
    typer.echo(issue_token(settings, employee_id, role, ttl_seconds=ttl))


@app.command()
def batches(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of batches to show"),
) -> None:
    """Show the most recent NetSuite batches."""
    from expense_portal.modules.finance.service import FinanceService

    operator = AuthenticatedUser(employee_id="cli", role=Role.FINANCE)

    async def _run():
        try:
            await init_db()
            return await FinanceService().recent_batches(operator, limit=limit)
        finally:
            await close_db()

    rows = _async_run(_run())
    if not rows:
        console.print("[dim]No batches yet.[/dim]")
        return

    table = Table(title="Recent batches")
    table.add_column("Reference", style="cyan")
    table.add_column("Status")
    table.add_column("Finalized")
    table.add_column("Reports", justify="right")
    table.add_column("Total", justify="right")
    for row in rows:
        table.add_row(
            row.batch_reference,
            str(row.status),
            row.finalized_at.strftime("%Y-%m-%d %H:%M"),
            str(row.report_count),
            f"{row.total_amount_cents / 100:.2f}",
        )
    console.print(table)


if __name__ == "__main__":
    app()
