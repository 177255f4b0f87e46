"""Expense portal application entry point.

Quick Start:
    $ expense-portal init-db      # Create tables
    $ expense-portal serve        # Start the API server

Environment:
    EXPENSE_ENV                   # development/production/test (default: development)
    EXPENSE_LOG_LEVEL             # DEBUG/INFO/WARNING/ERROR (default: INFO)
    JWT_SECRET                    # HS256 secret for bearer tokens (required)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_portal import __version__
from expense_portal.api.routes import AppState, register_exception_handlers, router, set_state
from expense_portal.config import Settings, get_settings
from expense_portal.database import close_db, get_session_factory, init_db
from expense_portal.logging_config import get_logger, setup_logging
from expense_portal.modules.approvals.service import ApprovalService
from expense_portal.modules.employees.service import EmployeeService
from expense_portal.modules.expenses.service import ExpenseService
from expense_portal.modules.finance.service import FinanceService
from expense_portal.modules.manager.service import ManagerService
from expense_portal.modules.netsuite.client import ExportAdapter, build_export_adapter
from expense_portal.modules.storage.service import StorageBackend, build_storage
from expense_portal.security.auth import build_authenticator

setup_logging()
logger = get_logger(__name__)


def build_state(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    storage: Optional[StorageBackend] = None,
    export_adapter: Optional[ExportAdapter] = None,
) -> AppState:
    """Wire every service against one session factory."""
    factory = session_factory or get_session_factory()
    storage = storage or build_storage(settings)
    adapter = export_adapter or build_export_adapter(settings)
    employees = EmployeeService(factory)
    return AppState(
        settings=settings,
        authenticator=build_authenticator(settings, employees),
        employees=employees,
        expenses=ExpenseService(factory, settings=settings, storage=storage),
        approvals=ApprovalService(factory),
        manager=ManagerService(factory),
        finance=FinanceService(factory, adapter=adapter, settings=settings),
        export_adapter=adapter,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    settings = get_settings()
    logger.info("expense_portal_starting", version=__version__, env=settings.expense_env)

    await init_db()
    state = build_state(settings)
    set_state(state)

    logger.info(
        "expense_portal_ready",
        version=__version__,
        storage=settings.storage_provider,
        export_adapter=type(state.export_adapter).__name__,
        auth_bypass=settings.auth_bypass,
    )

    yield

    set_state(None)
    await state.export_adapter.close()
    await close_db()
    logger.info("expense_portal_stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Expense Portal",
        description="Expense report approvals and NetSuite finalization",
        version=__version__,
        lifespan=lifespan,
    )
    if settings.allowed_cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    register_exception_handlers(app)
    app.include_router(router, prefix="/api")
    return app


app = create_app()


def main() -> None:
    """Start the server."""
    settings = get_settings()
    uvicorn.run(
        "expense_portal.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.expense_env == "development",
        log_level=settings.expense_log_level.lower(),
    )


if __name__ == "__main__":
    main()
