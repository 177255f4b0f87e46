"""API route definitions for the expense portal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from expense_portal import __version__
from expense_portal.config import Settings
from expense_portal.errors import InternalError, ServiceError
from expense_portal.logging_config import get_logger
from expense_portal.modules.approvals.models import ApprovalView, DecisionRequest
from expense_portal.modules.approvals.service import ApprovalService
from expense_portal.modules.employees.service import EmployeeService
from expense_portal.modules.expenses.models import CreateReportRequest, ExpenseReportView, ReceiptView
from expense_portal.modules.expenses.service import ExpenseService
from expense_portal.modules.finance.models import BatchView, FinalizeRequest
from expense_portal.modules.finance.service import FinanceService
from expense_portal.modules.manager.service import ManagerService
from expense_portal.modules.netsuite.client import ExportAdapter
from expense_portal.security.auth import Authenticator
from expense_portal.security.rbac import AuthenticatedUser

logger = get_logger(__name__)

router = APIRouter()


# ── Application state (set from main.py) ────────────────────────────

@dataclass
class AppState:
    """Services shared by every request."""

    settings: Settings
    authenticator: Authenticator
    employees: EmployeeService
    expenses: ExpenseService
    approvals: ApprovalService
    manager: ManagerService
    finance: FinanceService
    export_adapter: ExportAdapter


_state: Optional[AppState] = None


def set_state(state: Optional[AppState]) -> None:
    """Inject the application state."""
    global _state
    _state = state


def get_state() -> AppState:
    """Get the application state, raising if not initialized."""
    if _state is None:
        raise HTTPException(status_code=503, detail="System not initialized")
    return _state


async def current_user(authorization: Optional[str] = Header(default=None)) -> AuthenticatedUser:
    """Resolve the caller; failures become 401 through the ServiceError handler."""
    return await get_state().authenticator.authenticate(authorization)


# ── Error rendering ──────────────────────────────────────────────────

def _field_path(loc: tuple[Any, ...]) -> str:
    parts = list(loc)
    if parts and parts[0] in ("body", "query", "path", "header", "form"):
        parts = parts[1:]
    path = ""
    for part in parts:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "body"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if isinstance(exc, InternalError) or exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, code=exc.code, status=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": _field_path(tuple(error.get("loc", ()))), "message": error.get("msg", "invalid")}
        for error in exc.errors()
    ]
    logger.info("request_invalid", path=request.url.path, errors=len(details))
    return JSONResponse(status_code=422, content={"error": "validation", "details": details})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health_check() -> dict[str, Any]:
    """System health check."""
    state = get_state()
    return {
        "status": "healthy",
        "version": __version__,
        "environment": state.settings.expense_env,
        "export_adapter": type(state.export_adapter).__name__,
    }


# ── Reports ──────────────────────────────────────────────────────────

@router.post("/reports", status_code=201)
async def create_report(
    request: CreateReportRequest, user: AuthenticatedUser = Depends(current_user),
) -> dict[str, Any]:
    """Start a draft report."""
    detail = await get_state().expenses.create_report(user, request)
    return {"report": detail}


@router.get("/reports/{report_id}")
async def get_report(report_id: str, user: AuthenticatedUser = Depends(current_user)) -> dict[str, Any]:
    detail = await get_state().expenses.get_report(user, report_id)
    return {"report": detail}


@router.post("/reports/{report_id}/submit")
async def submit_report(report_id: str, user: AuthenticatedUser = Depends(current_user)) -> dict[str, Any]:
    """Hand a draft over to the approval workflow."""
    report = await get_state().expenses.submit_report(user, report_id)
    return {"report": ExpenseReportView.model_validate(report)}


@router.get("/reports/{report_id}/policy")
async def evaluate_report(report_id: str, user: AuthenticatedUser = Depends(current_user)) -> dict[str, Any]:
    evaluation = await get_state().expenses.evaluate_report(user, report_id)
    return {"evaluation": evaluation}


@router.post("/reports/{report_id}/items/{item_id}/receipts", status_code=201)
async def upload_receipt(
    report_id: str,
    item_id: str,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(current_user),
) -> dict[str, Any]:
    """Attach a receipt file to a draft report's line item."""
    state = get_state()
    # one byte past the limit is enough to reject oversized uploads
    data = await file.read(state.settings.receipt_max_bytes + 1)
    receipt = await state.expenses.attach_receipt(
        user,
        report_id,
        item_id,
        file_name=file.filename or "",
        content_type=file.content_type or "",
        data=data,
    )
    return {"receipt": ReceiptView.model_validate(receipt)}


# ── Approvals ────────────────────────────────────────────────────────

@router.post("/approvals/{report_id}", status_code=201)
async def record_decision(
    report_id: str, decision: DecisionRequest, user: AuthenticatedUser = Depends(current_user),
) -> dict[str, Any]:
    """Record a manager or finance decision."""
    approval = await get_state().approvals.record_decision(user, report_id, decision)
    return {"approval": ApprovalView.model_validate(approval)}


@router.get("/approvals/{report_id}")
async def list_approvals(report_id: str, user: AuthenticatedUser = Depends(current_user)) -> dict[str, Any]:
    approvals = await get_state().approvals.list_approvals(user, report_id)
    return {"approvals": [ApprovalView.model_validate(approval) for approval in approvals]}


# ── Manager ──────────────────────────────────────────────────────────

@router.get("/manager/queue")
async def manager_queue(user: AuthenticatedUser = Depends(current_user)) -> dict[str, Any]:
    queue = await get_state().manager.fetch_queue(user)
    return {"queue": queue}


# ── Finance ──────────────────────────────────────────────────────────

@router.post("/finance/finalize", status_code=201)
async def finalize_reports(
    request: FinalizeRequest, user: AuthenticatedUser = Depends(current_user),
) -> dict[str, Any]:
    """Finalize reports into a NetSuite batch."""
    batch = await get_state().finance.finalize_reports(user, request)
    return {"batch": BatchView.model_validate(batch)}


@router.get("/finance/batches")
async def recent_batches(
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    user: AuthenticatedUser = Depends(current_user),
) -> dict[str, Any]:
    batches = await get_state().finance.recent_batches(user, limit=limit)
    return {"batches": batches}
