"""Input checks for expense reports; all run before anything is persisted."""

from __future__ import annotations

import re

from expense_portal.config import Settings
from expense_portal.errors import FieldError, ValidationFailedError
from expense_portal.modules.expenses.models import CreateReceiptReference, CreateReportRequest
from expense_portal.modules.storage.service import InvalidStorageKeyError, sanitize_key

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_currency(currency: str) -> str:
    return (currency or "").strip().upper()


def sanitize_file_name(file_name: str) -> str:
    """Reduce an uploaded file name to a safe single path segment."""
    base = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", base).lstrip(".")
    return cleaned[:128] or "receipt"


def receipt_errors(
    prefix: str,
    size_bytes: int,
    mime_type: str,
    settings: Settings,
) -> list[FieldError]:
    """Size and declared type checks shared by drafted and uploaded receipts."""
    errors: list[FieldError] = []
    if size_bytes <= 0:
        errors.append(FieldError(field=f"{prefix}size_bytes", message="receipt must not be empty"))
    elif size_bytes > settings.receipt_max_bytes:
        errors.append(FieldError(
            field=f"{prefix}size_bytes",
            message=f"receipt exceeds maximum size of {settings.receipt_max_bytes} bytes",
        ))
    if (mime_type or "").strip().lower() not in settings.allowed_receipt_types:
        errors.append(FieldError(
            field=f"{prefix}mime_type",
            message=f"unsupported receipt type '{mime_type}'",
        ))
    return errors


def _receipt_reference_errors(
    prefix: str, receipt: CreateReceiptReference, settings: Settings,
) -> list[FieldError]:
    errors = receipt_errors(prefix, receipt.size_bytes, receipt.mime_type, settings)
    try:
        sanitize_key(receipt.file_key)
    except InvalidStorageKeyError:
        errors.append(FieldError(field=f"{prefix}file_key", message="invalid storage key"))
    if not receipt.file_name.strip():
        errors.append(FieldError(field=f"{prefix}file_name", message="file name is required"))
    return errors


def validate_create_report(request: CreateReportRequest, settings: Settings) -> None:
    """Raise ValidationFailedError listing every problem with a new report."""
    errors: list[FieldError] = []

    currency = normalize_currency(request.currency)
    if not currency:
        errors.append(FieldError(field="currency", message="currency is required"))
    elif not _CURRENCY_RE.match(currency):
        errors.append(FieldError(field="currency", message="currency must be a three-letter code"))

    start, end = request.reporting_period_start, request.reporting_period_end
    window_ok = start <= end
    if not window_ok:
        errors.append(FieldError(
            field="reporting_period_end",
            message="reporting period end must not be before its start",
        ))

    for index, item in enumerate(request.items):
        prefix = f"items[{index}]."
        if window_ok and not (start <= item.expense_date <= end):
            errors.append(FieldError(
                field=f"{prefix}expense_date",
                message=f"expense date must fall within {start.isoformat()}..{end.isoformat()}",
            ))
        if item.amount_cents <= 0:
            errors.append(FieldError(
                field=f"{prefix}amount_cents", message="amount must be greater than zero",
            ))
        if len(item.receipts) > settings.receipt_max_files_per_item:
            errors.append(FieldError(
                field=f"{prefix}receipts",
                message=f"at most {settings.receipt_max_files_per_item} receipts per item",
            ))
        for receipt_index, receipt in enumerate(item.receipts):
            errors.extend(_receipt_reference_errors(
                f"{prefix}receipts[{receipt_index}].", receipt, settings,
            ))

    if errors:
        raise ValidationFailedError(errors)


def validate_receipt_upload(
    file_name: str,
    content_type: str,
    size_bytes: int,
    existing_count: int,
    settings: Settings,
) -> None:
    """Raise ValidationFailedError if an uploaded receipt may not be attached."""
    errors = receipt_errors("", size_bytes, content_type, settings)
    if not (file_name or "").strip():
        errors.append(FieldError(field="file_name", message="file name is required"))
    if existing_count >= settings.receipt_max_files_per_item:
        errors.append(FieldError(
            field="receipts",
            message=f"at most {settings.receipt_max_files_per_item} receipts per item",
        ))
    if errors:
        raise ValidationFailedError(errors)
