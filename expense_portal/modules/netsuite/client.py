"""Adapters that push finalized batches to NetSuite."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import httpx
from pydantic import BaseModel

from expense_portal.config import Settings
from expense_portal.logging_config import get_logger
from expense_portal.modules.finance.models import BatchView, JournalLine, JournalLineView, NetSuiteBatch

logger = get_logger(__name__)


class ExportResponse(BaseModel):
    """What NetSuite said about a batch."""

    succeeded: bool
    reference: Optional[str] = None
    message: Optional[str] = None


class ExportTransportError(Exception):
    """The export call itself failed: network error, bad status or unreadable body."""


def build_export_payload(batch: NetSuiteBatch, lines: Sequence[JournalLine]) -> dict[str, Any]:
    return {
        "batch": BatchView.model_validate(batch).model_dump(mode="json"),
        "lines": [
            JournalLineView.model_validate(line).model_dump(mode="json", by_alias=True)
            for line in lines
        ],
    }


class ExportAdapter(ABC):
    """Boundary to the external accounting system."""

    @abstractmethod
    async def export(self, batch: NetSuiteBatch, lines: Sequence[JournalLine]) -> ExportResponse:
        ...

    async def close(self) -> None:
        return None


class StubExportAdapter(ExportAdapter):
    """Accepts everything without leaving the process."""

    async def export(self, batch: NetSuiteBatch, lines: Sequence[JournalLine]) -> ExportResponse:
        logger.info("netsuite_export_stub", batch_id=batch.id, lines=len(lines))
        return ExportResponse(succeeded=True, reference="STUB-REF", message="Simulated export")


class NetSuiteRestAdapter(ExportAdapter):
    """Posts batches as JSON to ``{base_url}/batches``. No retries."""

    def __init__(
        self,
        base_url: str,
        account: str = "",
        token: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if account:
            headers["X-NetSuite-Account"] = account
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def export(self, batch: NetSuiteBatch, lines: Sequence[JournalLine]) -> ExportResponse:
        try:
            response = await self._client.post("/batches", json=build_export_payload(batch, lines))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("netsuite_export_rejected", batch_id=batch.id, status=exc.response.status_code)
            raise ExportTransportError(
                f"NetSuite responded with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("netsuite_export_transport_failed", batch_id=batch.id, error=str(exc))
            raise ExportTransportError(f"NetSuite request failed: {exc}") from exc

        if not response.content:
            return ExportResponse(succeeded=True)
        try:
            data = response.json()
        except ValueError as exc:
            raise ExportTransportError("NetSuite returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise ExportTransportError("NetSuite returned an unexpected body")

        result = ExportResponse(
            succeeded=bool(data.get("succeeded", True)),
            reference=data.get("reference"),
            message=data.get("message"),
        )
        logger.info(
            "netsuite_export_completed",
            batch_id=batch.id,
            succeeded=result.succeeded,
            reference=result.reference,
        )
        return result

    async def close(self) -> None:
        await self._client.aclose()


def build_export_adapter(settings: Settings) -> ExportAdapter:
    """The REST adapter when a base URL is configured, otherwise the stub."""
    if settings.netsuite_configured:
        return NetSuiteRestAdapter(
            base_url=settings.netsuite_base_url,
            account=settings.netsuite_account,
            token=settings.netsuite_token,
            timeout=settings.netsuite_timeout_seconds,
        )
    return StubExportAdapter()
