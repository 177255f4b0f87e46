"""NetSuite export adapters."""

from expense_portal.modules.netsuite.client import (
    ExportAdapter,
    ExportResponse,
    ExportTransportError,
    NetSuiteRestAdapter,
    StubExportAdapter,
    build_export_adapter,
)

__all__ = [
    "ExportAdapter",
    "ExportResponse",
    "ExportTransportError",
    "NetSuiteRestAdapter",
    "StubExportAdapter",
    "build_export_adapter",
]
