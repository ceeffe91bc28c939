"""
Invoice Tax Engine
==================

Incremental, idempotent tax computation for billing invoices, delegating
rate determination to an external tax engine and recording every call.

Modules:
    models           - Billing entities consumed by the engine
    engine_models    - Tax engine request/response shapes
    extractor        - Summary aggregates over engine responses
    audit_store      - Append-only ledger of engine calls
    request_builder  - Sales/return request construction and checks
    response_mapper  - Response lines to billing TAX items
    resolver         - Items and adjustments still to be taxed
    client           - HTTP client for the tax engine
    orchestrator     - Per-invoice tax computation
    cli              - Audit trail inspection
"""

__version__ = "1.0.0"

from invoice_tax.audit_store import AuditStore
from invoice_tax.client import TaxEngineClient
from invoice_tax.config import TaxEngineSettings
from invoice_tax.orchestrator import TaxComputationOrchestrator, create_orchestrator
from invoice_tax.request_builder import RequestBuilder
from invoice_tax.resolver import InvoiceDeltaResolver
from invoice_tax.response_mapper import ResponseMapper

__all__ = [
    "AuditStore",
    "TaxEngineClient",
    "TaxEngineSettings",
    "TaxComputationOrchestrator",
    "create_orchestrator",
    "RequestBuilder",
    "InvoiceDeltaResolver",
    "ResponseMapper",
]
