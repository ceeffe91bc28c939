"""
Invoice tax computation.

Handles:
- Reconstructing already-taxed state from the audit trail
- Splitting new work into one sales batch and one return batch per
  original invoice
- Calling the tax engine and recording every call
- Best-effort removal of engine transactions for voided invoices

Calling ``compute`` twice on an unchanged invoice returns no new items
the second time: what was sent is decided by the content of the audit
trail, not by locking. Callers must not run two computations for the
same invoice concurrently.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol
from uuid import UUID

import structlog

from invoice_tax.audit_store import AuditStore
from invoice_tax.client import OAuthTokenProvider, TaxEngineClient
from invoice_tax.config import TaxEngineSettings
from invoice_tax.engine_models import TaxRequest, TaxResponse
from invoice_tax.exceptions import (
    AuditStoreError,
    TaxComputationError,
    TaxEngineError,
)
from invoice_tax.models import Account, BillingItem, Invoice, NewItemToTax
from invoice_tax.request_builder import RequestBuilder
from invoice_tax.resolver import BillingPlatform, DeltaResolver, InvoiceDeltaResolver
from invoice_tax.response_mapper import ResponseMapper

logger = structlog.get_logger(__name__)


class TaxEngine(Protocol):
    def calculate_tax(self, request: TaxRequest) -> TaxResponse:
        ...

    def delete_transaction(self, document_code: str) -> None:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaxComputationOrchestrator:
    """
    Computes the new tax items of an invoice.

    The request builder and response mapper are injected so that other
    engines can reuse the same bookkeeping.
    """

    def __init__(
        self,
        store: AuditStore,
        engine: TaxEngine,
        resolver: DeltaResolver,
        request_builder: Optional[RequestBuilder] = None,
        response_mapper: Optional[ResponseMapper] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.engine = engine
        self.resolver = resolver
        self.request_builder = request_builder or RequestBuilder()
        self.response_mapper = response_mapper or ResponseMapper()
        self.clock = clock

    def compute(
        self,
        account: Account,
        invoice: Invoice,
        dry_run: bool,
        properties: Optional[Mapping[str, str]],
        tenant_id: UUID,
    ) -> list[BillingItem]:
        """
        Return the TAX items to add to ``invoice``.

        Every batch is attempted; if any of them failed, the first error
        is raised once all have run so that the invoice is not committed.

        Batches that succeeded before the error are already recorded, but
        their tax items are not returned. A retry treats those items as
        taxed and does not produce their tax again; the caller has to
        re-add them from the recorded response or void and recompute.
        """
        records = self.store.list_successful(invoice.id, tenant_id)
        already_taxed = self.store.taxed_items_with_adjustments(records)
        new_items = self.resolver.resolve_new_items_to_tax(
            invoice, already_taxed, tenant_id
        )

        new_tax_items: list[BillingItem] = []
        errors: list[TaxComputationError] = []

        sales_items = {
            n.taxable_item.id: n.taxable_item
            for n in new_items
            if not n.is_return_only
        }
        if sales_items:
            try:
                new_tax_items.extend(
                    self._tax_batch(
                        account, invoice, invoice, sales_items, None, None,
                        dry_run, properties, tenant_id,
                    )
                )
            except TaxComputationError as e:
                logger.error("Sales batch failed", invoice_id=str(invoice.id), error=e.message)
                errors.append(e)

        # One return document per original invoice
        returns_by_invoice: dict[UUID, list[NewItemToTax]] = {}
        for new_item in new_items:
            if new_item.adjustment_items is None:
                continue
            returns_by_invoice.setdefault(new_item.invoice.id, []).append(new_item)

        for original_invoice_id in sorted(returns_by_invoice, key=str):
            items_to_return = returns_by_invoice[original_invoice_id]
            original_invoice = items_to_return[0].invoice
            taxable_items = {n.taxable_item.id: n.taxable_item for n in items_to_return}
            adjustments = {
                n.taxable_item.id: list(n.adjustment_items or [])
                for n in items_to_return
            }
            try:
                reference_code = self._original_reference_code(
                    original_invoice_id, tenant_id
                )
                new_tax_items.extend(
                    self._tax_batch(
                        account, invoice, original_invoice, taxable_items,
                        adjustments, reference_code, dry_run, properties, tenant_id,
                    )
                )
            except TaxComputationError as e:
                logger.error(
                    "Return batch failed",
                    invoice_id=str(invoice.id),
                    original_invoice_id=str(original_invoice_id),
                    error=e.message,
                )
                errors.append(e)

        if errors:
            raise errors[0]
        return new_tax_items

    def _original_reference_code(
        self, original_invoice_id: UUID, tenant_id: UUID
    ) -> Optional[str]:
        records = self.store.list_successful(original_invoice_id, tenant_id)
        for record in reversed(records):
            if record.doc_code is not None:
                return record.doc_code
        return None

    def _tax_batch(
        self,
        account: Account,
        new_invoice: Invoice,
        invoice: Invoice,
        taxable_items: dict[UUID, BillingItem],
        adjustments: Optional[dict[UUID, list[BillingItem]]],
        original_reference_code: Optional[str],
        dry_run: bool,
        properties: Optional[Mapping[str, str]],
        tenant_id: UUID,
    ) -> list[BillingItem]:
        # Items and adjustments covered by this call, as recorded in the audit trail
        covered: dict[UUID, list[BillingItem]] = dict(adjustments or {})
        for item_id in taxable_items:
            covered.setdefault(item_id, [])

        result = self.request_builder.build(
            account,
            invoice,
            taxable_items,
            adjustments,
            original_reference_code,
            dry_run,
            properties,
            new_invoice.invoice_date,
        )
        if result.is_skipped:
            return []

        request = result.request
        logger.info(
            "Calculating tax",
            invoice_id=str(invoice.id),
            document_number=request.document_number,
            message_type=request.message_type.value,
            is_return=request.is_return,
            lines=len(request.line_items),
        )

        try:
            response = self.engine.calculate_tax(request)
        except TaxEngineError as e:
            if not dry_run and e.response_body is not None:
                self.store.append_error(
                    account.id, invoice.id, covered, e.response_body, self.clock(), tenant_id
                )
            logger.warning(
                "Tax calculation failed",
                invoice_id=str(invoice.id),
                status_code=e.status_code,
                response_body=e.response_body,
            )
            raise

        if not dry_run:
            self.store.append_success(
                account.id, new_invoice.id, covered, response, self.clock(), tenant_id
            )

        if not response.line_items:
            logger.info(
                "Nothing to tax",
                invoice_id=str(invoice.id),
                item_ids=[str(i) for i in covered],
            )
            return []

        tax_items: list[BillingItem] = []
        for line in response.line_items:
            taxable_item = self._correlate(line.line_item_id, taxable_items)
            if taxable_item is None:
                continue
            item_adjustments = (adjustments or {}).get(taxable_item.id)
            # A single adjustment (repair or item adjustment) carries the right service period
            linked_adjustment = (
                item_adjustments[0]
                if item_adjustments and len(item_adjustments) == 1
                else None
            )
            tax_items.extend(
                self.response_mapper.to_billing_items(
                    new_invoice.id, taxable_item, line, linked_adjustment
                )
            )
        return tax_items

    @staticmethod
    def _correlate(
        line_item_id: Optional[str], taxable_items: dict[UUID, BillingItem]
    ) -> Optional[BillingItem]:
        try:
            item_id = UUID(line_item_id) if line_item_id is not None else None
        except ValueError:
            item_id = None
        item = taxable_items.get(item_id) if item_id is not None else None
        if item is None:
            logger.warning("Response line does not match a sent item", line_item_id=line_item_id)
        return item

    # ------------------------------------------------------------------
    # Voids
    # ------------------------------------------------------------------

    def void_invoice(self, invoice_id: UUID, tenant_id: UUID) -> list[str]:
        """
        Remove the engine transactions recorded for a voided invoice.

        Best effort: failures are logged and never raised. Returns the
        document codes that were removed.
        """
        try:
            records = self.store.list_successful(invoice_id, tenant_id)
        except AuditStoreError as e:
            logger.warning(
                "Unable to load tax responses for voided invoice",
                invoice_id=str(invoice_id),
                error=e.message,
            )
            return []

        removed: list[str] = []
        for record in records:
            if record.doc_code is None or record.doc_code in removed:
                continue
            try:
                self.engine.delete_transaction(record.doc_code)
                removed.append(record.doc_code)
            except TaxEngineError as e:
                logger.warning(
                    "Unable to delete tax engine transaction",
                    invoice_id=str(invoice_id),
                    doc_code=record.doc_code,
                    status_code=e.status_code,
                )
        return removed

    def close(self) -> None:
        """Release the engine's HTTP connections and the store's pool."""
        close_engine = getattr(self.engine, "close", None)
        if callable(close_engine):
            close_engine()
        self.store.close()

    def __enter__(self) -> "TaxComputationOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_orchestrator(
    settings: Optional[TaxEngineSettings] = None,
    platform: Optional[BillingPlatform] = None,
    token_provider: Optional[Callable[[], str]] = None,
) -> TaxComputationOrchestrator:
    """
    Wire an orchestrator from settings: SQL audit store and HTTP engine client.

    Without a ``token_provider``, configured client credentials are used
    through ``OAuthTokenProvider``. Close the orchestrator when done.
    """
    settings = settings or TaxEngineSettings()
    if token_provider is None and settings.client_id and settings.client_secret:
        token_provider = OAuthTokenProvider(settings)
    return TaxComputationOrchestrator(
        store=AuditStore.from_url(settings.database_url),
        engine=TaxEngineClient(settings, token_provider=token_provider),
        resolver=InvoiceDeltaResolver(platform),
        request_builder=RequestBuilder(settings),
    )
