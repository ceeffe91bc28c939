"""
Works out which invoice items still need to go to the tax engine.

Given the invoice and what the audit trail says was already taxed, the
resolver returns one ``NewItemToTax`` per item that is either brand new
(a sale) or carries adjustments that were never returned. Adjustments
may point at items living on earlier invoices (repairs); those items and
invoices are fetched through the ``BillingPlatform``.
"""

from __future__ import annotations

from typing import Optional, Protocol
from uuid import UUID

import structlog

from invoice_tax.models import BillingItem, Invoice, NewItemToTax

logger = structlog.get_logger(__name__)


class BillingPlatform(Protocol):
    """Read access to billing entities outside the invoice being processed."""

    def get_item(self, item_id: UUID, tenant_id: UUID) -> Optional[BillingItem]:
        ...

    def get_invoice(self, invoice_id: UUID, tenant_id: UUID) -> Optional[Invoice]:
        ...


class DeltaResolver(Protocol):
    def resolve_new_items_to_tax(
        self,
        invoice: Invoice,
        already_taxed: dict[UUID, set[UUID]],
        tenant_id: UUID,
    ) -> list[NewItemToTax]:
        ...


class InvoiceDeltaResolver:
    """Default ``DeltaResolver`` backed by a ``BillingPlatform``."""

    def __init__(self, platform: Optional[BillingPlatform] = None) -> None:
        self.platform = platform

    def resolve_new_items_to_tax(
        self,
        invoice: Invoice,
        already_taxed: dict[UUID, set[UUID]],
        tenant_id: UUID,
    ) -> list[NewItemToTax]:
        adjustments_by_item: dict[UUID, list[BillingItem]] = {}
        for item in invoice.items:
            if item.is_adjustment and item.linked_item_id is not None:
                adjustments_by_item.setdefault(item.linked_item_id, []).append(item)

        new_items: list[NewItemToTax] = []
        for item in invoice.items:
            if not item.is_taxable:
                continue
            untaxed = self._untaxed(
                adjustments_by_item.pop(item.id, []), already_taxed.get(item.id)
            )
            if item.id not in already_taxed:
                new_items.append(
                    NewItemToTax(item, invoice, untaxed or None, is_return_only=False)
                )
            elif untaxed:
                new_items.append(
                    NewItemToTax(item, invoice, untaxed, is_return_only=True)
                )

        # What is left adjusts items that are not on this invoice
        for linked_item_id, adjustments in adjustments_by_item.items():
            untaxed = self._untaxed(adjustments, already_taxed.get(linked_item_id))
            if not untaxed:
                continue
            original = self._lookup(linked_item_id, tenant_id)
            if original is None:
                logger.warning(
                    "Adjusted item not found, adjustments ignored",
                    invoice_id=str(invoice.id),
                    linked_item_id=str(linked_item_id),
                    adjustment_ids=[str(a.id) for a in untaxed],
                )
                continue
            taxable_item, original_invoice = original
            if not taxable_item.is_taxable:
                continue
            new_items.append(
                NewItemToTax(taxable_item, original_invoice, untaxed, is_return_only=True)
            )

        return new_items

    @staticmethod
    def _untaxed(
        adjustments: list[BillingItem], taxed_ids: Optional[set[UUID]]
    ) -> list[BillingItem]:
        taxed_ids = taxed_ids or set()
        return [a for a in adjustments if a.id not in taxed_ids]

    def _lookup(
        self, item_id: UUID, tenant_id: UUID
    ) -> Optional[tuple[BillingItem, Invoice]]:
        if self.platform is None:
            return None
        item = self.platform.get_item(item_id, tenant_id)
        if item is None:
            return None
        original_invoice = self.platform.get_invoice(item.invoice_id, tenant_id)
        if original_invoice is None:
            return None
        return item, original_invoice
