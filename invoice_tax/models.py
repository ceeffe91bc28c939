"""
Billing platform entities consumed by the tax engine.

The core only reads these; new tax items are returned as fresh
``BillingItem`` values for the platform to attach to the invoice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4


class InvoiceItemType(Enum):
    EXTERNAL_CHARGE = "EXTERNAL_CHARGE"
    FIXED = "FIXED"
    RECURRING = "RECURRING"
    USAGE = "USAGE"
    ITEM_ADJ = "ITEM_ADJ"
    REPAIR_ADJ = "REPAIR_ADJ"
    TAX = "TAX"


TAXABLE_ITEM_TYPES = frozenset(
    {
        InvoiceItemType.EXTERNAL_CHARGE,
        InvoiceItemType.FIXED,
        InvoiceItemType.RECURRING,
        InvoiceItemType.USAGE,
    }
)

ADJUSTMENT_ITEM_TYPES = frozenset(
    {InvoiceItemType.ITEM_ADJ, InvoiceItemType.REPAIR_ADJ}
)


@dataclass(frozen=True)
class BillingItem:
    """A charge, adjustment or tax line on an invoice."""

    id: UUID
    invoice_id: UUID
    account_id: UUID
    item_type: InvoiceItemType
    amount: Decimal
    currency: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    plan_name: Optional[str] = None
    phase_name: Optional[str] = None
    usage_name: Optional[str] = None
    item_details: Optional[str] = None
    linked_item_id: Optional[UUID] = None

    @property
    def is_taxable(self) -> bool:
        return self.item_type in TAXABLE_ITEM_TYPES

    @property
    def is_adjustment(self) -> bool:
        return self.item_type in ADJUSTMENT_ITEM_TYPES

    @classmethod
    def create_tax_item(
        cls,
        taxable_item: "BillingItem",
        invoice_id: UUID,
        amount: Decimal,
        description: str,
        start_date: Optional[date],
        end_date: Optional[date],
        item_details: Optional[str] = None,
    ) -> "BillingItem":
        """Build a new TAX item linked to the item it taxes."""
        return cls(
            id=uuid4(),
            invoice_id=invoice_id,
            account_id=taxable_item.account_id,
            item_type=InvoiceItemType.TAX,
            amount=amount,
            currency=taxable_item.currency,
            start_date=start_date,
            end_date=end_date,
            description=description,
            item_details=item_details,
            linked_item_id=taxable_item.id,
        )


@dataclass
class Invoice:
    id: UUID
    account_id: UUID
    invoice_number: int
    invoice_date: date
    currency: str
    items: list[BillingItem] = field(default_factory=list)

    def find_item(self, item_id: UUID) -> Optional[BillingItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


@dataclass
class Account:
    id: UUID
    external_key: Optional[str] = None
    currency: str = "USD"
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


@dataclass
class NewItemToTax:
    """
    A taxable item that still needs an engine call.

    ``adjustment_items`` is None for a plain sale. ``invoice`` is the
    invoice the taxable item lives on, which differs from the invoice
    being processed for repairs.
    """

    taxable_item: BillingItem
    invoice: Invoice
    adjustment_items: Optional[list[BillingItem]] = None
    is_return_only: bool = False


def sum_amounts(items: Optional[list[BillingItem]]) -> Decimal:
    if not items:
        return Decimal("0")
    return sum((item.amount for item in items), Decimal("0"))
