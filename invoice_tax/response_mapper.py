"""
Maps tax engine response lines back into billing TAX items.
"""

from __future__ import annotations

import json
from decimal import Decimal, ROUND_DOWN
from typing import Optional
from uuid import UUID

import structlog

from invoice_tax.engine_models import TaxBreakdown, TaxResponseLine, to_json
from invoice_tax.models import BillingItem

logger = structlog.get_logger(__name__)

DEFAULT_DESCRIPTION = "Tax"
TAX_RATE_KEY = "taxRate"

_RATE_PRECISION = Decimal("0.00001")


def describe(tax: TaxBreakdown) -> str:
    """Jurisdiction description, then tax code, then engine tax code."""
    jurisdiction = tax.jurisdiction
    if jurisdiction is not None and jurisdiction.value and jurisdiction.jurisdiction_type:
        return jurisdiction.description
    if tax.tax_code is not None:
        return tax.tax_code
    if tax.vertex_tax_code is not None:
        return tax.vertex_tax_code
    return DEFAULT_DESCRIPTION


def reconstruct_rate(calculated_tax: Decimal, taxable_amount: Decimal) -> Decimal:
    """calculated_tax / taxable_amount, floored to 5 decimal places."""
    if taxable_amount == 0:
        return Decimal("0")
    return (calculated_tax / taxable_amount).quantize(
        _RATE_PRECISION, rounding=ROUND_DOWN
    )


def with_tax_rate(item_details: Optional[str], tax_rate: Decimal) -> Optional[str]:
    """
    Return ``item_details`` with ``taxRate`` merged in.

    Payloads that are not a JSON object are returned untouched.
    """
    if item_details is None or not item_details.strip():
        return to_json({TAX_RATE_KEY: tax_rate})

    try:
        parsed = json.loads(item_details)
    except ValueError:
        logger.warning("Unable to parse item details", item_details=item_details)
        return item_details

    if not isinstance(parsed, dict):
        logger.warning(
            "Item details are not a JSON object, tax rate not recorded",
            item_details=item_details,
        )
        return item_details

    merged = dict(parsed)
    merged[TAX_RATE_KEY] = tax_rate
    return to_json(merged)


class ResponseMapper:
    """Turns one response line into zero or more TAX items."""

    def to_billing_items(
        self,
        invoice_id: UUID,
        taxable_item: BillingItem,
        response_line: TaxResponseLine,
        linked_adjustment: Optional[BillingItem] = None,
    ) -> list[BillingItem]:
        """
        ``linked_adjustment`` is the single adjustment of the item, if any:
        its service period then replaces the taxable item's.
        """
        period_source = linked_adjustment or taxable_item

        if not response_line.taxes:
            if response_line.total_tax is None:
                return []
            return [
                BillingItem.create_tax_item(
                    taxable_item,
                    invoice_id,
                    response_line.total_tax,
                    DEFAULT_DESCRIPTION,
                    period_source.start_date,
                    period_source.end_date,
                )
            ]

        tax_items: list[BillingItem] = []
        for tax in response_line.taxes:
            if tax.calculated_tax is None:
                logger.info(
                    "No calculated tax on breakdown entry",
                    item_id=str(taxable_item.id),
                    jurisdiction=tax.jurisdiction.to_dict() if tax.jurisdiction else None,
                )
                continue

            tax_rate = tax.effective_rate
            if tax_rate is None:
                tax_rate = reconstruct_rate(tax.calculated_tax, taxable_item.amount)

            tax_items.append(
                BillingItem.create_tax_item(
                    taxable_item,
                    invoice_id,
                    tax.calculated_tax,
                    describe(tax),
                    period_source.start_date,
                    period_source.end_date,
                    item_details=with_tax_rate(taxable_item.item_details, tax_rate),
                )
            )
        return tax_items
