#!/usr/bin/env python3
"""
Quick Start Example
===================

Taxes a $100 charge against a stand-in tax engine charging 8.63%, then
shows that running the computation again produces nothing new.

Usage:
    python examples/quick_start.py
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from uuid import uuid4

from invoice_tax.audit_store import AuditStore
from invoice_tax.engine_models import TaxRequest, TaxResponse, TaxResponseLine
from invoice_tax.models import Account, BillingItem, Invoice, InvoiceItemType
from invoice_tax.orchestrator import TaxComputationOrchestrator
from invoice_tax.resolver import InvoiceDeltaResolver


class FlatRateEngine:
    """Charges a single rate on every line."""

    def __init__(self, rate: Decimal) -> None:
        self.rate = rate

    def calculate_tax(self, request: TaxRequest) -> TaxResponse:
        lines = [
            TaxResponseLine(
                line_item_id=line.line_item_id,
                total_tax=(line.extended_price * self.rate).quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP
                ),
            )
            for line in request.line_items
        ]
        return TaxResponse(
            document_number=request.document_number,
            document_date=request.document_date,
            line_items=lines,
        )

    def delete_transaction(self, document_code: str) -> None:
        pass


def main() -> None:
    tenant_id = uuid4()
    account = Account(id=uuid4(), external_key="ACME-001", country="US")
    invoice = Invoice(
        id=uuid4(),
        account_id=account.id,
        invoice_number=1,
        invoice_date=date.today(),
        currency="USD",
    )
    invoice.items.append(
        BillingItem(
            id=uuid4(),
            invoice_id=invoice.id,
            account_id=account.id,
            item_type=InvoiceItemType.EXTERNAL_CHARGE,
            amount=Decimal("100.00"),
            currency="USD",
            start_date=invoice.invoice_date,
            description="Consulting",
        )
    )

    orchestrator = TaxComputationOrchestrator(
        store=AuditStore.from_url("sqlite://"),
        engine=FlatRateEngine(Decimal("0.0863")),
        resolver=InvoiceDeltaResolver(),
    )

    tax_items = orchestrator.compute(account, invoice, False, {}, tenant_id)
    for item in tax_items:
        print(f"{item.description}: ${item.amount}")
    invoice.items.extend(tax_items)

    again = orchestrator.compute(account, invoice, False, {}, tenant_id)
    print(f"New items on second run: {len(again)}")


if __name__ == "__main__":
    main()
