"""Shared fixtures: billing entities, an in-memory audit store and a fake engine."""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID, uuid4

import pytest

from invoice_tax.audit_store import AuditStore
from invoice_tax.engine_models import (
    Jurisdiction,
    TaxBreakdown,
    TaxRequest,
    TaxResponse,
    TaxResponseLine,
)
from invoice_tax.exceptions import TaxEngineError
from invoice_tax.models import Account, BillingItem, Invoice, InvoiceItemType

INVOICE_DATE = date(2024, 6, 15)


class FakeTaxEngine:
    """
    Flat-rate stand-in for the tax engine.

    Records every request; ``fail_with`` makes the next calls raise.
    """

    def __init__(self, rate: str = "0.0863", with_breakdown: bool = False) -> None:
        self.rate = Decimal(rate)
        self.with_breakdown = with_breakdown
        self.requests: list[TaxRequest] = []
        self.deleted: list[str] = []
        self.fail_with: Optional[TaxEngineError] = None
        self.fail_delete_for: set[str] = set()
        self.closed = False

    def calculate_tax(self, request: TaxRequest) -> TaxResponse:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with

        lines = []
        for line in request.line_items:
            tax = (line.extended_price * self.rate).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
            if self.with_breakdown:
                lines.append(
                    TaxResponseLine(
                        line_item_id=line.line_item_id,
                        line_item_number=line.line_item_number,
                        total_tax=tax,
                        taxes=[
                            TaxBreakdown(
                                calculated_tax=tax,
                                effective_rate=self.rate,
                                taxable=line.extended_price,
                                jurisdiction=Jurisdiction("STATE", "CA"),
                            )
                        ],
                    )
                )
            else:
                lines.append(
                    TaxResponseLine(
                        line_item_id=line.line_item_id,
                        line_item_number=line.line_item_number,
                        total_tax=tax,
                    )
                )
        return TaxResponse(
            document_number=request.document_number,
            document_date=request.document_date,
            total=sum((l.extended_price for l in request.line_items), Decimal("0")),
            total_tax=sum((l.total_tax for l in lines), Decimal("0")),
            line_items=lines,
        )

    def delete_transaction(self, document_code: str) -> None:
        if document_code in self.fail_delete_for:
            raise TaxEngineError("not found", status_code=404)
        self.deleted.append(document_code)

    def close(self) -> None:
        self.closed = True


class FakePlatform:
    """In-memory billing platform lookups for repairs."""

    def __init__(self, *invoices: Invoice) -> None:
        self.invoices = {inv.id: inv for inv in invoices}

    def get_item(self, item_id: UUID, tenant_id: UUID) -> Optional[BillingItem]:
        for invoice in self.invoices.values():
            item = invoice.find_item(item_id)
            if item is not None:
                return item
        return None

    def get_invoice(self, invoice_id: UUID, tenant_id: UUID) -> Optional[Invoice]:
        return self.invoices.get(invoice_id)


def make_invoice(account: Account, number: int = 1, invoice_date: date = INVOICE_DATE) -> Invoice:
    return Invoice(
        id=uuid4(),
        account_id=account.id,
        invoice_number=number,
        invoice_date=invoice_date,
        currency="USD",
    )


def make_item(
    invoice: Invoice,
    amount: str,
    item_type: InvoiceItemType = InvoiceItemType.EXTERNAL_CHARGE,
    linked_item_id: Optional[UUID] = None,
    start_date: date = INVOICE_DATE,
    end_date: Optional[date] = date(2024, 7, 15),
    item_details: Optional[str] = None,
    add: bool = True,
) -> BillingItem:
    item = BillingItem(
        id=uuid4(),
        invoice_id=invoice.id,
        account_id=invoice.account_id,
        item_type=item_type,
        amount=Decimal(amount),
        currency=invoice.currency,
        start_date=start_date,
        end_date=end_date,
        description="Consulting",
        item_details=item_details,
        linked_item_id=linked_item_id,
    )
    if add:
        invoice.items.append(item)
    return item


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def account() -> Account:
    return Account(
        id=uuid4(),
        external_key="ACME-001",
        address1="415 Mission St",
        city="San Francisco",
        state_or_province="CA",
        postal_code="94105",
        country="US",
    )


@pytest.fixture
def store() -> AuditStore:
    return AuditStore.from_url("sqlite://")


@pytest.fixture
def engine() -> FakeTaxEngine:
    return FakeTaxEngine()
