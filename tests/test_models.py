"""Tests for billing entities, engine shapes and settings."""

from datetime import date
from decimal import Decimal

from conftest import make_invoice, make_item
from invoice_tax.config import TaxEngineSettings
from invoice_tax.engine_models import TaxResponse
from invoice_tax.exceptions import StructuralError, TaxEngineError
from invoice_tax.models import BillingItem, InvoiceItemType, sum_amounts


# ── Billing items ───────────────────────────────────────────────────


def test_item_classification(account):
    invoice = make_invoice(account)
    assert make_item(invoice, "1", InvoiceItemType.USAGE).is_taxable
    assert make_item(invoice, "-1", InvoiceItemType.REPAIR_ADJ).is_adjustment
    tax = make_item(invoice, "1", InvoiceItemType.TAX)
    assert not tax.is_taxable
    assert not tax.is_adjustment


def test_create_tax_item_links_to_taxable_item(account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    other_invoice = make_invoice(account, number=2)

    tax = BillingItem.create_tax_item(
        item, other_invoice.id, Decimal("8.63"), "Tax", item.start_date, item.end_date
    )

    assert tax.item_type == InvoiceItemType.TAX
    assert tax.invoice_id == other_invoice.id
    assert tax.linked_item_id == item.id
    assert tax.account_id == item.account_id
    assert tax.id != item.id


def test_sum_amounts(account):
    invoice = make_invoice(account)
    items = [make_item(invoice, "-10.00"), make_item(invoice, "-2.50")]
    assert sum_amounts(items) == Decimal("-12.50")
    assert sum_amounts(None) == Decimal("0")


def test_find_item(account):
    invoice = make_invoice(account)
    item = make_item(invoice, "1")
    assert invoice.find_item(item.id) is item
    assert invoice.find_item(invoice.id) is None


# ── Engine response parsing ─────────────────────────────────────────


def test_response_without_data_envelope():
    response = TaxResponse.from_dict(
        {"documentNumber": "D", "documentDate": "2024-06-15T00:00:00", "totalTax": 1}
    )
    assert response.document_number == "D"
    assert response.document_date == date(2024, 6, 15)
    assert response.total_tax == Decimal("1")
    assert response.line_items is None


def test_null_entries_are_dropped():
    response = TaxResponse.from_dict(
        {"data": {"lineItems": [None, {"lineItemId": "a", "taxes": [None]}]}}
    )
    assert len(response.line_items) == 1
    assert response.line_items[0].taxes == []


# ── Errors ──────────────────────────────────────────────────────────


def test_error_to_dict():
    error = TaxEngineError("boom", status_code=500, response_body="{}")
    assert error.to_dict() == {
        "error_code": "TAX_ENGINE_ERROR",
        "message": "boom",
        "context": {},
        "status_code": 500,
        "response_body": "{}",
    }
    assert StructuralError("bad").error_code == "STRUCTURAL_ERROR"


# ── Settings ────────────────────────────────────────────────────────


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("INVOICE_TAX_URL", "https://engine.test")
    monkeypatch.setenv("INVOICE_TAX_SKIP_ANOMALOUS_ADJUSTMENTS", "true")
    monkeypatch.setenv("INVOICE_TAX_READ_TIMEOUT", "5")

    settings = TaxEngineSettings()

    assert settings.url == "https://engine.test"
    assert settings.skip_anomalous_adjustments is True
    assert settings.read_timeout == 5.0


def test_seller_origin_needs_country():
    assert TaxEngineSettings(seller_city="Austin").seller_origin() is None
    origin = TaxEngineSettings(seller_region="TX", seller_country="US").seller_origin()
    assert (origin.main_division, origin.country) == ("TX", "US")
