"""Tests for the RequestBuilder."""

import random
from datetime import date
from decimal import Decimal

import pytest

from conftest import make_invoice, make_item
from invoice_tax.config import TaxEngineSettings
from invoice_tax.engine_models import MessageType
from invoice_tax.exceptions import StructuralError
from invoice_tax.models import InvoiceItemType
from invoice_tax.request_builder import (
    LOCATION_ADDRESS1,
    LOCATION_CITY,
    LOCATION_COUNTRY,
    PRODUCT_NAME_FIELD_ID,
    RequestBuilder,
    product_name,
)

POSTING_DATE = date(2024, 7, 1)


@pytest.fixture
def builder() -> RequestBuilder:
    return RequestBuilder(TaxEngineSettings(company_name="ACME", company_division="West"))


def _build(builder, account, invoice, items, adjustments=None, reference=None,
           dry_run=False, properties=None):
    return builder.build(
        account,
        invoice,
        {item.id: item for item in items},
        adjustments,
        reference,
        dry_run,
        properties,
        POSTING_DATE,
    )


# ── Sales documents ─────────────────────────────────────────────────


def test_sales_request_lines(builder, account):
    invoice = make_invoice(account)
    first = make_item(invoice, "100.00")
    second = make_item(invoice, "25.50")

    request = _build(builder, account, invoice, [first, second]).request

    assert [l.line_item_number for l in request.line_items] == [1, 2]
    assert [l.line_item_id for l in request.line_items] == [str(first.id), str(second.id)]
    assert request.line_items[1].extended_price == Decimal("25.50")
    assert request.message_type == MessageType.INVOICE
    assert request.document_date == invoice.invoice_date
    assert request.posting_date == POSTING_DATE
    assert request.currency == "USD"
    assert request.is_return is False


def test_dry_run_is_quotation(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    request = _build(builder, account, invoice, [item], dry_run=True).request

    assert request.message_type == MessageType.QUOTATION


def test_document_number_and_transaction_id_are_unique(builder, account):
    invoice = make_invoice(account, number=42)
    item = make_item(invoice, "100.00")

    first = _build(builder, account, invoice, [item]).request
    second = _build(builder, account, invoice, [item]).request

    assert first.document_number.startswith("42-")
    assert first.document_number != second.document_number
    assert first.transaction_id != second.transaction_id


def test_customer_code_falls_back_to_account_id(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    account.external_key = None

    request = _build(builder, account, invoice, [item]).request

    assert request.customer.customer_code == str(account.id)


def test_account_address_used_by_default(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    destination = _build(builder, account, invoice, [item]).request.customer.destination

    assert destination.street_address1 == "415 Mission St"
    assert destination.main_division == "CA"
    assert destination.country == "US"


def test_address_properties_override_account(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    properties = {
        LOCATION_ADDRESS1: "1 Main St",
        LOCATION_CITY: "Austin",
        LOCATION_COUNTRY: "US",
    }

    destination = _build(
        builder, account, invoice, [item], properties=properties
    ).request.customer.destination

    assert destination.street_address1 == "1 Main St"
    assert destination.city == "Austin"
    assert destination.main_division is None


def test_tax_code_property_sets_product_class(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    request = _build(
        builder, account, invoice, [item], properties={f"taxCode_{item.id}": "SaaS"}
    ).request

    assert request.line_items[0].product_class == "SaaS"


def test_product_name_precedence(account):
    invoice = make_invoice(account)
    item = make_item(invoice, "1.00")
    assert product_name(item) == "Consulting"

    from dataclasses import replace

    assert product_name(replace(item, plan_name="gold")) == "gold"
    assert product_name(replace(item, plan_name="gold", phase_name="gold-trial")) == "gold-trial"
    assert product_name(replace(item, phase_name="p", usage_name="minutes")) == "minutes"


def test_flexible_field_carries_product_name(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    field = _build(builder, account, invoice, [item]).request.line_items[0].flexible_code_fields[0]

    assert field.field_id == PRODUCT_NAME_FIELD_ID
    assert field.value == "Consulting"


def test_seller_address_requires_country(account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    without_country = RequestBuilder(TaxEngineSettings(seller_city="Austin"))
    with_country = RequestBuilder(TaxEngineSettings(seller_city="Austin", seller_country="US"))

    assert _build(without_country, account, invoice, [item]).request.seller.physical_origin is None
    origin = _build(with_country, account, invoice, [item]).request.seller.physical_origin
    assert origin.country == "US"
    assert origin.city == "Austin"


def test_seller_from_settings_and_properties(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    seller = _build(builder, account, invoice, [item]).request.seller
    assert (seller.company, seller.division) == ("ACME", "West")

    seller = _build(
        builder, account, invoice, [item], properties={"companyName": "Other"}
    ).request.seller
    assert seller.company == "Other"


# ── Return documents ────────────────────────────────────────────────


def test_return_line_uses_adjustment_amount(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    adj = make_item(invoice, "-30.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    request = _build(builder, account, invoice, [item], {item.id: [adj]}, "DOC-1").request

    assert request.original_invoice_reference_code == "DOC-1"
    assert request.is_return is True
    assert request.line_items[0].extended_price == Decimal("-30.00")


def test_item_with_empty_adjustments_in_return_batch(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    other = make_item(invoice, "20.00")
    adj = make_item(invoice, "-30.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    request = _build(
        builder, account, invoice, [item, other], {item.id: [adj], other.id: []}, "DOC-1"
    ).request

    assert request.line_items[1].extended_price == Decimal("20.00")


def test_cannot_return_more_than_item_amount(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    adj = make_item(invoice, "-100.01", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    with pytest.raises(StructuralError, match="Invalid adjustmentAmount"):
        _build(builder, account, invoice, [item], {item.id: [adj]}, "DOC-1")


def test_positive_adjustment_rejected(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    adj = make_item(invoice, "10.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    with pytest.raises(StructuralError):
        _build(builder, account, invoice, [item], {item.id: [adj]}, "DOC-1")


def test_adjustment_count_must_match_items(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    other = make_item(invoice, "20.00")
    adj = make_item(invoice, "-30.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    with pytest.raises(StructuralError, match="Invalid number of adjustments"):
        _build(builder, account, invoice, [item, other], {item.id: [adj]}, "DOC-1")


def test_reference_without_adjustments_rejected(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    with pytest.raises(StructuralError, match="Invalid combination"):
        _build(builder, account, invoice, [item], None, "DOC-1")
    with pytest.raises(StructuralError, match="Invalid combination"):
        _build(builder, account, invoice, [item], {}, "DOC-1")


def test_adjustments_without_reference_rejected(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    adj = make_item(invoice, "-30.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    with pytest.raises(StructuralError, match="Invalid combination"):
        _build(builder, account, invoice, [item], {item.id: [adj]}, None)


def test_anomalous_batch_skipped_when_configured(account):
    builder = RequestBuilder(TaxEngineSettings(skip_anomalous_adjustments=True))
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")
    adj = make_item(invoice, "-30.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)

    result = _build(builder, account, invoice, [item], {item.id: [adj]}, None)

    assert result.is_skipped
    assert result.request is None
    assert "Invalid combination" in result.skipped_reason


def test_reference_code_present_iff_adjustments(builder, account):
    rng = random.Random(20240615)
    for _ in range(200):
        invoice = make_invoice(account)
        items = [make_item(invoice, "100.00") for _ in range(rng.randint(1, 3))]
        shape = rng.choice(["none", "empty", "full", "partial"])
        if shape == "none":
            adjustments = None
        elif shape == "empty":
            adjustments = {}
        else:
            chosen = items if shape == "full" else items[:-1]
            adjustments = {
                item.id: [
                    make_item(invoice, "-10.00", InvoiceItemType.ITEM_ADJ, linked_item_id=item.id)
                ]
                for item in chosen
            }
        reference = rng.choice([None, "DOC-1"])

        try:
            request = _build(builder, account, invoice, items, adjustments, reference).request
        except StructuralError:
            continue
        assert (request.original_invoice_reference_code is not None) == bool(adjustments)
        if adjustments:
            assert len(adjustments) == len(items)


def test_to_dict_shape(builder, account):
    invoice = make_invoice(account)
    item = make_item(invoice, "100.00")

    body = _build(builder, account, invoice, [item]).request.to_dict()

    assert body["saleMessageType"] == "INVOICE"
    assert body["transactionType"] == "SALE"
    assert body["documentDate"] == "2024-06-15"
    assert body["currency"] == {"isoCurrencyCodeAlpha": "USD"}
    assert body["customer"]["customerCode"] == {"value": "ACME-001"}
    assert body["lineItems"][0]["extendedPrice"] == 100.0
    assert "originalInvoiceReferenceCode" not in body
