"""
Builds tax engine requests from batches of taxable billing items.

A batch is either a sale (no adjustments, no original reference code)
or a return (adjustments for every item, linked to the original
document). Both shapes are checked before anything is built so that a
malformed batch never reaches the network.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional
from uuid import UUID, uuid4

import structlog

from invoice_tax.config import TaxEngineSettings
from invoice_tax.engine_models import (
    Customer,
    FlexibleCodeField,
    Location,
    MessageType,
    RequestLineItem,
    Seller,
    TaxRegistration,
    TaxRequest,
)
from invoice_tax.exceptions import StructuralError
from invoice_tax.models import Account, BillingItem, Invoice, sum_amounts

logger = structlog.get_logger(__name__)

# Per-call property keys
TAX_CODE = "taxCode"
TAX_REGISTRATION_NUMBER = "taxRegistrationNumber"
LOCATION_ADDRESS1 = "locationAddress1"
LOCATION_ADDRESS2 = "locationAddress2"
LOCATION_CITY = "locationCity"
LOCATION_REGION = "locationRegion"
LOCATION_POSTAL_CODE = "locationPostalCode"
LOCATION_COUNTRY = "locationCountry"
COMPANY_NAME = "companyName"
COMPANY_DIVISION = "companyDivision"

# Flexible code field carrying the product name
PRODUCT_NAME_FIELD_ID = 20


@dataclass(frozen=True)
class BuildResult:
    """Either a request to send, or the reason the batch was skipped."""

    request: Optional[TaxRequest] = None
    skipped_reason: Optional[str] = None

    @classmethod
    def ok(cls, request: TaxRequest) -> "BuildResult":
        return cls(request=request)

    @classmethod
    def skipped(cls, reason: str) -> "BuildResult":
        return cls(skipped_reason=reason)

    @property
    def is_skipped(self) -> bool:
        return self.request is None


def product_name(item: BillingItem) -> Optional[str]:
    """Most specific catalog name of the item: usage, phase, plan, then description."""
    for name in (item.usage_name, item.phase_name, item.plan_name):
        if name is not None:
            return name
    return item.description


class RequestBuilder:
    """Converts taxable batches into ``TaxRequest`` envelopes."""

    def __init__(self, settings: Optional[TaxEngineSettings] = None) -> None:
        self.settings = settings or TaxEngineSettings()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_batch(
        taxable_items: Mapping[UUID, BillingItem],
        adjustments_by_item: Optional[Mapping[UUID, list[BillingItem]]],
        original_reference_code: Optional[str],
    ) -> Optional[str]:
        """Return a description of the first violated invariant, if any."""
        has_adjustments = bool(adjustments_by_item)

        if (original_reference_code is None) == has_adjustments:
            return (
                f"Invalid combination of originalInvoiceReferenceCode "
                f"{original_reference_code} and adjustments "
                f"{_ids(adjustments_by_item)}"
            )

        if has_adjustments and len(adjustments_by_item) != len(taxable_items):
            return (
                f"Invalid number of adjustments {_ids(adjustments_by_item)} "
                f"for taxable items {sorted(str(i) for i in taxable_items)}"
            )

        for item_id, item in taxable_items.items():
            adjustment_amount = sum_amounts(
                (adjustments_by_item or {}).get(item_id)
            )
            if adjustment_amount == 0:
                continue
            if adjustment_amount > 0 or item.amount < -adjustment_amount:
                return (
                    f"Invalid adjustmentAmount {adjustment_amount} for "
                    f"invoice item {item_id} of amount {item.amount}"
                )
        return None

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build(
        self,
        account: Account,
        invoice: Invoice,
        taxable_items: Mapping[UUID, BillingItem],
        adjustments_by_item: Optional[Mapping[UUID, list[BillingItem]]],
        original_reference_code: Optional[str],
        dry_run: bool,
        properties: Optional[Mapping[str, str]],
        posting_date: date,
    ) -> BuildResult:
        """
        Build the request for one batch.

        Raises ``StructuralError`` on a malformed batch, unless anomalous
        adjustments are configured to be skipped, in which case a skipped
        result is returned instead.
        """
        properties = properties or {}
        violation = self._check_batch(
            taxable_items, adjustments_by_item, original_reference_code
        )
        if violation is not None:
            if self.settings.skip_anomalous_adjustments:
                logger.warning(
                    "Skipping anomalous tax batch",
                    invoice_id=str(invoice.id),
                    reason=violation,
                )
                return BuildResult.skipped(violation)
            raise StructuralError(violation, context={"invoice_id": str(invoice.id)})

        line_items = [
            self._to_line(
                item,
                (adjustments_by_item or {}).get(item_id),
                properties,
                line_number,
            )
            for line_number, (item_id, item) in enumerate(
                taxable_items.items(), start=1
            )
        ]

        request = TaxRequest(
            message_type=MessageType.QUOTATION if dry_run else MessageType.INVOICE,
            transaction_id=uuid4().hex,
            document_number=f"{invoice.invoice_number}-{uuid4().hex[:8]}",
            document_date=invoice.invoice_date,
            posting_date=posting_date,
            currency=invoice.currency,
            customer=self._to_customer(account, properties),
            seller=self._to_seller(properties),
            line_items=line_items,
            original_invoice_reference_code=original_reference_code,
        )
        return BuildResult.ok(request)

    def _to_line(
        self,
        item: BillingItem,
        adjustment_items: Optional[list[BillingItem]],
        properties: Mapping[str, str],
        line_number: int,
    ) -> RequestLineItem:
        adjustment_amount = sum_amounts(adjustment_items)
        is_return = adjustment_amount < 0
        return RequestLineItem(
            # Responses are matched back to billing items through this id
            line_item_id=str(item.id),
            line_item_number=line_number,
            extended_price=adjustment_amount if is_return else item.amount,
            product_class=properties.get(f"{TAX_CODE}_{item.id}"),
            flexible_code_fields=[
                FlexibleCodeField(PRODUCT_NAME_FIELD_ID, product_name(item))
            ],
        )

    def _to_customer(
        self, account: Account, properties: Mapping[str, str]
    ) -> Customer:
        registration_number = properties.get(TAX_REGISTRATION_NUMBER)
        return Customer(
            customer_code=account.external_key or str(account.id),
            destination=self._to_address(account, properties),
            tax_registrations=(
                [TaxRegistration(registration_number=registration_number)]
                if registration_number
                else None
            ),
        )

    @staticmethod
    def _to_address(account: Account, properties: Mapping[str, str]) -> Location:
        if properties.get(LOCATION_ADDRESS1) is not None:
            return Location(
                street_address1=properties.get(LOCATION_ADDRESS1),
                street_address2=properties.get(LOCATION_ADDRESS2),
                city=properties.get(LOCATION_CITY),
                main_division=properties.get(LOCATION_REGION),
                postal_code=properties.get(LOCATION_POSTAL_CODE),
                country=properties.get(LOCATION_COUNTRY),
            )
        return Location(
            street_address1=account.address1,
            street_address2=account.address2,
            city=account.city,
            main_division=account.state_or_province,
            postal_code=account.postal_code,
            country=account.country,
        )

    def _to_seller(self, properties: Mapping[str, str]) -> Seller:
        return Seller(
            company=properties.get(COMPANY_NAME, self.settings.company_name),
            division=properties.get(COMPANY_DIVISION, self.settings.company_division),
            physical_origin=self.settings.seller_origin(),
        )


def _ids(adjustments_by_item: Optional[Mapping[UUID, list[BillingItem]]]) -> Optional[dict]:
    if adjustments_by_item is None:
        return None
    return {
        str(item_id): [str(a.id) for a in adjustments or []]
        for item_id, adjustments in adjustments_by_item.items()
    }
