"""
Request and response shapes of the external tax engine.

Only the logical contract is modelled here. ``to_dict`` produces the
engine's camelCase JSON body; ``from_dict`` accepts what the engine
returns and tolerates missing fields everywhere.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class MessageType(Enum):
    QUOTATION = "QUOTATION"
    INVOICE = "INVOICE"


class TransactionType(Enum):
    SALE = "SALE"


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        return super().default(o)


def to_json(obj: Any) -> str:
    return json.dumps(obj, cls=_DecimalEncoder)


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal values to float for the wire body."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# -----------------------------------------------------------------------
# Shared
# -----------------------------------------------------------------------


@dataclass
class Location:
    street_address1: Optional[str] = None
    street_address2: Optional[str] = None
    city: Optional[str] = None
    main_division: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    tax_area_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "streetAddress1": self.street_address1,
                "streetAddress2": self.street_address2,
                "city": self.city,
                "mainDivision": self.main_division,
                "postalCode": self.postal_code,
                "country": self.country,
                "taxAreaId": self.tax_area_id,
            }
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Location"]:
        if data is None:
            return None
        return cls(
            street_address1=data.get("streetAddress1"),
            street_address2=data.get("streetAddress2"),
            city=data.get("city"),
            main_division=data.get("mainDivision"),
            postal_code=data.get("postalCode"),
            country=data.get("country"),
            tax_area_id=(
                str(data["taxAreaId"]) if data.get("taxAreaId") is not None else None
            ),
        )


@dataclass
class TaxRegistration:
    registration_number: Optional[str] = None
    physical_locations: Optional[list[Location]] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "taxRegistrationNumber": self.registration_number,
                "physicalLocations": (
                    [loc.to_dict() for loc in self.physical_locations]
                    if self.physical_locations is not None
                    else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TaxRegistration":
        locations = data.get("physicalLocations")
        return cls(
            registration_number=data.get("taxRegistrationNumber"),
            physical_locations=(
                [Location.from_dict(loc) for loc in locations if loc is not None]
                if locations is not None
                else None
            ),
        )


@dataclass
class Customer:
    customer_code: Optional[str] = None
    destination: Optional[Location] = None
    tax_registrations: Optional[list[TaxRegistration]] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "customerCode": (
                    {"value": self.customer_code}
                    if self.customer_code is not None
                    else None
                ),
                "destination": (
                    self.destination.to_dict() if self.destination else None
                ),
                "taxRegistrations": (
                    [reg.to_dict() for reg in self.tax_registrations]
                    if self.tax_registrations is not None
                    else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Customer"]:
        if data is None:
            return None
        code = data.get("customerCode") or {}
        registrations = data.get("taxRegistrations")
        return cls(
            customer_code=code.get("value"),
            destination=Location.from_dict(data.get("destination")),
            tax_registrations=(
                [TaxRegistration.from_dict(r) for r in registrations if r is not None]
                if registrations is not None
                else None
            ),
        )


@dataclass
class Seller:
    company: Optional[str] = None
    division: Optional[str] = None
    physical_origin: Optional[Location] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "company": self.company,
                "division": self.division,
                "physicalOrigin": (
                    self.physical_origin.to_dict()
                    if self.physical_origin
                    else None
                ),
            }
        )


# -----------------------------------------------------------------------
# Request
# -----------------------------------------------------------------------


@dataclass
class FlexibleCodeField:
    field_id: int
    value: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {"fieldId": self.field_id, "value": self.value}


@dataclass
class RequestLineItem:
    line_item_id: str
    line_item_number: int
    extended_price: Decimal
    product_class: Optional[str] = None
    flexible_code_fields: list[FlexibleCodeField] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lineItemId": self.line_item_id,
            "lineItemNumber": self.line_item_number,
            "product": _drop_none({"productClass": self.product_class}),
            "extendedPrice": self.extended_price,
            "flexibleFields": {
                "flexibleCodeFields": [
                    f.to_dict() for f in self.flexible_code_fields
                ]
            },
        }


@dataclass
class TaxRequest:
    """Envelope sent to the engine for one sales or return document."""

    message_type: MessageType
    transaction_id: str
    document_number: str
    document_date: date
    posting_date: date
    currency: str
    customer: Customer
    seller: Seller
    line_items: list[RequestLineItem]
    transaction_type: TransactionType = TransactionType.SALE
    original_invoice_reference_code: Optional[str] = None

    @property
    def is_return(self) -> bool:
        return self.original_invoice_reference_code is not None

    def to_dict(self) -> dict[str, Any]:
        body = {
            "saleMessageType": self.message_type.value,
            "transactionType": self.transaction_type.value,
            "transactionId": self.transaction_id,
            "documentNumber": self.document_number,
            "documentDate": self.document_date,
            "postingDate": self.posting_date,
            "currency": {"isoCurrencyCodeAlpha": self.currency},
            "customer": self.customer.to_dict(),
            "seller": self.seller.to_dict(),
            "originalInvoiceReferenceCode": self.original_invoice_reference_code,
            "lineItems": [line.to_dict() for line in self.line_items],
        }
        return _decimal_to_float(_drop_none(body))


# -----------------------------------------------------------------------
# Response
# -----------------------------------------------------------------------


@dataclass
class Jurisdiction:
    jurisdiction_type: Optional[str] = None
    value: Optional[str] = None

    @property
    def description(self) -> str:
        return f"{self.value} {self.jurisdiction_type} TAX"

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {"jurisdictionType": self.jurisdiction_type, "value": self.value}
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Jurisdiction"]:
        if data is None:
            return None
        return cls(
            jurisdiction_type=data.get("jurisdictionType"),
            value=data.get("value"),
        )


@dataclass
class TaxBreakdown:
    """Per-jurisdiction detail of one response line."""

    calculated_tax: Optional[Decimal] = None
    effective_rate: Optional[Decimal] = None
    taxable: Optional[Decimal] = None
    exempt: Optional[Decimal] = None
    non_taxable: Optional[Decimal] = None
    nominal_rate: Optional[Decimal] = None
    jurisdiction: Optional[Jurisdiction] = None
    tax_code: Optional[str] = None
    vertex_tax_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "calculatedTax": self.calculated_tax,
                "effectiveRate": self.effective_rate,
                "taxable": self.taxable,
                "exempt": self.exempt,
                "nonTaxable": self.non_taxable,
                "nominalRate": self.nominal_rate,
                "jurisdiction": (
                    self.jurisdiction.to_dict() if self.jurisdiction else None
                ),
                "taxCode": self.tax_code,
                "vertexTaxCode": self.vertex_tax_code,
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TaxBreakdown":
        return cls(
            calculated_tax=_dec(data.get("calculatedTax")),
            effective_rate=_dec(data.get("effectiveRate")),
            taxable=_dec(data.get("taxable")),
            exempt=_dec(data.get("exempt")),
            non_taxable=_dec(data.get("nonTaxable")),
            nominal_rate=_dec(data.get("nominalRate")),
            jurisdiction=Jurisdiction.from_dict(data.get("jurisdiction")),
            tax_code=data.get("taxCode"),
            vertex_tax_code=data.get("vertexTaxCode"),
        )


@dataclass
class TaxResponseLine:
    """
    One response line. ``line_item_id`` echoes the billing item id that
    was sent, which is how lines are correlated back to items.
    """

    line_item_id: Optional[str] = None
    line_item_number: Optional[int] = None
    total_tax: Optional[Decimal] = None
    taxes: Optional[list[TaxBreakdown]] = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "lineItemId": self.line_item_id,
                "lineItemNumber": self.line_item_number,
                "totalTax": self.total_tax,
                "taxes": (
                    [t.to_dict() for t in self.taxes]
                    if self.taxes is not None
                    else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> "TaxResponseLine":
        taxes = data.get("taxes")
        return cls(
            line_item_id=data.get("lineItemId"),
            line_item_number=data.get("lineItemNumber"),
            total_tax=_dec(data.get("totalTax")),
            taxes=(
                [TaxBreakdown.from_dict(t) for t in taxes if t is not None]
                if taxes is not None
                else None
            ),
        )


@dataclass
class TaxResponse:
    document_number: Optional[str] = None
    document_date: Optional[date] = None
    tax_point_date: Optional[date] = None
    total: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    customer: Optional[Customer] = None
    line_items: Optional[list[TaxResponseLine]] = None

    @classmethod
    def from_dict(cls, payload: dict) -> "TaxResponse":
        """Parse the engine body; the document sits under ``data``."""
        data = payload.get("data", payload) or {}
        discount = data.get("discount") or {}
        lines = data.get("lineItems")
        return cls(
            document_number=data.get("documentNumber"),
            document_date=_date(data.get("documentDate")),
            tax_point_date=_date(data.get("taxPointDate")),
            total=_dec(data.get("total")),
            total_tax=_dec(data.get("totalTax")),
            discount=_dec(discount.get("discountValue")),
            customer=Customer.from_dict(data.get("customer")),
            line_items=(
                [TaxResponseLine.from_dict(line) for line in lines if line is not None]
                if lines is not None
                else None
            ),
        )
