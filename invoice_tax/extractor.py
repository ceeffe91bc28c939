"""
Summary aggregates over a tax engine response.

Used to fill the audit record and for diagnostics. Missing collections
and fields count as zero or absent, never as errors.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, ROUND_UP
from typing import Any, Iterator, Optional

from invoice_tax.engine_models import (
    Location,
    TaxBreakdown,
    TaxResponse,
    TaxResponseLine,
)

_RATE_PRECISION = Decimal("0.00001")


class ResponseDataExtractor:
    """Read-only view over a ``TaxResponse``."""

    def __init__(self, response: TaxResponse) -> None:
        self.response = response

    def _lines(self) -> Iterator[TaxResponseLine]:
        for line in self.response.line_items or []:
            if line is not None:
                yield line

    def _breakdowns(self) -> Iterator[TaxBreakdown]:
        for line in self._lines():
            for tax in line.taxes or []:
                yield tax

    # ------------------------------------------------------------------
    # Document metadata
    # ------------------------------------------------------------------

    @property
    def document_code(self) -> Optional[str]:
        return self.response.document_number

    @property
    def document_date(self) -> Optional[date]:
        return self.response.document_date

    @property
    def tax_date(self) -> Optional[date]:
        if self.response.tax_point_date is not None:
            return self.response.tax_point_date
        return self.document_date

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    @property
    def total_amount(self) -> Optional[Decimal]:
        return self.response.total

    @property
    def total_discount(self) -> Optional[Decimal]:
        return self.response.discount

    @property
    def total_tax(self) -> Optional[Decimal]:
        return self.response.total_tax

    def total_tax_calculated(self) -> Decimal:
        return sum(
            (
                tax.calculated_tax
                for tax in self._breakdowns()
                if tax.calculated_tax is not None
            ),
            Decimal("0"),
        )

    def total_taxable(self) -> Decimal:
        # The engine repeats the taxable value on every jurisdiction entry
        # of a line, so only the first non-zero one is counted.
        total = Decimal("0")
        for line in self._lines():
            for tax in line.taxes or []:
                if tax.taxable is not None and tax.taxable != 0:
                    total += tax.taxable
                    break
        return total

    def total_tax_exempt(self) -> Decimal:
        total = Decimal("0")
        for line in self._lines():
            for tax in line.taxes or []:
                if tax.non_taxable is not None and tax.non_taxable != 0:
                    total += tax.non_taxable
                    break
        return total

    def invoice_tax_rate(self) -> Decimal:
        """
        Overall rate of the document: precise tax over total taxable.

        Precise tax uses effective rate x taxable where both are known,
        falling back to the calculated tax of the entry.
        """
        total_taxable = self.total_taxable()
        if total_taxable == 0:
            return Decimal("0")

        precise_tax = Decimal("0")
        for tax in self._breakdowns():
            if tax.effective_rate is not None and tax.taxable is not None:
                precise_tax += tax.effective_rate * tax.taxable
            elif tax.calculated_tax is not None:
                precise_tax += tax.calculated_tax

        return (precise_tax / total_taxable).quantize(
            _RATE_PRECISION, rounding=ROUND_UP
        )

    # ------------------------------------------------------------------
    # Detail collections
    # ------------------------------------------------------------------

    def tax_lines(self) -> list[dict[str, Any]]:
        return [line.to_dict() for line in self._lines()]

    def tax_summary(self) -> list[dict[str, Any]]:
        return [tax.to_dict() for tax in self._breakdowns()]

    def addresses(self) -> list[Location]:
        customer = self.response.customer
        if customer is None:
            return []

        addresses: list[Location] = []
        if customer.destination is not None:
            addresses.append(customer.destination)
        for registration in customer.tax_registrations or []:
            for location in registration.physical_locations or []:
                if location is not None:
                    addresses.append(location)
        return addresses
