"""
Append-only ledger of tax engine calls.

Every non-dry-run call writes exactly one row, tagged SUCCESS or ERROR,
together with the billing item ids (and their adjustment ids) it covered.
Rows are never updated or deleted here; the next computation reads them
back to work out what has already been taxed.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog
from sqlalchemy import (
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from invoice_tax.engine_models import TaxResponse, to_json
from invoice_tax.exceptions import AuditStoreError
from invoice_tax.extractor import ResponseDataExtractor
from invoice_tax.models import BillingItem

logger = structlog.get_logger(__name__)

SUCCESS = "SUCCESS"
ERROR = "ERROR"


class Base(DeclarativeBase):
    pass


class AuditRecord(Base):
    """One external tax engine call."""

    __tablename__ = "tax_responses"

    record_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    invoice_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    invoice_item_ids: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doc_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    doc_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    total_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    total_exemption: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    total_taxable: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    total_tax: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    total_tax_calculated: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 9), nullable=True)
    tax_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    tax_lines: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tax_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tax_addresses: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_code: Mapped[str] = mapped_column(String(32), nullable=False)
    additional_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"AuditRecord(record_id={self.record_id}, invoice_id={self.invoice_id}, "
            f"result_code={self.result_code}, doc_code={self.doc_code})"
        )


def item_ids_as_json(
    items_with_adjustments: dict[UUID, Optional[Iterable[BillingItem]]],
) -> str:
    """Serialise ``{item_id: [adjustments]}`` to ``{"id": ["adj id", ...]}``."""
    mapping: dict[str, list[str]] = {}
    for item_id, adjustments in items_with_adjustments.items():
        mapping[str(item_id)] = sorted(
            str(adjustment.id) for adjustment in (adjustments or [])
        )
    return json.dumps(mapping, sort_keys=True)


class AuditStore:
    """
    SQLAlchemy-backed store of ``AuditRecord`` rows.

    One session per operation; there is no cross-call locking.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, create_schema: bool = True) -> "AuditStore":
        store = cls(create_engine(database_url))
        if create_schema:
            store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _add(self, record: AuditRecord) -> AuditRecord:
        try:
            with self._session_factory.begin() as session:
                session.add(record)
        except SQLAlchemyError as e:
            raise AuditStoreError(
                f"Unable to persist tax response for invoice {record.invoice_id}",
                context={"error": str(e), "result_code": record.result_code},
            ) from e
        return record

    def append_success(
        self,
        account_id: UUID,
        invoice_id: UUID,
        items_with_adjustments: dict[UUID, Optional[Iterable[BillingItem]]],
        response: TaxResponse,
        timestamp: datetime,
        tenant_id: UUID,
    ) -> AuditRecord:
        extractor = ResponseDataExtractor(response)
        record = AuditRecord(
            account_id=str(account_id),
            invoice_id=str(invoice_id),
            invoice_item_ids=item_ids_as_json(items_with_adjustments),
            doc_code=extractor.document_code,
            doc_date=extractor.document_date,
            total_amount=extractor.total_amount,
            total_discount=extractor.total_discount,
            total_exemption=extractor.total_tax_exempt(),
            total_taxable=extractor.total_taxable(),
            total_tax=extractor.total_tax,
            total_tax_calculated=extractor.total_tax_calculated(),
            tax_date=extractor.tax_date,
            tax_lines=to_json(extractor.tax_lines()),
            tax_summary=to_json(extractor.tax_summary()),
            tax_addresses=to_json([a.to_dict() for a in extractor.addresses()]),
            result_code=SUCCESS,
            created_date=timestamp,
            tenant_id=str(tenant_id),
        )
        self._add(record)
        logger.info(
            "Tax response recorded",
            record_id=record.record_id,
            invoice_id=record.invoice_id,
            doc_code=record.doc_code,
        )
        return record

    def append_error(
        self,
        account_id: UUID,
        invoice_id: UUID,
        items_with_adjustments: dict[UUID, Optional[Iterable[BillingItem]]],
        error_payload: str,
        timestamp: datetime,
        tenant_id: UUID,
    ) -> AuditRecord:
        record = AuditRecord(
            account_id=str(account_id),
            invoice_id=str(invoice_id),
            invoice_item_ids=item_ids_as_json(items_with_adjustments),
            result_code=ERROR,
            additional_data=error_payload,
            created_date=timestamp,
            tenant_id=str(tenant_id),
        )
        self._add(record)
        logger.warning(
            "Tax error recorded",
            record_id=record.record_id,
            invoice_id=record.invoice_id,
        )
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _list(
        self, invoice_id: UUID, tenant_id: UUID, result_code: Optional[str]
    ) -> list[AuditRecord]:
        stmt = (
            select(AuditRecord)
            .where(AuditRecord.invoice_id == str(invoice_id))
            .where(AuditRecord.tenant_id == str(tenant_id))
            .order_by(AuditRecord.record_id.asc())
        )
        if result_code is not None:
            stmt = stmt.where(AuditRecord.result_code == result_code)
        try:
            with self._session_factory() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise AuditStoreError(
                f"Unable to read tax responses for invoice {invoice_id}",
                context={"error": str(e)},
            ) from e

    def list_successful(self, invoice_id: UUID, tenant_id: UUID) -> list[AuditRecord]:
        """SUCCESS records of the invoice, oldest first."""
        return self._list(invoice_id, tenant_id, SUCCESS)

    def list_all(self, invoice_id: UUID, tenant_id: UUID) -> list[AuditRecord]:
        return self._list(invoice_id, tenant_id, None)

    @staticmethod
    def taxed_items_with_adjustments(
        records: Iterable[AuditRecord],
    ) -> dict[UUID, set[UUID]]:
        """
        Merge the item maps of ``records`` into ``{item_id: {adjustment ids}}``.

        Rows whose item map cannot be parsed are logged and skipped.
        """
        taxed: dict[UUID, set[UUID]] = {}
        for record in records:
            if not record.invoice_item_ids:
                continue
            try:
                mapping = json.loads(record.invoice_item_ids)
                parsed = {
                    UUID(item_id): {UUID(adj) for adj in adjustments or []}
                    for item_id, adjustments in mapping.items()
                }
            except (ValueError, TypeError, AttributeError):
                logger.warning(
                    "Corrupted entry for response",
                    record_id=record.record_id,
                    invoice_item_ids=record.invoice_item_ids,
                )
                continue
            for item_id, adjustment_ids in parsed.items():
                taxed.setdefault(item_id, set()).update(adjustment_ids)
        return taxed
