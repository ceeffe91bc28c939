"""
Command-line interface for inspecting the tax audit trail.

Provides subcommands to list the recorded engine calls of an invoice,
show which items and adjustments are considered taxed, and summarise
the recorded totals.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from typing import Optional
from uuid import UUID

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from invoice_tax.audit_store import AuditStore
from invoice_tax.config import TaxEngineSettings
from invoice_tax.exceptions import AuditStoreError
from invoice_tax.logging import setup_logging

console = Console()


def _money(value: Optional[Decimal]) -> str:
    return f"${value:,.2f}" if value is not None else "-"


def _uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {label} id: {value}[/red]")
        sys.exit(1)


def _open_store(args: argparse.Namespace) -> AuditStore:
    settings = TaxEngineSettings()
    setup_logging(settings.log_level, settings.log_json)
    return AuditStore.from_url(args.db or settings.database_url)


# -----------------------------------------------------------------------
# Subcommand: records
# -----------------------------------------------------------------------


def cmd_records(args: argparse.Namespace) -> None:
    """List the engine calls recorded for an invoice."""
    store = _open_store(args)
    invoice_id = _uuid(args.invoice, "invoice")
    tenant_id = _uuid(args.tenant, "tenant")

    records = (
        store.list_all(invoice_id, tenant_id)
        if args.all
        else store.list_successful(invoice_id, tenant_id)
    )
    if not records:
        console.print("[yellow]No tax responses recorded for this invoice[/yellow]")
        return

    table = Table(
        title=f"Tax Responses - Invoice {invoice_id}",
        box=box.ROUNDED,
        show_lines=True,
    )
    table.add_column("Record", justify="right", style="dim")
    table.add_column("Result")
    table.add_column("Doc Code")
    table.add_column("Doc Date")
    table.add_column("Taxable", justify="right")
    table.add_column("Tax", justify="right", style="bold")
    table.add_column("Created")

    for r in records:
        result_style = "green" if r.result_code == "SUCCESS" else "red"
        table.add_row(
            str(r.record_id),
            f"[{result_style}]{r.result_code}[/{result_style}]",
            r.doc_code or "-",
            r.doc_date.isoformat() if r.doc_date else "-",
            _money(r.total_taxable),
            _money(r.total_tax),
            r.created_date.isoformat(timespec="seconds"),
        )

    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: taxed
# -----------------------------------------------------------------------


def cmd_taxed(args: argparse.Namespace) -> None:
    """Show the items and adjustments already sent for an invoice."""
    store = _open_store(args)
    invoice_id = _uuid(args.invoice, "invoice")
    tenant_id = _uuid(args.tenant, "tenant")

    taxed = store.taxed_items_with_adjustments(
        store.list_successful(invoice_id, tenant_id)
    )
    if not taxed:
        console.print("[yellow]Nothing taxed yet for this invoice[/yellow]")
        return

    table = Table(title="Already Taxed", box=box.SIMPLE)
    table.add_column("Billing Item")
    table.add_column("Adjustments Returned")
    for item_id in sorted(taxed, key=str):
        adjustments = sorted(str(a) for a in taxed[item_id])
        table.add_row(str(item_id), "\n".join(adjustments) or "-")
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: summary
# -----------------------------------------------------------------------


def cmd_summary(args: argparse.Namespace) -> None:
    """Summarise the recorded totals of an invoice."""
    store = _open_store(args)
    invoice_id = _uuid(args.invoice, "invoice")
    tenant_id = _uuid(args.tenant, "tenant")

    records = store.list_all(invoice_id, tenant_id)
    successes = [r for r in records if r.result_code == "SUCCESS"]
    total_taxable = sum((r.total_taxable or Decimal("0") for r in successes), Decimal("0"))
    total_tax = sum((r.total_tax or Decimal("0") for r in successes), Decimal("0"))
    total_exempt = sum((r.total_exemption or Decimal("0") for r in successes), Decimal("0"))

    console.print(
        Panel(
            f"[bold]Engine Calls:[/bold] {len(records)} "
            f"({len(successes)} successful, {len(records) - len(successes)} failed)\n"
            f"[bold]Total Taxable:[/bold] {_money(total_taxable)}\n"
            f"[bold]Total Tax:[/bold] {_money(total_tax)}\n"
            f"[bold]Total Exempt:[/bold] {_money(total_exempt)}",
            title=f"Invoice {invoice_id}",
            border_style="green" if len(records) == len(successes) else "yellow",
        )
    )


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invoice-tax",
        description="Invoice Tax Engine - inspect the audit trail of tax engine calls",
    )
    parser.add_argument("--db", help="Database URL (defaults to INVOICE_TAX_DATABASE_URL)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def _invoice_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--invoice", "-i", required=True, help="Invoice id")
        p.add_argument("--tenant", "-t", required=True, help="Tenant id")

    records_p = subparsers.add_parser("records", help="List recorded tax responses")
    _invoice_args(records_p)
    records_p.add_argument(
        "--all", "-a", action="store_true", help="Include failed calls"
    )
    records_p.set_defaults(func=cmd_records)

    taxed_p = subparsers.add_parser("taxed", help="Show already-taxed items")
    _invoice_args(taxed_p)
    taxed_p.set_defaults(func=cmd_taxed)

    summary_p = subparsers.add_parser("summary", help="Summarise recorded totals")
    _invoice_args(summary_p)
    summary_p.set_defaults(func=cmd_summary)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except AuditStoreError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)
