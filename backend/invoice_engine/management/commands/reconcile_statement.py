from __future__ import annotations

import json
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from invoice_engine.collaborators import load_document_parser, load_ledger_client
from invoice_engine.collaborators.http import charge_from_json
from invoice_engine.collaborators.memory import InMemoryLedger
from invoice_engine.dataclasses import Direction
from invoice_engine.services.calculator import format_money
from invoice_engine.services.errors import InvoicingError
from invoice_engine.services.ledger import ChargeLedgerView
from invoice_engine.services.reconciliation import ImportSession


class Command(BaseCommand):
    help = "Parse a charge statement and match its rows against a counterparty's open charges."

    def add_arguments(self, parser):
        parser.add_argument("statement", type=str, help="Statement file (.xlsx or .csv)")
        parser.add_argument("--ledger-json", type=str, help="JSON file with the open charges to match against")
        parser.add_argument("--counterparty", type=str, help="Counterparty id; fetches open charges from the ledger backend")
        parser.add_argument("--direction", type=str, default="receivable", help="receivable|payable")
        parser.add_argument("--parser", type=str, default=None, help="Parser backend (spreadsheet|http)")

    def _ledger(self, options):
        ledger_json = options.get("ledger_json")
        if ledger_json:
            try:
                rows = json.loads(Path(ledger_json).read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise CommandError(f"Cannot read ledger file {ledger_json}: {e}")
            if isinstance(rows, dict):
                rows = rows.get("list") or rows.get("items") or []
            charges = [charge_from_json(r) for r in rows]
            counterparty = options.get("counterparty") or next((c.counterparty_id for c in charges if c.counterparty_id), "")
            return InMemoryLedger(charges), counterparty
        if not options.get("counterparty"):
            raise CommandError("Either --ledger-json or --counterparty is required")
        return load_ledger_client(), options["counterparty"]

    def handle(self, *args, **options):
        statement = Path(options["statement"])
        if not statement.exists():
            raise CommandError(f"Statement not found: {statement}")
        try:
            direction = Direction((options["direction"] or "").strip().lower())
        except ValueError:
            raise CommandError("--direction must be receivable or payable")

        client, counterparty = self._ledger(options)
        view = ChargeLedgerView(client)
        session = ImportSession(view, parser=load_document_parser(options.get("parser")))
        try:
            view.load(counterparty, direction)
            rows = session.start(statement)
        except (InvoicingError, ValueError) as e:
            raise CommandError(str(e))

        for row in rows:
            if row.is_matched:
                outcome = self.style.SUCCESS(f"matched {row.matched_charge_id}")
            elif row.already_invoiced:
                outcome = self.style.WARNING(row.invoiced_reason or "already invoiced")
            else:
                outcome = self.style.NOTICE("unmatched")
            ref = row.container_number or row.shipment_number or "-"
            self.stdout.write(
                f"row {row.row_number}: {ref} {row.fee_name} {format_money(row.amount, row.currency)} -> {outcome}"
            )

        matched = sum(1 for r in rows if r.is_matched)
        invoiced = sum(1 for r in rows if r.already_invoiced)
        self.stdout.write(self.style.SUCCESS(
            f"{len(rows)} rows: {matched} matched, {len(rows) - matched - invoiced} unmatched, {invoiced} already invoiced"
        ))
