"""
Statement import: match externally supplied charge rows against the open
ledger, let the reviewer adjust the selection, then turn the chosen rows
into invoice line items.

The import dialog does not keep its own checkboxes. Matched rows are
selected through their ledger charge id and unmatched rows through a row
key, both in the ledger view's SelectionModel, so ticking a row in either
place is visible in the other.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..dataclasses import (
    ChargeRecord,
    ExternalReconciliationRecord,
    InvoiceLineItem,
    ParsedDocument,
    UniformPrice,
)
from .aggregation import ensure_single_counterparty, merge_line_items
from .errors import AlreadyInvoiced, NothingToImport, ServiceError, ValidationError
from .ledger import ChargeLedgerView
from .utils import norm_key, unique

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    IDLE = "idle"
    PARSING = "parsing"
    PARSED = "parsed"
    REVIEWING = "reviewing"
    APPLIED = "applied"
    CANCELLED = "cancelled"


def names_match(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive containment in either direction ("THC" ~ "Terminal Handling Charge (THC)")."""
    left = (a or "").strip().lower()
    right = (b or "").strip().lower()
    if not left or not right:
        return False
    return left in right or right in left


def _same_container(record: ExternalReconciliationRecord, charge: ChargeRecord) -> bool:
    key = norm_key(record.container_number)
    return bool(key) and key == norm_key(charge.container_number)


def _same_shipment(record: ExternalReconciliationRecord, charge: ChargeRecord) -> bool:
    key = norm_key(record.shipment_number)
    return bool(key) and key == norm_key(charge.shipment_number)


def _same_identity(record: ExternalReconciliationRecord, charge: ChargeRecord) -> bool:
    return _same_container(record, charge) or _same_shipment(record, charge)


def _find_match(
    record: ExternalReconciliationRecord,
    open_ledger: Sequence[ChargeRecord],
    used: set,
) -> Optional[ChargeRecord]:
    # Container number first; the shipment number only when no container matches.
    for same in (_same_container, _same_shipment):
        for charge in open_ledger:
            if charge.id in used:
                continue
            if same(record, charge) and names_match(record.fee_name, charge.fee_name):
                return charge
    return None


def match_records(
    records: Iterable[ExternalReconciliationRecord],
    open_ledger: Sequence[ChargeRecord],
) -> List[ExternalReconciliationRecord]:
    """Pair each row with at most one open charge; a charge is never paired twice."""
    used: set = set()
    out: List[ExternalReconciliationRecord] = []
    for record in records:
        record = replace(
            record,
            is_matched=False,
            matched_charge_id=None,
            matched_shipment_id=None,
            matched_shipment_number=None,
            matched_container_number=None,
        )
        charge = _find_match(record, open_ledger, used)
        if charge is not None:
            used.add(charge.id)
            record.is_matched = True
            record.matched_charge_id = charge.id
            record.matched_shipment_id = charge.shipment_id
            record.matched_shipment_number = charge.shipment_number
            record.matched_container_number = charge.container_number
        out.append(record)
    return out


def flag_already_invoiced(
    records: Iterable[ExternalReconciliationRecord],
    open_ledger: Sequence[ChargeRecord],
    invoiced_charges: Optional[Sequence[ChargeRecord]] = None,
) -> List[ExternalReconciliationRecord]:
    """
    Mark unmatched rows whose charge was consumed by an earlier invoice.

    With ``invoiced_charges`` (the ledger's own status for the rows'
    containers/shipments) a row is flagged only when an invoiced charge of
    the same name exists. Without it, a row that the statement itself says
    was matched before, and whose container/shipment has nothing open any
    more, is assumed invoiced.
    """
    out: List[ExternalReconciliationRecord] = []
    for record in records:
        record = replace(record, already_invoiced=False, invoiced_reason="")
        if not record.is_matched:
            if invoiced_charges is not None:
                hit = next(
                    (c for c in invoiced_charges
                     if not c.is_open and _same_identity(record, c) and names_match(record.fee_name, c.fee_name)),
                    None,
                )
                if hit is not None:
                    record.already_invoiced = True
                    record.invoiced_reason = (
                        f"Already invoiced on {hit.invoice_number}" if hit.invoice_number else "Already invoiced"
                    )
            elif record.previously_matched and not any(_same_identity(record, c) for c in open_ledger):
                record.already_invoiced = True
                record.invoiced_reason = "Matched before and no longer open; probably invoiced"
        if record.already_invoiced:
            record.selected = False
        out.append(record)
    return out


class ImportSession:
    """One statement import cycle, from upload to apply or cancel."""

    def __init__(self, ledger: ChargeLedgerView, parser=None, ledger_client=None):
        self.ledger = ledger
        self.parser = parser
        self.ledger_client = ledger_client if ledger_client is not None else ledger.client
        self.state = ImportState.IDLE
        self.document: Optional[ParsedDocument] = None
        self.records: List[ExternalReconciliationRecord] = []
        self._selection_before: Optional[set] = None
        self._keywords_before: List[str] = []
        self._exact_before = False

    def _require(self, *states: ImportState) -> None:
        if self.state not in states:
            raise ValidationError(f"Import is {self.state.value}; expected {', '.join(s.value for s in states)}")

    # ---- parse + match ----

    def start(self, source) -> List[ExternalReconciliationRecord]:
        self._require(ImportState.IDLE, ImportState.APPLIED, ImportState.CANCELLED)
        if self.parser is None:
            raise ValidationError("No document parser configured")
        self.state = ImportState.PARSING
        try:
            document = self.parser.parse(source)
            return self.load_parsed(document)
        except Exception:
            self.state = ImportState.IDLE
            raise

    def load_parsed(self, document: ParsedDocument) -> List[ExternalReconciliationRecord]:
        """
        Match a parsed statement and enter review.

        Raises:
            ValidationError: If an import is already under review or the
                ledger view is stale; nothing is changed in that case
        """
        self._require(ImportState.IDLE, ImportState.PARSING, ImportState.APPLIED, ImportState.CANCELLED)
        self.ledger.require_fresh()
        self.document = document
        self.state = ImportState.PARSED

        rows = []
        for index, item in enumerate(document.items, start=1):
            rows.append(item if item.row_number is not None else replace(item, row_number=index))

        open_ledger = self.ledger.records
        matched = match_records(rows, open_ledger)
        self.records = flag_already_invoiced(matched, open_ledger, self._lookup_invoiced(matched))

        self._selection_before = self.ledger.selection.keys()
        self._keywords_before = list(self.ledger.keywords)
        self._exact_before = self.ledger.exact_match
        for record in self.records:
            self.ledger.selection.set(record.selection_key, record.selected and not record.already_invoiced)
        self.ledger.narrow_to(
            r.matched_container_number or r.matched_shipment_number or "" for r in self.records if r.is_matched
        )

        self.state = ImportState.REVIEWING
        self._refresh()
        logger.info(
            "Statement import: %d rows, %d matched, %d unmatched, %d already invoiced",
            len(self.records),
            sum(1 for r in self.records if r.is_matched),
            sum(1 for r in self.records if not r.is_matched and not r.already_invoiced),
            sum(1 for r in self.records if r.already_invoiced),
        )
        return self.rows

    def _lookup_invoiced(self, records: Sequence[ExternalReconciliationRecord]) -> Optional[List[ChargeRecord]]:
        lookup = getattr(self.ledger_client, "lookup_charges", None)
        unmatched = [r for r in records if not r.is_matched]
        if lookup is None or not unmatched or self.ledger.token is None:
            return None
        try:
            return list(lookup(
                self.ledger.token.counterparty_id,
                self.ledger.token.direction,
                container_numbers=unique(r.container_number for r in unmatched),
                shipment_numbers=unique(r.shipment_number for r in unmatched),
            ))
        except ServiceError as e:
            logger.warning("Ledger status lookup failed, using prior-match hints instead: %s", e)
            return None

    # ---- review ----

    def _refresh(self) -> None:
        for record in self.records:
            record.selected = (not record.already_invoiced) and self.ledger.selection.is_selected(record.selection_key)

    @property
    def rows(self) -> List[ExternalReconciliationRecord]:
        self._refresh()
        return list(self.records)

    def toggle(self, index: int) -> bool:
        self._require(ImportState.REVIEWING)
        record = self.records[index]
        if record.already_invoiced:
            raise AlreadyInvoiced(record.invoiced_reason or "Row is already invoiced")
        self.ledger.selection.toggle(record.selection_key)
        self._refresh()
        return record.selected

    def select_all(self, value: bool = True) -> None:
        self._require(ImportState.REVIEWING)
        for record in self.records:
            if not record.already_invoiced:
                self.ledger.selection.set(record.selection_key, value)
        self._refresh()

    def eligible(self) -> List[ExternalReconciliationRecord]:
        return [r for r in self.rows if r.selected and not r.already_invoiced]

    def header_hints(self) -> Dict[str, Any]:
        document = self.document or ParsedDocument()
        return {
            "due_date": document.extracted_due_date,
            "external_invoice_numbers": list(document.extracted_external_invoice_numbers),
        }

    # ---- finish ----

    def _line_item(self, record: ExternalReconciliationRecord, currency: Optional[str]) -> InvoiceLineItem:
        charge = self.ledger.get(record.matched_charge_id) if record.matched_charge_id else None
        item = InvoiceLineItem(
            description=record.fee_name,
            unit_price=UniformPrice(record.amount),
            currency=record.currency or (charge.currency if charge else None) or currency or "",
            quantity=1,
            amount=record.amount,
        )
        if charge is not None:
            item.source_charge_ids = [charge.id]
            item.source_shipment_ids = unique([charge.shipment_id])
            item.source_shipment_numbers = unique([charge.shipment_number])
            item.source_container_numbers = unique([record.matched_container_number])
            item.is_derived = True
        return item

    def apply(
        self,
        merge_by_name: bool = False,
        counterparty_id: Optional[str] = None,
        counterparty_name: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> List[InvoiceLineItem]:
        """
        Convert the selected rows into line items to append to the invoice.

        Raises:
            NothingToImport: If no selected, not-yet-invoiced row remains
            CounterpartyMismatch: If a matched charge belongs to someone else
        """
        self._require(ImportState.REVIEWING)
        rows = self.eligible()
        if not rows:
            raise NothingToImport("No selected rows left to import")

        charges = [self.ledger.get(r.matched_charge_id) for r in rows if r.matched_charge_id]
        charges = [c for c in charges if c is not None]
        if counterparty_id or counterparty_name:
            ensure_single_counterparty(charges, counterparty_id, counterparty_name)

        items = [self._line_item(r, currency) for r in rows]
        if merge_by_name:
            items = merge_line_items(items)

        # Unmatched rows are not ledger charges; their selection keys end with the import.
        self.ledger.selection.retain(r.id for r in self.ledger.records)
        self.state = ImportState.APPLIED
        logger.info("Imported %d statement rows as %d line items", len(rows), len(items))
        return items

    def cancel(self) -> None:
        """Drop the import and put the ledger selection and filter back."""
        if self._selection_before is not None:
            self.ledger.selection.restore(self._selection_before)
            self.ledger.keywords = self._keywords_before
            self.ledger.exact_match = self._exact_before
        self.records = []
        self.state = ImportState.CANCELLED
