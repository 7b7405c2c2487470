from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from ..dataclasses import (
    ChargeRecord,
    Direction,
    InvoiceDocument,
    InvoiceHeader,
    InvoiceLineItem,
    MixedPrice,
    SubmitResult,
)
from .aggregation import aggregate
from .calculator import apply_line, compute_line, compute_totals, q2
from .errors import ServiceError, SubmitError, ValidationError
from .ledger import ChargeLedgerView
from .utils import ZERO, unique

logger = logging.getLogger(__name__)


def _money(value) -> str:
    return str(q2(value))


def link_header(header: InvoiceHeader, items: Sequence[InvoiceLineItem]) -> InvoiceHeader:
    """Union the items' shipment and container links into the header lists."""
    return replace(
        header,
        shipment_ids=unique([*header.shipment_ids, *(s for i in items for s in i.source_shipment_ids)]),
        shipment_numbers=unique([*header.shipment_numbers, *(s for i in items for s in i.source_shipment_numbers)]),
        container_numbers=unique([*header.container_numbers, *(c for i in items for c in i.source_container_numbers)]),
    )


def preview_document(
    header: InvoiceHeader,
    charges: Sequence[ChargeRecord],
    manual_items: Sequence[InvoiceLineItem] = (),
    merge_by_name: bool = False,
) -> InvoiceDocument:
    """Compose from an explicit charge list, without a ledger view or any service call."""
    derived = aggregate(
        charges,
        merge_by_name=merge_by_name,
        counterparty_id=header.counterparty_id,
        counterparty_name=header.counterparty_name,
    )
    items = [apply_line(i) for i in [*manual_items, *derived]]
    return InvoiceDocument(header=link_header(header, items), items=items, totals=compute_totals(items))


def build_payload(document: InvoiceDocument) -> Dict[str, Any]:
    """The document as the invoicing service expects it: camelCase keys, money as 2-place strings."""
    header = document.header
    totals = compute_totals(document.items)
    items = []
    for item in document.items:
        amounts = compute_line(item)
        items.append({
            "description": item.description,
            "quantity": item.quantity,
            "unitPrice": None if isinstance(item.unit_price, MixedPrice) else _money(item.unit_price.amount),
            "mixedUnitPrice": isinstance(item.unit_price, MixedPrice),
            "currency": item.currency,
            "amount": _money(amounts.amount),
            "taxRate": str(item.tax_rate),
            "taxAmount": _money(amounts.tax_amount),
            "discountPercent": str(item.discount_percent),
            "discountAmount": _money(item.discount_amount),
            "totalDiscount": _money(amounts.discount),
            "finalAmount": _money(amounts.final_amount),
            "shipmentId": ",".join(item.source_shipment_ids) or None,
            "shipmentNumber": ",".join(item.source_shipment_numbers) or None,
            "chargeId": ",".join(item.source_charge_ids) or None,
            "containerNumber": ",".join(item.source_container_numbers) or None,
            "isDerived": item.is_derived,
        })
    return {
        "type": header.invoice_type,
        "date": header.invoice_date.isoformat(),
        "dueDate": header.due_date.isoformat() if header.due_date else None,
        "counterpartyId": header.counterparty_id,
        "counterpartyName": header.counterparty_name,
        "shipmentIds": list(header.shipment_ids),
        "shipmentNumbers": list(header.shipment_numbers),
        "containerNumbers": list(header.container_numbers),
        "externalInvoiceNumbers": list(header.external_invoice_numbers),
        "currency": header.currency,
        "exchangeRate": str(header.exchange_rate),
        "language": header.language,
        "templateId": header.template_id,
        "description": header.description or "; ".join(i.description for i in document.items),
        "notes": header.notes,
        "items": items,
        "additionalChargeIds": list(document.additional_charge_ids),
        "subtotal": _money(totals.subtotal),
        "taxAmount": _money(totals.tax_amount),
        "discountAmount": _money(totals.discount_amount),
        "totalAmount": _money(totals.total_amount),
    }


class InvoiceComposer:
    """
    Puts manual, ledger-selected and imported lines into one document and
    hands it to the invoicing service.

    The composer never marks charges invoiced itself. After a successful
    submission it asks the ledger service to do so and invalidates the
    ledger view, so the next composition has to start from a fresh fetch.
    """

    def __init__(self, ledger: ChargeLedgerView, invoicing_client, ledger_client=None):
        self.ledger = ledger
        self.invoicing_client = invoicing_client
        self.ledger_client = ledger_client if ledger_client is not None else ledger.client

    # ---- composition ----

    def compose(
        self,
        header: InvoiceHeader,
        manual_items: Sequence[InvoiceLineItem] = (),
        imported_items: Sequence[InvoiceLineItem] = (),
        merge_by_name: bool = False,
        ledger_lines: bool = True,
        invoice_id: Optional[str] = None,
    ) -> InvoiceDocument:
        """
        Build a document from the current ledger selection plus extra lines.

        Args:
            header: Invoice header; shipment and container lists are filled in
            manual_items: Lines typed in by the user
            imported_items: Lines produced by a statement import
            merge_by_name: Merge ledger charges sharing a fee name
            ledger_lines: When False, selected charges are not turned into
                lines but still travel as additional charge ids
            invoice_id: Existing document to replace (edit mode)

        Raises:
            ValidationError: If the ledger view is stale or a charge is not billable
            CounterpartyMismatch: If a selected charge belongs to someone else
        """
        self.ledger.require_fresh()
        selected = self.ledger.selected_records()

        covered = {cid for item in imported_items for cid in item.source_charge_ids}
        pending = [r for r in selected if r.id not in covered]

        derived: List[InvoiceLineItem] = []
        additional: List[str] = []
        if ledger_lines:
            derived = aggregate(
                pending,
                merge_by_name=merge_by_name,
                counterparty_id=header.counterparty_id,
                counterparty_name=header.counterparty_name,
            )
        else:
            # Still refuse someone else's charges even when they add no line.
            aggregate(pending, counterparty_id=header.counterparty_id, counterparty_name=header.counterparty_name)
            additional = [r.id for r in pending]

        items = [apply_line(i) for i in [*manual_items, *derived, *imported_items]]
        document = InvoiceDocument(
            header=link_header(header, items),
            items=items,
            totals=compute_totals(items),
            additional_charge_ids=additional,
            invoice_id=invoice_id,
        )
        logger.info(
            "Composed %s invoice for %s: %d lines, total %s",
            header.invoice_type, header.counterparty_name or header.counterparty_id,
            len(items), document.totals.total_amount,
        )
        return document

    def recompute(self, document: InvoiceDocument) -> InvoiceDocument:
        """Refresh line and document totals after the user edited quantities, tax or discounts."""
        items = [apply_line(i) for i in document.items]
        return replace(document, items=items, totals=compute_totals(items), header=link_header(document.header, items))

    # ---- validation ----

    def validate(self, document: InvoiceDocument) -> None:
        errors: List[str] = []
        header = document.header
        if not document.items:
            errors.append("Invoice needs at least one line item")
        for index, item in enumerate(document.items, start=1):
            if not (item.description or "").strip():
                errors.append(f"Line {index}: description is required")
            if not isinstance(item.quantity, int) or item.quantity < 1:
                errors.append(f"Line {index}: quantity must be a whole number of at least 1")
        totals = compute_totals(document.items)
        if totals.total_amount <= ZERO:
            errors.append("Invoice total must be greater than 0")
        has_counterparty = bool(header.counterparty_id or (header.counterparty_name or "").strip())
        if not has_counterparty:
            errors.append("A customer or supplier must be selected")
        if header.direction == Direction.RECEIVABLE:
            linked = header.shipment_ids or any(i.source_shipment_ids for i in document.items)
            if not linked:
                errors.append("A sales invoice must be linked to at least one shipment")
        if errors:
            raise ValidationError(errors)

    # ---- payload ----

    def build_payload(self, document: InvoiceDocument) -> Dict[str, Any]:
        return build_payload(document)

    def statement_rows(self, document: InvoiceDocument) -> List[Dict[str, Any]]:
        """One row per consumed charge (container, shipment, fee, amount) for the detail sheet."""
        rows = []
        for charge_id in document.charge_ids():
            charge = self.ledger.get(charge_id)
            if charge is None:
                continue
            rows.append({
                "containerNumber": charge.container_number or "",
                "shipmentNumber": charge.shipment_number or "",
                "feeName": charge.fee_name,
                "amount": _money(charge.amount),
                "currency": charge.currency,
            })
        return rows

    # ---- submission ----

    def submit(self, document: InvoiceDocument) -> SubmitResult:
        """
        Create (or, with ``invoice_id``, replace) the invoice.

        Selections and line items are left untouched on failure so the
        user can resubmit.

        Raises:
            ValidationError: If the document is incomplete
            SubmitError: If the invoicing service fails; no retry is attempted
        """
        self.validate(document)
        payload = self.build_payload(document)
        try:
            if document.invoice_id:
                response = self.invoicing_client.update(document.invoice_id, payload)
            else:
                response = self.invoicing_client.create(payload)
        except ServiceError as e:
            raise SubmitError(str(e)) from e

        result = SubmitResult(
            invoice_id=str(response["invoiceId"]),
            invoice_number=response.get("invoiceNumber"),
            charge_ids=document.charge_ids(),
        )
        logger.info("Invoice %s accepted (%d charges)", result.invoice_number or result.invoice_id, len(result.charge_ids))

        if result.charge_ids:
            try:
                self.ledger_client.mark_invoiced(result.charge_ids, result.invoice_id, result.invoice_number)
                result.ledger_marked = True
            except ServiceError as e:
                # The invoice exists; the next fresh ledger fetch shows the real state.
                logger.warning("Invoice %s created but ledger marking failed: %s", result.invoice_id, e)
        self.ledger.invalidate()
        return result
