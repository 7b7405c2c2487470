"""In-process ledger and invoicing services for development and tests."""
from __future__ import annotations

import copy
import re
import uuid
from dataclasses import replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ..dataclasses import ChargeRecord, Direction, InvoiceStatus
from ..services.errors import ServiceError
from ..services.utils import norm_key


class InMemoryLedger:
    """Holds charges and honours the ledger contract: once marked invoiced, never listed as open."""

    def __init__(self, charges: Iterable[ChargeRecord] = ()):
        self._charges: Dict[str, ChargeRecord] = {}
        for charge in charges:
            self.add(charge)

    def add(self, charge: ChargeRecord) -> None:
        self._charges[charge.id] = copy.deepcopy(charge)

    def get(self, charge_id: str) -> Optional[ChargeRecord]:
        charge = self._charges.get(charge_id)
        return copy.deepcopy(charge) if charge else None

    def list_open_charges(self, counterparty_id: str, direction: Direction, exclude_invoiced: bool = True) -> List[ChargeRecord]:
        out = []
        for charge in self._charges.values():
            if charge.counterparty_id != counterparty_id or charge.direction != Direction(direction):
                continue
            if exclude_invoiced and not charge.is_open:
                continue
            out.append(copy.deepcopy(charge))
        return out

    def lookup_charges(
        self,
        counterparty_id: str,
        direction: Direction,
        container_numbers: Iterable[str] = (),
        shipment_numbers: Iterable[str] = (),
    ) -> List[ChargeRecord]:
        containers = {norm_key(c) for c in container_numbers if c}
        shipments = {norm_key(s) for s in shipment_numbers if s}
        return [
            copy.deepcopy(c) for c in self._charges.values()
            if c.counterparty_id == counterparty_id
            and c.direction == Direction(direction)
            and (norm_key(c.container_number) in containers or norm_key(c.shipment_number) in shipments)
        ]

    def mark_invoiced(self, charge_ids: List[str], invoice_id: str, invoice_number: Optional[str] = None) -> None:
        missing = [cid for cid in charge_ids if cid not in self._charges]
        if missing:
            raise ServiceError(f"Unknown charges: {', '.join(missing)}", status_code=404)
        for cid in charge_ids:
            self._charges[cid] = replace(
                self._charges[cid],
                invoice_status=InvoiceStatus.INVOICED,
                invoice_number=invoice_number or invoice_id,
            )


_NUMBER = re.compile(r"^INV(\d{4})(\d{7})$")


def next_invoice_number(last: Optional[str], today: Optional[date] = None) -> str:
    """INV + year + 7-digit sequence; the sequence restarts every year."""
    year = (today or date.today()).year
    seq = 1
    match = _NUMBER.match(last or "")
    if match and int(match.group(1)) == year:
        seq = int(match.group(2)) + 1
    return f"INV{year}{seq:07d}"


class InMemoryInvoicingService:
    def __init__(self, today: Optional[date] = None):
        self.today = today
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self._last_number: Optional[str] = None

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        invoice_id = uuid.uuid4().hex
        number = next_invoice_number(self._last_number, self.today)
        self._last_number = number
        self.invoices[invoice_id] = {"invoiceNumber": number, **copy.deepcopy(payload)}
        return {"invoiceId": invoice_id, "invoiceNumber": number}

    def update(self, invoice_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if invoice_id not in self.invoices:
            raise ServiceError(f"Invoice {invoice_id} not found", status_code=404)
        number = self.invoices[invoice_id]["invoiceNumber"]
        self.invoices[invoice_id] = {"invoiceNumber": number, **copy.deepcopy(payload)}
        return {"invoiceId": invoice_id, "invoiceNumber": number}
