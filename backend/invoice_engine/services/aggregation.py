"""
Turns selected charge records into invoice line items.

One line per charge, or, in merge mode, one line per distinct fee name.
Fee names are compared verbatim: "THC" and "thc" stay separate lines so
that unrelated charges are never conflated.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence

from ..dataclasses import MIXED, ChargeRecord, InvoiceLineItem, UniformPrice
from .errors import CounterpartyMismatch, ValidationError
from .utils import ZERO, unique

logger = logging.getLogger(__name__)


def ensure_single_counterparty(
    records: Iterable[ChargeRecord],
    counterparty_id: Optional[str],
    counterparty_name: Optional[str] = None,
) -> None:
    """Refuse charges that belong to anyone but the invoice's counterparty.

    Ids are compared when both sides have one, names otherwise. A record
    that shares no comparable field with the invoice is refused as well.
    """
    offending = []
    for record in records:
        if counterparty_id and record.counterparty_id:
            same = record.counterparty_id == counterparty_id
        elif counterparty_name and record.counterparty_name:
            same = record.counterparty_name.strip() == counterparty_name.strip()
        else:
            same = False
        if not same:
            offending.append(record.id)
    if offending:
        raise CounterpartyMismatch(offending, expected=counterparty_name or counterparty_id)


def ensure_billable(records: Iterable[ChargeRecord]) -> None:
    errors = []
    for record in records:
        if not record.is_open:
            errors.append(f"Charge {record.id} is already invoiced")
        elif not record.is_approved:
            errors.append(f"Charge {record.id} is {record.approval_status.value}, not approved")
    if errors:
        raise ValidationError(errors)


def line_item_from_charge(record: ChargeRecord) -> InvoiceLineItem:
    return InvoiceLineItem(
        description=record.fee_name,
        unit_price=UniformPrice(record.amount),
        currency=record.currency,
        quantity=1,
        amount=record.amount,
        source_charge_ids=[record.id],
        source_shipment_ids=unique([record.shipment_id]),
        source_shipment_numbers=unique([record.shipment_number]),
        source_container_numbers=unique([record.container_number]),
        is_derived=True,
    )


def _merge_group(description: str, members: Sequence[InvoiceLineItem]) -> InvoiceLineItem:
    first = members[0]
    if len(members) == 1:
        return first
    currencies = unique(m.currency for m in members)
    if len(currencies) > 1:
        raise ValidationError(f"Cannot merge '{description}' across currencies {', '.join(currencies)}")
    if len({(m.tax_rate, m.discount_percent) for m in members}) > 1:
        raise ValidationError(f"Cannot merge '{description}': members have different tax or discount rates")

    prices = {m.unit_price for m in members}
    unit_price = prices.pop() if len(prices) == 1 else MIXED
    return InvoiceLineItem(
        description=description,
        unit_price=unit_price,
        currency=first.currency,
        quantity=sum(m.quantity for m in members),
        amount=sum((m.amount for m in members), ZERO),
        tax_rate=first.tax_rate,
        discount_percent=first.discount_percent,
        discount_amount=sum((m.discount_amount for m in members), ZERO),
        source_charge_ids=unique(i for m in members for i in m.source_charge_ids),
        source_shipment_ids=unique(i for m in members for i in m.source_shipment_ids),
        source_shipment_numbers=unique(i for m in members for i in m.source_shipment_numbers),
        source_container_numbers=unique(i for m in members for i in m.source_container_numbers),
        is_derived=all(m.is_derived for m in members),
    )


def merge_line_items(items: Iterable[InvoiceLineItem]) -> List[InvoiceLineItem]:
    """Collapse items sharing a description, in first-seen order.

    Derived and manually entered items never merge with each other.
    """
    groups: "OrderedDict[tuple, List[InvoiceLineItem]]" = OrderedDict()
    for item in items:
        groups.setdefault((item.description, item.is_derived), []).append(item)
    return [_merge_group(key[0], members) for key, members in groups.items()]


def aggregate(
    records: Sequence[ChargeRecord],
    merge_by_name: bool = False,
    counterparty_id: Optional[str] = None,
    counterparty_name: Optional[str] = None,
) -> List[InvoiceLineItem]:
    """
    Build invoice line items from selected charges.

    Args:
        records: Selected charges, in selection order
        merge_by_name: Collapse charges with the same fee name into one line
        counterparty_id, counterparty_name: The invoice's counterparty; every
            record must belong to it

    Raises:
        CounterpartyMismatch: If any record belongs to another counterparty
        ValidationError: If any record is invoiced, unapproved or cannot merge
    """
    if counterparty_id or counterparty_name:
        ensure_single_counterparty(records, counterparty_id, counterparty_name)
    ensure_billable(records)

    seen = set()
    items = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        items.append(line_item_from_charge(record))

    if merge_by_name:
        items = merge_line_items(items)
    logger.debug("Aggregated %d charges into %d line items (merge=%s)", len(seen), len(items), merge_by_name)
    return items
