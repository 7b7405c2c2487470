from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union

from .services.utils import ZERO, norm_key, unique


class Direction(str, Enum):
    RECEIVABLE = "receivable"
    PAYABLE = "payable"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class InvoiceStatus(str, Enum):
    OPEN = "open"
    INVOICED = "invoiced"


@dataclass
class ChargeRecord:
    """A single receivable or payable amount tied to one shipment."""
    id: str
    fee_name: str
    amount: Decimal
    currency: str
    shipment_id: Optional[str] = None
    shipment_number: Optional[str] = None
    container_number: Optional[str] = None
    counterparty_id: Optional[str] = None
    counterparty_name: Optional[str] = None
    direction: Direction = Direction.RECEIVABLE
    category: str = ""
    approval_status: Optional[ApprovalStatus] = None  # None: legacy record, predates approvals
    invoice_status: InvoiceStatus = InvoiceStatus.OPEN
    invoice_number: Optional[str] = None
    is_locked: bool = False
    is_supplementary: bool = False

    @property
    def container_key(self) -> str:
        return norm_key(self.container_number) or norm_key(self.shipment_number)

    @property
    def is_open(self) -> bool:
        return self.invoice_status == InvoiceStatus.OPEN

    @property
    def is_approved(self) -> bool:
        return self.approval_status in (None, ApprovalStatus.APPROVED)

    @property
    def is_selectable(self) -> bool:
        return self.is_open and self.is_approved


@dataclass(frozen=True)
class UniformPrice:
    amount: Decimal


@dataclass(frozen=True)
class MixedPrice:
    """Merged members had different amounts, so there is no single unit price."""

    def __str__(self) -> str:
        return "MIXED"


MIXED = MixedPrice()

UnitPrice = Union[UniformPrice, MixedPrice]


@dataclass
class InvoiceLineItem:
    description: str
    unit_price: UnitPrice
    currency: str
    quantity: int = 1
    amount: Decimal = ZERO
    tax_rate: Decimal = ZERO  # percent
    tax_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO  # fixed part of the discount; may be negative (surcharge)
    final_amount: Decimal = ZERO
    source_charge_ids: List[str] = field(default_factory=list)
    source_shipment_ids: List[str] = field(default_factory=list)
    source_shipment_numbers: List[str] = field(default_factory=list)
    source_container_numbers: List[str] = field(default_factory=list)
    is_derived: bool = False

    @property
    def is_mixed_price(self) -> bool:
        return isinstance(self.unit_price, MixedPrice)

    @classmethod
    def manual(
        cls,
        description: str,
        unit_price: Decimal,
        currency: str,
        quantity: int = 1,
        tax_rate: Decimal = ZERO,
        discount_percent: Decimal = ZERO,
        discount_amount: Decimal = ZERO,
    ) -> "InvoiceLineItem":
        return cls(
            description=description,
            unit_price=UniformPrice(unit_price),
            currency=currency,
            quantity=quantity,
            amount=unit_price * quantity,
            tax_rate=tax_rate,
            discount_percent=discount_percent,
            discount_amount=discount_amount,
        )


@dataclass
class ExternalReconciliationRecord:
    """A row parsed from an uploaded statement, not yet part of any invoice."""
    fee_name: str
    amount: Decimal
    currency: str = ""
    container_number: Optional[str] = None
    shipment_number: Optional[str] = None
    remark: str = ""
    row_number: Optional[int] = None
    previously_matched: bool = False
    is_matched: bool = False
    matched_charge_id: Optional[str] = None
    matched_shipment_id: Optional[str] = None
    matched_shipment_number: Optional[str] = None
    matched_container_number: Optional[str] = None
    already_invoiced: bool = False
    invoiced_reason: str = ""
    selected: bool = True

    @property
    def selection_key(self) -> str:
        if self.matched_charge_id:
            return self.matched_charge_id
        return f"import-row:{self.row_number}"


@dataclass
class ParsedDocument:
    items: List[ExternalReconciliationRecord] = field(default_factory=list)
    extracted_due_date: Optional[date] = None
    extracted_external_invoice_numbers: List[str] = field(default_factory=list)


@dataclass
class InvoiceHeader:
    direction: Direction
    counterparty_id: Optional[str] = None
    counterparty_name: str = ""
    invoice_date: date = field(default_factory=date.today)
    due_date: Optional[date] = None
    currency: str = "EUR"
    exchange_rate: Decimal = Decimal("1")
    language: str = "en"
    template_id: Optional[str] = None
    shipment_ids: List[str] = field(default_factory=list)
    shipment_numbers: List[str] = field(default_factory=list)
    container_numbers: List[str] = field(default_factory=list)
    external_invoice_numbers: List[str] = field(default_factory=list)
    description: str = ""
    notes: str = ""

    @property
    def invoice_type(self) -> str:
        return "sales" if self.direction == Direction.RECEIVABLE else "purchase"


@dataclass
class LineAmounts:
    amount: Decimal
    tax_amount: Decimal
    discount: Decimal
    final_amount: Decimal


@dataclass
class Totals:
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total_amount: Decimal = ZERO


@dataclass
class InvoiceDocument:
    header: InvoiceHeader
    items: List[InvoiceLineItem] = field(default_factory=list)
    totals: Totals = field(default_factory=Totals)
    additional_charge_ids: List[str] = field(default_factory=list)
    invoice_id: Optional[str] = None

    def charge_ids(self) -> List[str]:
        """Every charge id this document consumes, derived lines first."""
        ids: List[str] = []
        for item in self.items:
            if item.is_derived:
                ids.extend(item.source_charge_ids)
        ids.extend(self.additional_charge_ids)
        return unique(ids)


@dataclass(frozen=True)
class LedgerToken:
    counterparty_id: str
    direction: Direction
    generation: int


@dataclass
class SubmitResult:
    invoice_id: str
    invoice_number: Optional[str] = None
    charge_ids: List[str] = field(default_factory=list)
    ledger_marked: bool = False
