from datetime import date
from decimal import Decimal

import pytest

from ..collaborators.memory import InMemoryInvoicingService, InMemoryLedger
from ..dataclasses import (
    MIXED,
    Direction,
    InvoiceDocument,
    InvoiceHeader,
    InvoiceLineItem,
    InvoiceStatus,
    UniformPrice,
)
from ..services.composer import InvoiceComposer, build_payload, preview_document
from ..services.errors import CounterpartyMismatch, ServiceError, SubmitError, ValidationError
from ..services.ledger import ChargeLedgerView
from .factories import charge

TODAY = date(2026, 5, 4)


class BrokenInvoicing:

    def create(self, payload):
        raise ServiceError("invoicing service unavailable", status_code=503)

    def update(self, invoice_id, payload):
        raise ServiceError("invoicing service unavailable", status_code=503)


class UnmarkableLedger(InMemoryLedger):

    def mark_invoiced(self, charge_ids, invoice_id, invoice_number=None):
        raise ServiceError("ledger busy", status_code=503)


def _charges():
    return [
        charge("1", "Handling Fee", "50.00", container_number="ABCD1234567"),
        charge("2", "Handling Fee", "70.00", container_number="ABCD1234567"),
        charge("3", "THC", "120.00", container_number="EFGH7654321"),
    ]


@pytest.fixture
def ledger_client():
    return InMemoryLedger(_charges())


@pytest.fixture
def invoicing():
    return InMemoryInvoicingService(today=TODAY)


@pytest.fixture
def view(ledger_client):
    v = ChargeLedgerView(ledger_client, display_window=100)
    v.load("c1", Direction.RECEIVABLE)
    return v


@pytest.fixture
def composer(view, invoicing):
    return InvoiceComposer(view, invoicing)


@pytest.fixture
def header():
    return InvoiceHeader(direction=Direction.RECEIVABLE, counterparty_id="c1",
                         counterparty_name="ACME", invoice_date=TODAY)


class TestCompose:

    def test_manual_then_derived_items(self, composer, view, header):
        view.set_selected(["1", "3"])
        manual = InvoiceLineItem.manual("Courier", Decimal("15.00"), "EUR")
        document = composer.compose(header, manual_items=[manual])
        assert [i.description for i in document.items] == ["Courier", "Handling Fee", "THC"]
        assert document.header.shipment_ids == ["S-1", "S-3"]
        assert document.header.container_numbers == ["ABCD1234567", "EFGH7654321"]
        assert document.totals.total_amount == Decimal("185.00")
        assert document.charge_ids() == ["1", "3"]

    def test_merge_by_name(self, composer, view, header):
        view.toggle_by_container("ABCD1234567")
        [line] = composer.compose(header, merge_by_name=True).items
        assert line.quantity == 2
        assert line.unit_price is MIXED
        assert line.final_amount == Decimal("120.00")

    def test_requires_fresh_ledger(self, composer, view, header):
        view.invalidate()
        with pytest.raises(ValidationError):
            composer.compose(header)

    def test_counterparty_mismatch(self, composer, view):
        view.toggle("1")
        other = InvoiceHeader(direction=Direction.RECEIVABLE, counterparty_id="c2", counterparty_name="Other Corp")
        with pytest.raises(CounterpartyMismatch):
            composer.compose(other)

    def test_imported_items_are_not_duplicated(self, composer, view, header):
        view.set_selected(["1", "3"])
        imported = InvoiceLineItem(description="THC", unit_price=UniformPrice(Decimal("120.00")), currency="EUR",
                                   amount=Decimal("120.00"), source_charge_ids=["3"], is_derived=True)
        document = composer.compose(header, imported_items=[imported])
        assert [i.source_charge_ids for i in document.items] == [["1"], ["3"]]

    def test_charges_without_lines_travel_as_additional_ids(self, composer, view, header):
        view.set_selected(["1", "2"])
        manual = InvoiceLineItem.manual("Handling (lump sum)", Decimal("100.00"), "EUR")
        header.shipment_ids = ["S-1"]
        document = composer.compose(header, manual_items=[manual], ledger_lines=False)
        assert len(document.items) == 1
        assert document.additional_charge_ids == ["1", "2"]
        assert composer.build_payload(document)["additionalChargeIds"] == ["1", "2"]

    def test_recompute_after_edit(self, composer, view, header):
        view.toggle("3")
        document = composer.compose(header)
        document.items[0].tax_rate = Decimal("10")
        document = composer.recompute(document)
        assert document.items[0].tax_amount == Decimal("12.00")
        assert document.totals.total_amount == Decimal("132.00")


class TestValidate:

    def test_collects_every_problem(self, composer):
        document = InvoiceDocument(header=InvoiceHeader(direction=Direction.RECEIVABLE))
        with pytest.raises(ValidationError) as exc:
            composer.validate(document)
        errors = exc.value.errors
        assert any("at least one line" in e for e in errors)
        assert any("greater than 0" in e for e in errors)
        assert any("customer or supplier" in e for e in errors)
        assert any("shipment" in e for e in errors)

    def test_line_problems(self, composer, header):
        blank = InvoiceLineItem.manual("  ", Decimal("10"), "EUR")
        zero_qty = InvoiceLineItem.manual("Fee", Decimal("10"), "EUR", quantity=0)
        header.shipment_ids = ["S-1"]
        with pytest.raises(ValidationError) as exc:
            composer.validate(InvoiceDocument(header=header, items=[blank, zero_qty]))
        assert any("Line 1: description" in e for e in exc.value.errors)
        assert any("Line 2: quantity" in e for e in exc.value.errors)

    def test_payable_needs_no_shipment(self, composer):
        header = InvoiceHeader(direction=Direction.PAYABLE, counterparty_name="Carrier Ltd")
        composer.validate(InvoiceDocument(header=header, items=[InvoiceLineItem.manual("Freight", Decimal("10"), "EUR")]))

    def test_receivable_needs_linked_shipment(self, composer, header):
        document = InvoiceDocument(header=header, items=[InvoiceLineItem.manual("Fee", Decimal("10"), "EUR")])
        with pytest.raises(ValidationError) as exc:
            composer.validate(document)
        assert exc.value.errors == ["A sales invoice must be linked to at least one shipment"]

    def test_discount_bringing_total_to_zero(self, composer, header):
        header.shipment_ids = ["S-1"]
        item = InvoiceLineItem.manual("Fee", Decimal("10"), "EUR", discount_amount=Decimal("10"))
        with pytest.raises(ValidationError):
            composer.validate(InvoiceDocument(header=header, items=[item]))


class TestSubmit:

    def test_submit_marks_charges_and_requires_reload(self, composer, view, ledger_client, invoicing, header):
        view.set_selected(["1", "3"])
        result = composer.submit(composer.compose(header))
        assert result.invoice_number == "INV20260000001"
        assert result.charge_ids == ["1", "3"]
        assert result.ledger_marked
        assert ledger_client.get("1").invoice_status == InvoiceStatus.INVOICED
        assert invoicing.invoices[result.invoice_id]["totalAmount"] == "170.00"

        with pytest.raises(ValidationError):
            composer.compose(header)
        view.load("c1", Direction.RECEIVABLE)
        assert [r.id for r in view.records] == ["2"]
        assert len(view.selection) == 0

    def test_submitted_view_never_reoffers_charges(self, composer, view, header):
        view.set_selected(["1", "2", "3"])
        result = composer.submit(composer.compose(header))
        view.load("c1", Direction.RECEIVABLE)
        assert not set(result.charge_ids) & {r.id for r in view.records}

    def test_service_failure_keeps_local_state(self, view, header):
        composer = InvoiceComposer(view, BrokenInvoicing())
        view.set_selected(["1"])
        document = composer.compose(header)
        with pytest.raises(SubmitError) as exc:
            composer.submit(document)
        assert "unavailable" in str(exc.value)
        assert view.is_fresh
        assert view.selection.keys() == {"1"}
        assert len(document.items) == 1

    def test_invalid_document_is_not_sent(self, composer, invoicing, header):
        with pytest.raises(ValidationError):
            composer.submit(InvoiceDocument(header=header))
        assert invoicing.invoices == {}

    def test_ledger_marking_failure_is_not_fatal(self, invoicing, header):
        client = UnmarkableLedger(_charges())
        view = ChargeLedgerView(client, display_window=100)
        view.load("c1", Direction.RECEIVABLE)
        composer = InvoiceComposer(view, invoicing)
        view.toggle("3")
        result = composer.submit(composer.compose(header))
        assert result.invoice_id in invoicing.invoices
        assert not result.ledger_marked
        assert not view.is_fresh

    def test_edit_mode_replaces_document(self, composer, view, invoicing, header):
        created = invoicing.create({"items": []})
        view.toggle("3")
        document = composer.compose(header, invoice_id=created["invoiceId"])
        result = composer.submit(document)
        assert result.invoice_id == created["invoiceId"]
        assert result.invoice_number == created["invoiceNumber"]
        assert len(invoicing.invoices) == 1
        assert invoicing.invoices[created["invoiceId"]]["items"][0]["chargeId"] == "3"

    def test_additional_charge_ids_are_marked(self, composer, view, ledger_client, header):
        view.set_selected(["1", "2"])
        header.shipment_ids = ["S-1"]
        manual = InvoiceLineItem.manual("Handling (lump sum)", Decimal("100.00"), "EUR")
        result = composer.submit(composer.compose(header, manual_items=[manual], ledger_lines=False))
        assert result.charge_ids == ["1", "2"]
        assert ledger_client.get("2").invoice_status == InvoiceStatus.INVOICED


class TestPayload:

    def test_shape(self, composer, view, header):
        view.toggle_by_container("ABCD1234567")
        payload = composer.build_payload(composer.compose(header, merge_by_name=True))
        [item] = payload["items"]
        assert payload["type"] == "sales"
        assert payload["date"] == "2026-05-04"
        assert payload["counterpartyId"] == "c1"
        assert payload["containerNumbers"] == ["ABCD1234567"]
        assert item["unitPrice"] is None
        assert item["mixedUnitPrice"] is True
        assert item["quantity"] == 2
        assert item["amount"] == "120.00"
        assert item["chargeId"] == "1,2"
        assert item["shipmentNumber"] == "BL-1,BL-2"
        assert payload["totalAmount"] == "120.00"

    def test_statement_rows(self, composer, view, header):
        view.set_selected(["3"])
        rows = composer.statement_rows(composer.compose(header))
        assert rows == [{
            "containerNumber": "EFGH7654321",
            "shipmentNumber": "BL-3",
            "feeName": "THC",
            "amount": "120.00",
            "currency": "EUR",
        }]

    def test_preview_without_ledger(self, header):
        document = preview_document(header, _charges()[:2], merge_by_name=True)
        payload = build_payload(document)
        assert payload["items"][0]["quantity"] == 2
        assert payload["subtotal"] == "120.00"

    def test_item_discounts_add_up_to_document_discount(self, header):
        items = [
            InvoiceLineItem.manual("Handling Fee", Decimal("100.00"), "EUR", tax_rate=Decimal("10"),
                                   discount_percent=Decimal("5"), discount_amount=Decimal("2.00")),
            InvoiceLineItem.manual("Storage", Decimal("40.00"), "EUR", discount_amount=Decimal("1.00")),
        ]
        payload = build_payload(InvoiceDocument(header=header, items=items))
        first, second = payload["items"]
        assert first["discountAmount"] == "2.00"
        assert first["totalDiscount"] == "7.50"
        assert second["totalDiscount"] == "1.00"
        assert payload["discountAmount"] == "8.50"
        assert sum(Decimal(i["totalDiscount"]) for i in payload["items"]) == Decimal(payload["discountAmount"])
