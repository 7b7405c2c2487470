import pytest

from ..collaborators.memory import InMemoryLedger
from ..dataclasses import ApprovalStatus, Direction, InvoiceStatus
from ..services.errors import ValidationError
from ..services.ledger import ChargeLedgerView, SelectionModel, parse_keywords
from .factories import charge


@pytest.fixture
def client():
    return InMemoryLedger([
        charge("1", container_number="ABCD1234567", shipment_number="BL-100"),
        charge("2", "THC", container_number="ABCD1234567", shipment_number="BL-100"),
        charge("3", container_number="EFGH7654321", shipment_number="BL-200"),
        charge("4", container_number=None, shipment_number="BL-300"),
        charge("5", approval_status=ApprovalStatus.PENDING),
        charge("6", approval_status=ApprovalStatus.REJECTED),
        charge("7", invoice_status=InvoiceStatus.INVOICED, invoice_number="INV20260000001"),
        charge("8", counterparty_id="c2", counterparty_name="Other Corp"),
        charge("9", direction=Direction.PAYABLE),
    ])


@pytest.fixture
def view(client):
    v = ChargeLedgerView(client, display_window=100)
    v.load("c1", Direction.RECEIVABLE)
    return v


class TestLoad:

    def test_only_open_approved_charges_of_counterparty(self, view):
        assert [r.id for r in view.records] == ["1", "2", "3", "4"]

    def test_payable_direction(self, client):
        v = ChargeLedgerView(client, display_window=100)
        assert [r.id for r in v.load("c1", "payable")] == ["9"]

    def test_stale_result_is_discarded(self, client):
        v = ChargeLedgerView(client, display_window=100)
        first = v.begin_load("c1", Direction.RECEIVABLE)
        second = v.begin_load("c2", Direction.RECEIVABLE)
        assert not v.apply_result(first, client.list_open_charges("c1", Direction.RECEIVABLE))
        assert v.records == []
        assert v.apply_result(second, client.list_open_charges("c2", Direction.RECEIVABLE))
        assert [r.id for r in v.records] == ["8"]

    def test_reload_of_same_counterparty_also_discards_older_fetch(self, client):
        v = ChargeLedgerView(client, display_window=100)
        first = v.begin_load("c1", Direction.RECEIVABLE)
        v.begin_load("c1", Direction.RECEIVABLE)
        assert not v.is_current(first)

    def test_switching_counterparty_clears_selection(self, view):
        view.toggle("1")
        view.load("c2", Direction.RECEIVABLE)
        assert len(view.selection) == 0

    def test_reload_drops_selection_of_charges_gone(self, client, view):
        view.set_selected(["1", "3"])
        client.mark_invoiced(["3"], "inv-1", "INV20260000002")
        view.load("c1", Direction.RECEIVABLE)
        assert view.selection.keys() == {"1"}

    def test_require_fresh(self, client):
        v = ChargeLedgerView(client, display_window=100)
        with pytest.raises(ValidationError):
            v.require_fresh()
        v.load("c1", Direction.RECEIVABLE)
        v.require_fresh()
        v.invalidate()
        with pytest.raises(ValidationError):
            v.require_fresh()


class TestSelection:

    def test_toggle_flips_one_record(self, view):
        assert view.toggle("1") is True
        assert view.is_selected("1")
        assert not view.is_selected("2")
        assert view.toggle("1") is False

    def test_toggle_unknown_charge(self, view):
        with pytest.raises(ValidationError):
            view.toggle("7")

    def test_container_toggle_selects_whole_group(self, view):
        assert view.toggle_by_container("abcd1234567") is True
        assert [r.id for r in view.selected_records()] == ["1", "2"]
        assert view.toggle_by_container("ABCD1234567") is False
        assert view.selected_records() == []

    def test_container_toggle_uses_shipment_when_no_container(self, view):
        view.toggle_by_container("BL-300")
        assert [r.id for r in view.selected_records()] == ["4"]

    @pytest.mark.parametrize("initial", [set(), {"1"}, {"2"}, {"1", "2"}])
    def test_container_toggle_twice_restores_state(self, view, initial):
        view.set_selected(initial)
        view.toggle_by_container("ABCD1234567")
        view.toggle_by_container("ABCD1234567")
        assert {r.id for r in view.selected_records()} == initial

    def test_partial_group_is_completed_first(self, view):
        view.toggle("1")
        assert view.toggle_by_container("ABCD1234567") is True
        assert view.is_selected("2")

    def test_group_summary(self, view):
        view.toggle("2")
        summary = {s["key"]: s for s in view.group_summary()}
        assert summary["ABCD1234567"] == {"key": "ABCD1234567", "total": 2, "selected": 1}
        assert summary["BL-300"]["total"] == 1

    def test_shared_selection_model(self, client):
        selection = SelectionModel()
        v = ChargeLedgerView(client, display_window=100, selection=selection)
        v.load("c1", Direction.RECEIVABLE)
        v.toggle("3")
        assert selection.is_selected("3")


class TestFilter:

    def test_keywords_are_or_combined_and_case_insensitive(self, view):
        assert [r.id for r in view.filter(["abcd", "bl-300"])] == ["1", "2", "4"]

    def test_matches_shipment_number(self, view):
        assert [r.id for r in view.filter(["BL-200"])] == ["3"]

    def test_empty_filter_returns_everything(self, view):
        assert len(view.filter([])) == 4
        assert len(view.filter(["", "  "])) == 4

    def test_display_window_caps_unfiltered_list_only(self, client):
        v = ChargeLedgerView(client, display_window=2)
        v.load("c1", Direction.RECEIVABLE)
        assert [r.id for r in v.visible()] == ["1", "2"]
        assert [r.id for r in v.visible(["BL"])] == ["1", "2", "3", "4"]
        # The cap never limits what can be selected.
        v.toggle("4")
        assert [r.id for r in v.selected_records()] == ["4"]

    def test_narrow_to_sets_keywords(self, view):
        view.narrow_to(["EFGH7654321", "EFGH7654321", ""])
        assert view.keywords == ["EFGH7654321"]
        assert [r.id for r in view.visible()] == ["3"]
        view.clear_filter()
        assert len(view.visible()) == 4

    def test_narrow_to_compares_keys_exactly(self):
        client = InMemoryLedger([charge("1"), charge("10")])
        v = ChargeLedgerView(client, display_window=100)
        v.load("c1", Direction.RECEIVABLE)
        v.narrow_to(["BL-1"])
        assert [r.id for r in v.visible()] == ["1"]
        # Explicit keywords are still substring matches.
        assert [r.id for r in v.filter(["BL-1"])] == ["1", "10"]
        v.search(["BL-1"])
        assert not v.exact_match
        assert [r.id for r in v.visible()] == ["1", "10"]


def test_parse_keywords():
    assert parse_keywords("ABCD1234567\nEFGH7654321, BL-1;x") == ["ABCD1234567", "EFGH7654321", "BL-1", "x"]
    assert parse_keywords(None) == []
