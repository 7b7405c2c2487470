from datetime import date
from decimal import Decimal

import pytest

from ..collaborators.spreadsheet import SpreadsheetStatementParser, _was_matched, map_header

STATEMENT = """\
Statement of charges ACME,,,,,,,
Period: 2026-10,,,,,,,
Container No,B/L No,Fee Name,Amount,Currency,Status,Due Date,Invoice No
ABCD1234567,BL001,THC,"1,200.00",EUR,,2026-11-30,SUP-001
ABCD1234567,BL001,Ocean Freight,900,usd,Invoiced,,
EFGH7654321,BL002,Seal fee,n/a,EUR,,,
EFGH7654321,BL002,Storage,0,EUR,,,
EFGH7654321,BL002,Customs,45.5,,not invoiced,,SUP-002
,,Total,2145.5,,,,
"""


@pytest.fixture
def statement_csv(tmp_path):
    path = tmp_path / "statement.csv"
    path.write_text(STATEMENT, encoding="utf-8")
    return path


class TestSpreadsheetParser:

    def test_parses_rows_after_detected_header(self, statement_csv):
        document = SpreadsheetStatementParser(default_currency="EUR").parse(statement_csv)
        assert [i.fee_name for i in document.items] == ["THC", "Ocean Freight", "Customs"]
        thc, freight, customs = document.items
        assert thc.amount == Decimal("1200.00")
        assert thc.container_number == "ABCD1234567"
        assert thc.shipment_number == "BL001"
        assert thc.row_number == 4
        assert freight.currency == "USD"
        assert freight.previously_matched
        assert customs.currency == "EUR"
        assert not customs.previously_matched
        assert customs.row_number == 8

    def test_header_hints(self, statement_csv):
        document = SpreadsheetStatementParser().parse(statement_csv)
        assert document.extracted_due_date == date(2026, 11, 30)
        assert document.extracted_external_invoice_numbers == ["SUP-001", "SUP-002"]

    def test_chinese_headers(self, tmp_path):
        path = tmp_path / "对账单.csv"
        path.write_text("柜号,提单号,费用名称,金额,币种\nABCD1234567,BL001,码头操作费,350,CNY\n", encoding="utf-8")
        [item] = SpreadsheetStatementParser().parse(path).items
        assert item.fee_name == "码头操作费"
        assert item.amount == Decimal("350")
        assert item.currency == "CNY"
        assert item.container_number == "ABCD1234567"

    def test_file_object(self, statement_csv):
        with statement_csv.open("rb") as fh:
            assert len(SpreadsheetStatementParser().parse(fh).items) == 3

    def test_no_header_row(self, tmp_path):
        path = tmp_path / "notes.csv"
        path.write_text("hello,world\n1,2\n", encoding="utf-8")
        with pytest.raises(ValueError):
            SpreadsheetStatementParser().parse(path)

    def test_unsupported_file_type(self, tmp_path):
        path = tmp_path / "statement.pdf"
        path.write_bytes(b"%PDF-1.4")
        with pytest.raises(ValueError):
            SpreadsheetStatementParser().parse(path)


class TestHeaderMapping:

    def test_exact_and_partial_names(self):
        mapping = map_header(["Cntr No.", "Charge Description", "Amount (EUR)", "Remarks"])
        assert mapping == {"container_number": 0, "fee_name": 1, "amount": 2, "remark": 3}

    @pytest.mark.parametrize("status,expected", [
        ("invoiced", True),
        ("matched", True),
        ("已开票", True),
        ("not invoiced", False),
        ("unmatched", False),
        ("未开票", False),
        ("", False),
    ])
    def test_matched_markers(self, status, expected):
        assert _was_matched(status) is expected
