"""
Local statement parser for supplier/customer charge statements.

Reads the first sheet of an Excel workbook (or a CSV file) with no fixed
layout: the header row is found by scanning for a row that has both a
fee-name column and an amount column. Column names may be English or
Chinese.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from ..dataclasses import ExternalReconciliationRecord, ParsedDocument
from ..services.utils import d, unique

logger = logging.getLogger(__name__)

HEADER_ALIASES: Dict[str, tuple] = {
    "fee_name": ("fee name", "fee item", "charge", "charge name", "description", "费用名称", "费用项", "费用"),
    "amount": ("amount", "amt", "charge amount", "金额", "费用金额"),
    "currency": ("currency", "ccy", "币种"),
    "container_number": ("container", "container no", "container number", "cntr", "cntr no", "柜号", "集装箱号"),
    "shipment_number": ("b/l", "bl", "bl no", "b/l no", "bill no", "bill number", "shipment", "shipment no", "提单号"),
    "remark": ("remark", "remarks", "note", "notes", "备注"),
    "status": ("status", "match status", "状态", "开票状态"),
    "due_date": ("due date", "payment due", "到期日"),
    "invoice_number": ("invoice no", "invoice number", "发票号", "发票号码"),
}

TOTAL_LABELS = {"total", "subtotal", "grand total", "合计", "小计", "总计"}
MATCHED_MARKERS = ("invoiced", "matched", "已开票", "已匹配")
NEGATIONS = ("not ", "un", "未", "no ")
EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


def _norm_header(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip().lower().rstrip(".:：")


def _was_matched(status: str) -> bool:
    if not status or any(status.startswith(n) or f" {n}" in status for n in NEGATIONS):
        return False
    return any(marker in status for marker in MATCHED_MARKERS)


def map_header(cells: List[object]) -> Dict[str, int]:
    """Column index per known field; exact alias matches win over partial ones."""
    names = [_norm_header(c) for c in cells]
    mapping: Dict[str, int] = {}
    for field, aliases in HEADER_ALIASES.items():
        for idx, name in enumerate(names):
            if name in aliases and idx not in mapping.values():
                mapping[field] = idx
                break
    for field, aliases in HEADER_ALIASES.items():
        if field in mapping:
            continue
        for idx, name in enumerate(names):
            if idx in mapping.values() or not name:
                continue
            if any(len(alias) >= 4 and alias in name for alias in aliases):
                mapping[field] = idx
                break
    return mapping


def _cell(row: List[object], mapping: Dict[str, int], field: str) -> str:
    idx = mapping.get(field)
    if idx is None or idx >= len(row):
        return ""
    value = row[idx]
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


class SpreadsheetStatementParser:
    def __init__(self, default_currency: Optional[str] = None):
        self.default_currency = default_currency or ""

    def _read(self, source) -> pd.DataFrame:
        name = str(source) if isinstance(source, (str, Path)) else getattr(source, "name", "")
        ext = Path(name).suffix.lower()
        if ext in EXCEL_SUFFIXES:
            return pd.read_excel(source, header=None, dtype=str, engine="openpyxl")
        if ext == ".csv":
            try:
                return pd.read_csv(source, header=None, dtype=str, engine="python", encoding="utf-8-sig")
            except UnicodeDecodeError:
                if hasattr(source, "seek"):
                    source.seek(0)
                return pd.read_csv(source, header=None, dtype=str, engine="python", encoding="gb18030")
        raise ValueError(f"Unsupported statement file type: {ext or name!r}")

    def parse(self, source) -> ParsedDocument:
        raw = self._read(source)
        rows = raw.values.tolist()

        header_idx = None
        mapping: Dict[str, int] = {}
        for i, row in enumerate(rows):
            candidate = map_header(row)
            if "fee_name" in candidate and "amount" in candidate:
                header_idx, mapping = i, candidate
                break
        if header_idx is None:
            raise ValueError("Could not find a header row with fee name and amount columns")

        items: List[ExternalReconciliationRecord] = []
        due_dates: List[str] = []
        invoice_numbers: List[str] = []
        for offset, row in enumerate(rows[header_idx + 1:], start=header_idx + 2):
            fee_name = _cell(row, mapping, "fee_name")
            amount_text = _cell(row, mapping, "amount")
            if _cell(row, mapping, "due_date"):
                due_dates.append(_cell(row, mapping, "due_date"))
            if _cell(row, mapping, "invoice_number"):
                invoice_numbers.append(_cell(row, mapping, "invoice_number"))
            if not fee_name or fee_name.lower() in TOTAL_LABELS:
                continue
            try:
                amount = d(amount_text)
            except ValueError:
                logger.debug("Skipping statement row %d: amount %r is not a number", offset, amount_text)
                continue
            if not amount_text or amount == Decimal("0"):
                continue
            status = _cell(row, mapping, "status").lower()
            items.append(ExternalReconciliationRecord(
                fee_name=fee_name,
                amount=amount,
                currency=_cell(row, mapping, "currency").upper() or self.default_currency,
                container_number=_cell(row, mapping, "container_number") or None,
                shipment_number=_cell(row, mapping, "shipment_number") or None,
                remark=_cell(row, mapping, "remark"),
                row_number=offset,
                previously_matched=_was_matched(status),
            ))

        due = None
        for text in due_dates:
            parsed = pd.to_datetime(text, errors="coerce")
            if not pd.isna(parsed):
                due = parsed.date()
                break

        logger.info("Parsed %d charge rows from statement %s", len(items), getattr(source, "name", source))
        return ParsedDocument(
            items=items,
            extracted_due_date=due,
            extracted_external_invoice_numbers=unique(invoice_numbers),
        )
