from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

from ..conf import invoicing_setting
from ..dataclasses import (
    ApprovalStatus,
    ChargeRecord,
    Direction,
    ExternalReconciliationRecord,
    InvoiceStatus,
    ParsedDocument,
)
from ..services.errors import ServiceError
from ..services.utils import d

logger = logging.getLogger(__name__)


def _pick(row: Dict[str, Any], *keys: str, default=None):
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return default


def _opt_str(value) -> Optional[str]:
    return None if value is None or value == "" else str(value)


def charge_from_json(row: Dict[str, Any]) -> ChargeRecord:
    """Ledger rows come camelCased from the API; snake_case is accepted too."""
    approval = _pick(row, "approvalStatus", "approval_status")
    invoice_status = (_pick(row, "invoiceStatus", "invoice_status", default="") or "").lower()
    return ChargeRecord(
        id=str(row["id"]),
        fee_name=_pick(row, "feeName", "fee_name", default=""),
        amount=d(_pick(row, "amount", default=0)),
        currency=_pick(row, "currency", default=""),
        shipment_id=_opt_str(_pick(row, "shipmentId", "shipment_id", "billId", "bill_id")),
        shipment_number=_opt_str(_pick(row, "shipmentNumber", "shipment_number", "billNumber", "bill_number")),
        container_number=_opt_str(_pick(row, "containerNumber", "container_number")),
        counterparty_id=_opt_str(_pick(row, "counterpartyId", "counterparty_id", "customerId", "customer_id", "supplierId")),
        counterparty_name=_opt_str(_pick(row, "counterpartyName", "counterparty_name", "customerName", "customer_name", "supplierName")),
        direction=Direction(_pick(row, "direction", "feeType", "fee_type", default="receivable")),
        category=_pick(row, "category", default=""),
        approval_status=ApprovalStatus(approval) if approval else None,
        invoice_status=InvoiceStatus.INVOICED if invoice_status == "invoiced" else InvoiceStatus.OPEN,
        invoice_number=_opt_str(_pick(row, "invoiceNumber", "invoice_number")),
        is_locked=bool(_pick(row, "isLocked", "is_locked", default=False)),
        is_supplementary=bool(_pick(row, "isSupplementary", "is_supplementary", default=False)),
    )


def record_from_json(row: Dict[str, Any]) -> ExternalReconciliationRecord:
    return ExternalReconciliationRecord(
        fee_name=_pick(row, "feeName", "fee_name", "description", default=""),
        amount=d(_pick(row, "amount", default=0)),
        currency=_pick(row, "currency", default=""),
        container_number=_opt_str(_pick(row, "containerNumber", "container_number")),
        shipment_number=_opt_str(_pick(row, "shipmentNumber", "shipment_number", "billNumber", "bill_number")),
        remark=_pick(row, "remark", default=""),
        previously_matched=bool(_pick(row, "previouslyMatched", "previously_matched", "isMatched", default=False)),
        selected=bool(row.get("selected", True)),
    )


def _unwrap(resp: requests.Response) -> Any:
    """Return the payload, unwrapping the ``{"errCode", "msg", "data"}`` envelope."""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if resp.status_code >= 400:
        message = None
        if isinstance(body, dict):
            message = body.get("msg") or body.get("error") or body.get("detail")
        raise ServiceError(message or f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
    if isinstance(body, dict) and "errCode" in body:
        if body["errCode"] != 200:
            raise ServiceError(body.get("msg") or f"Service error {body['errCode']}", status_code=body["errCode"])
        return body.get("data")
    return body


def _rows(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("list", data.get("items", []))
    return list(data or [])


class _HttpClient:
    base_setting = ""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None, api_key: Optional[str] = None):
        self.base_url = (base_url or invoicing_setting(self.base_setting)).rstrip("/")
        self.timeout = timeout or int(invoicing_setting("HTTP_TIMEOUT"))
        self.api_key = api_key if api_key is not None else invoicing_setting("API_KEY")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": "InvoiceEngine/1.0"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise ServiceError(f"{method} {url} failed: {e}") from e
        return _unwrap(resp)


class HttpLedgerClient(_HttpClient):
    base_setting = "LEDGER_URL"

    def list_open_charges(self, counterparty_id: str, direction: Direction, exclude_invoiced: bool = True) -> List[ChargeRecord]:
        params = {
            "customerId": counterparty_id,
            "feeType": Direction(direction).value,
            "excludeInvoiced": "true" if exclude_invoiced else "false",
            "pageSize": 10000,
        }
        data = self._request("GET", "fees", params=params)
        return [charge_from_json(r) for r in _rows(data)]

    def lookup_charges(
        self,
        counterparty_id: str,
        direction: Direction,
        container_numbers: Iterable[str] = (),
        shipment_numbers: Iterable[str] = (),
    ) -> List[ChargeRecord]:
        """All charges, invoiced or not, for the given containers/shipments."""
        params = {
            "customerId": counterparty_id,
            "feeType": Direction(direction).value,
            "containerNumbers": ",".join(container_numbers),
            "billNumbers": ",".join(shipment_numbers),
        }
        data = self._request("GET", "fees/lookup", params=params)
        return [charge_from_json(r) for r in _rows(data)]

    def mark_invoiced(self, charge_ids: List[str], invoice_id: str, invoice_number: Optional[str] = None) -> None:
        self._request("POST", "fees/mark-invoiced", json={
            "feeIds": list(charge_ids),
            "invoiceId": invoice_id,
            "invoiceNumber": invoice_number,
        })


class HttpInvoicingClient(_HttpClient):
    base_setting = "INVOICING_URL"

    @staticmethod
    def _result(data: Any) -> Dict[str, Any]:
        data = data or {}
        invoice_id = _pick(data, "invoiceId", "id")
        if invoice_id is None:
            raise ServiceError("Invoicing service response has no invoice id")
        return {"invoiceId": str(invoice_id), "invoiceNumber": _pick(data, "invoiceNumber", "invoice_number")}

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._result(self._request("POST", "invoices", json=payload))

    def update(self, invoice_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._result(self._request("PUT", f"invoices/{invoice_id}", json=payload))


class HttpDocumentParser(_HttpClient):
    base_setting = "PARSER_URL"

    def parse(self, source) -> ParsedDocument:
        if isinstance(source, (str, Path)):
            path = Path(source)
            with path.open("rb") as fh:
                data = self._request("POST", "parse", files={"file": (path.name, fh)})
        else:
            name = getattr(source, "name", "statement")
            data = self._request("POST", "parse", files={"file": (Path(str(name)).name, source)})
        data = data or {}
        due = _pick(data, "extractedDueDate", "dueDate")
        return ParsedDocument(
            items=[record_from_json(r) for r in _rows(data)],
            extracted_due_date=date.fromisoformat(due[:10]) if due else None,
            extracted_external_invoice_numbers=list(_pick(data, "extractedExternalInvoiceNumbers", "invoiceNumbers", default=[])),
        )
