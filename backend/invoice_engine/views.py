from __future__ import annotations

import logging
from typing import Any, Dict

from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .conf import invoicing_setting
from .dataclasses import ExternalReconciliationRecord
from .serializers import (
    ChargeSerializer,
    HeaderSerializer,
    ManualItemSerializer,
    PreviewRequestSerializer,
    ReconcileRequestSerializer,
    StatementRowSerializer,
)
from .services.composer import build_payload, preview_document
from .services.errors import CounterpartyMismatch, InvoicingError
from .services.reconciliation import flag_already_invoiced, match_records

logger = logging.getLogger(__name__)


def _error(e: InvoicingError) -> Response:
    if isinstance(e, CounterpartyMismatch):
        return Response(
            {"error": str(e), "details": {"chargeIds": e.charge_ids, "expected": e.expected}},
            status=status.HTTP_409_CONFLICT,
        )
    details = getattr(e, "errors", None) or [str(e)]
    return Response({"error": str(e), "details": details}, status=status.HTTP_400_BAD_REQUEST)


def serialize_row(record: ExternalReconciliationRecord) -> Dict[str, Any]:
    return {
        "rowNumber": record.row_number,
        "feeName": record.fee_name,
        "amount": str(record.amount),
        "currency": record.currency,
        "containerNumber": record.container_number,
        "shipmentNumber": record.shipment_number,
        "isMatched": record.is_matched,
        "matchedChargeId": record.matched_charge_id,
        "matchedShipmentNumber": record.matched_shipment_number,
        "matchedContainerNumber": record.matched_container_number,
        "alreadyInvoiced": record.already_invoiced,
        "invoicedReason": record.invoiced_reason,
        "selected": record.selected,
    }


class InvoicePreviewView(views.APIView):
    """Compose a document from charges the client already selected; nothing is submitted."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = PreviewRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        header = HeaderSerializer.to_header(
            data["header"],
            default_currency=invoicing_setting("DEFAULT_CURRENCY"),
            default_language=invoicing_setting("DEFAULT_LANGUAGE"),
        )
        charges = [ChargeSerializer.to_record(c) for c in data.get("charges", [])]
        manual = [ManualItemSerializer.to_item(m) for m in data.get("manual_items", [])]
        try:
            document = preview_document(header, charges, manual, merge_by_name=data.get("merge_by_name", False))
        except InvoicingError as e:
            logger.info("Preview rejected: %s", e)
            return _error(e)
        return Response(build_payload(document), status=status.HTTP_200_OK)


class ReconcileView(views.APIView):
    """Match statement rows against a supplied open-charge list."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = ReconcileRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        ledger = [ChargeSerializer.to_record(c) for c in data.get("ledger", [])]
        open_ledger = [c for c in ledger if c.is_selectable]
        invoiced = data.get("invoiced")
        invoiced_charges = [ChargeSerializer.to_record(c) for c in invoiced] if invoiced is not None else None
        rows = [StatementRowSerializer.to_record(r, i) for i, r in enumerate(data["items"], start=1)]

        matched = match_records(rows, open_ledger)
        flagged = flag_already_invoiced(matched, open_ledger, invoiced_charges)
        summary = {
            "total": len(flagged),
            "matched": sum(1 for r in flagged if r.is_matched),
            "unmatched": sum(1 for r in flagged if not r.is_matched and not r.already_invoiced),
            "alreadyInvoiced": sum(1 for r in flagged if r.already_invoiced),
        }
        return Response({"rows": [serialize_row(r) for r in flagged], "summary": summary}, status=status.HTTP_200_OK)
