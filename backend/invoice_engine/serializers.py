from __future__ import annotations

from typing import Any, Dict

from rest_framework import serializers

from .dataclasses import (
    ApprovalStatus,
    ChargeRecord,
    Direction,
    ExternalReconciliationRecord,
    InvoiceHeader,
    InvoiceLineItem,
    InvoiceStatus,
)

DIRECTIONS = tuple(d.value for d in Direction)


def _opt(value):
    return value or None


class ChargeSerializer(serializers.Serializer):
    id = serializers.CharField()
    fee_name = serializers.CharField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(max_length=3)
    shipment_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    shipment_number = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    container_number = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    counterparty_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    counterparty_name = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    direction = serializers.ChoiceField(choices=DIRECTIONS, required=False, default=Direction.RECEIVABLE.value)
    category = serializers.CharField(required=False, allow_blank=True, default="")
    approval_status = serializers.ChoiceField(
        choices=tuple(s.value for s in ApprovalStatus), required=False, allow_null=True
    )
    invoice_status = serializers.ChoiceField(
        choices=tuple(s.value for s in InvoiceStatus), required=False, default=InvoiceStatus.OPEN.value
    )
    invoice_number = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    is_locked = serializers.BooleanField(required=False, default=False)
    is_supplementary = serializers.BooleanField(required=False, default=False)

    def validate_currency(self, value: str) -> str:
        return value.strip().upper()

    @staticmethod
    def to_record(data: Dict[str, Any]) -> ChargeRecord:
        approval = data.get("approval_status")
        return ChargeRecord(
            id=data["id"],
            fee_name=data["fee_name"],
            amount=data["amount"],
            currency=data["currency"],
            shipment_id=_opt(data.get("shipment_id")),
            shipment_number=_opt(data.get("shipment_number")),
            container_number=_opt(data.get("container_number")),
            counterparty_id=_opt(data.get("counterparty_id")),
            counterparty_name=_opt(data.get("counterparty_name")),
            direction=Direction(data.get("direction") or Direction.RECEIVABLE.value),
            category=data.get("category", ""),
            approval_status=ApprovalStatus(approval) if approval else None,
            invoice_status=InvoiceStatus(data.get("invoice_status") or InvoiceStatus.OPEN.value),
            invoice_number=_opt(data.get("invoice_number")),
            is_locked=data.get("is_locked", False),
            is_supplementary=data.get("is_supplementary", False),
        )


class ManualItemSerializer(serializers.Serializer):
    description = serializers.CharField()
    unit_price = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(max_length=3)
    quantity = serializers.IntegerField(min_value=1, required=False, default=1)
    tax_rate = serializers.DecimalField(max_digits=6, decimal_places=3, required=False, default=0)
    discount_percent = serializers.DecimalField(max_digits=6, decimal_places=3, required=False, default=0)
    # Negative values are surcharges.
    discount_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, default=0)

    @staticmethod
    def to_item(data: Dict[str, Any]) -> InvoiceLineItem:
        return InvoiceLineItem.manual(
            description=data["description"],
            unit_price=data["unit_price"],
            currency=data["currency"].strip().upper(),
            quantity=data.get("quantity", 1),
            tax_rate=data.get("tax_rate", 0),
            discount_percent=data.get("discount_percent", 0),
            discount_amount=data.get("discount_amount", 0),
        )


class HeaderSerializer(serializers.Serializer):
    direction = serializers.ChoiceField(choices=DIRECTIONS)
    counterparty_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    counterparty_name = serializers.CharField(required=False, allow_blank=True, default="")
    invoice_date = serializers.DateField(required=False)
    due_date = serializers.DateField(required=False, allow_null=True)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True, default="")
    exchange_rate = serializers.DecimalField(max_digits=18, decimal_places=6, required=False, default=1)
    language = serializers.CharField(required=False, allow_blank=True, default="")
    template_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    shipment_ids = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    shipment_numbers = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    container_numbers = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    external_invoice_numbers = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_exchange_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("exchange_rate must be positive.")
        return value

    @staticmethod
    def to_header(data: Dict[str, Any], default_currency: str, default_language: str) -> InvoiceHeader:
        extra = {"invoice_date": data["invoice_date"]} if data.get("invoice_date") else {}
        return InvoiceHeader(
            direction=Direction(data["direction"]),
            counterparty_id=_opt(data.get("counterparty_id")),
            counterparty_name=data.get("counterparty_name", ""),
            due_date=data.get("due_date"),
            currency=(data.get("currency") or default_currency).upper(),
            exchange_rate=data.get("exchange_rate", 1),
            language=data.get("language") or default_language,
            template_id=_opt(data.get("template_id")),
            shipment_ids=list(data.get("shipment_ids", [])),
            shipment_numbers=list(data.get("shipment_numbers", [])),
            container_numbers=list(data.get("container_numbers", [])),
            external_invoice_numbers=list(data.get("external_invoice_numbers", [])),
            description=data.get("description", ""),
            notes=data.get("notes", ""),
            **extra,
        )


class StatementRowSerializer(serializers.Serializer):
    fee_name = serializers.CharField()
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.CharField(required=False, allow_blank=True, default="")
    container_number = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    shipment_number = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    remark = serializers.CharField(required=False, allow_blank=True, default="")
    previously_matched = serializers.BooleanField(required=False, default=False)

    @staticmethod
    def to_record(data: Dict[str, Any], row_number: int) -> ExternalReconciliationRecord:
        return ExternalReconciliationRecord(
            fee_name=data["fee_name"],
            amount=data["amount"],
            currency=(data.get("currency") or "").upper(),
            container_number=_opt(data.get("container_number")),
            shipment_number=_opt(data.get("shipment_number")),
            remark=data.get("remark", ""),
            row_number=row_number,
            previously_matched=data.get("previously_matched", False),
        )


class PreviewRequestSerializer(serializers.Serializer):
    header = HeaderSerializer()
    charges = ChargeSerializer(many=True, required=False, default=list)
    manual_items = ManualItemSerializer(many=True, required=False, default=list)
    merge_by_name = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get("charges") and not attrs.get("manual_items"):
            raise serializers.ValidationError("Provide at least one charge or manual item.")
        return attrs


class ReconcileRequestSerializer(serializers.Serializer):
    ledger = ChargeSerializer(many=True, required=False, default=list)
    items = StatementRowSerializer(many=True)
    # Charges already invoiced for the same containers/shipments, when the caller has them.
    invoiced = ChargeSerializer(many=True, required=False, allow_null=True, default=None)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("items must not be empty.")
        return value
