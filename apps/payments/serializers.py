"""
Serializers for payment API endpoints.
"""
from decimal import Decimal

from rest_framework import serializers

from apps.payments.models import Payment


class PaymentInitiateSerializer(serializers.Serializer):
    """Request body for starting a payment."""

    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    phone = serializers.CharField(max_length=20)
    package = serializers.CharField(max_length=50)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    description = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    metadata = serializers.DictField(required=False, default=dict)

    def validate_currency(self, value):
        return value.upper() if value else None


class PaymentResultSerializer(serializers.Serializer):
    """Serializes a ``PaymentResult``."""

    transaction_id = serializers.CharField()
    status = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    message = serializers.CharField(allow_blank=True)
    requires_confirmation = serializers.BooleanField()
    voucher_code = serializers.CharField(allow_null=True)


class PaymentSerializer(serializers.ModelSerializer):
    """Read-only payment representation for listings."""

    voucher_code = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            'id', 'transaction_id', 'tenant_id', 'phone', 'provider', 'provider_reference',
            'amount', 'currency', 'package', 'description', 'status',
            'paid_at', 'failed_at', 'failure_reason', 'voucher_code',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_voucher_code(self, obj):
        voucher = obj.voucher_or_none
        return voucher.code if voucher else None


class SettlementOutcomeSerializer(serializers.Serializer):
    """Serializes a settlement outcome."""

    outcome = serializers.CharField()
    ok = serializers.BooleanField()
    voucher_code = serializers.CharField(allow_null=True)
    reason = serializers.CharField(allow_blank=True)
