"""
Serializers for the voucher export endpoints.
"""
from rest_framework import serializers

from apps.vouchers.models import Voucher


class VoucherSerializer(serializers.ModelSerializer):
    """
    Read-only voucher representation.

    The password is included so operators can re-send credentials; the
    endpoints are tenant-scoped.
    """

    customer_phone = serializers.SerializerMethodField()
    transaction_id = serializers.SerializerMethodField()

    class Meta:
        model = Voucher
        fields = [
            'id', 'tenant_id', 'code', 'password', 'package', 'profile',
            'validity_hours', 'data_limit_mb', 'price', 'currency', 'status',
            'activated_at', 'expires_at', 'used_at', 'disabled_at', 'refunded_at',
            'sms_sent_at', 'router_synced_at', 'customer_phone', 'transaction_id',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_customer_phone(self, obj):
        return obj.customer.phone_e164 if obj.customer_id else None

    def get_transaction_id(self, obj):
        return obj.payment.transaction_id if obj.payment_id else None
