from apps.vouchers.services.voucher_service import (
    VoucherService,
    InvalidVoucherTransition,
    VoucherNotEditable,
    VoucherCodeExhausted,
    VoucherNotFound,
    UnknownPackage,
)

__all__ = [
    'VoucherService',
    'InvalidVoucherTransition',
    'VoucherNotEditable',
    'VoucherCodeExhausted',
    'VoucherNotFound',
    'UnknownPackage',
]
