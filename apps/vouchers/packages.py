"""
Voucher packages sold through the hotspot.

Each package maps to an access-controller profile, a validity window and
an optional data cap.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class VoucherPackage:
    name: str
    validity_hours: int
    profile: str
    data_limit_mb: Optional[int] = None

    @property
    def data_limit_bytes(self) -> Optional[int]:
        if self.data_limit_mb is None:
            return None
        return self.data_limit_mb * 1024 * 1024


PACKAGES = {
    'daily_1gb': VoucherPackage('daily_1gb', 24, '1GB-DAILY', 1024),
    'weekly_5gb': VoucherPackage('weekly_5gb', 168, '5GB-WEEKLY', 5120),
    'monthly_20gb': VoucherPackage('monthly_20gb', 720, '20GB-MONTHLY', 20480),
    'unlimited_daily': VoucherPackage('unlimited_daily', 24, 'UNLIMITED-DAILY'),
    'unlimited_weekly': VoucherPackage('unlimited_weekly', 168, 'UNLIMITED-WEEKLY'),
    'unlimited_monthly': VoucherPackage('unlimited_monthly', 720, 'UNLIMITED-MONTHLY'),
    'daily': VoucherPackage('daily', 24, 'DAILY'),
    'weekly': VoucherPackage('weekly', 168, 'WEEKLY'),
    'monthly': VoucherPackage('monthly', 720, 'MONTHLY'),
    'default': VoucherPackage('default', 24, 'DEFAULT'),
}


def get_package(name) -> Optional[VoucherPackage]:
    if not name:
        return None
    return PACKAGES.get(str(name).lower())
