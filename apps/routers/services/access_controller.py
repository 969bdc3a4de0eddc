"""
Access controller interface.

The access controller is the hotspot gateway that decides which usernames
may log in. It is remote and non-transactional; callers treat every
method as a network call that may fail or return stale data.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from django.utils import timezone

from apps.core.exceptions import ExternalServiceError


class AccessControllerError(ExternalServiceError):
    """Raised when the device cannot be reached or rejects a call."""
    code = 'ACCESS_CONTROLLER_ERROR'


class AccessControllerNotConfigured(AccessControllerError):
    code = 'ACCESS_CONTROLLER_NOT_CONFIGURED'


@dataclass
class RemoteUserRecord:
    """The device's view of one hotspot user. Never authoritative."""

    username: str
    enabled: bool
    profile: str = ''
    comment: str = ''
    remote_id: Optional[str] = None
    last_seen: datetime = field(default_factory=timezone.now)


@dataclass
class HotspotUserSpec:
    """Everything the device needs to create a hotspot user for a voucher."""

    username: str
    password: str
    profile: str
    validity_hours: int
    data_limit_bytes: Optional[int] = None
    comment: str = ''
    enabled: bool = True

    @property
    def limit_uptime(self):
        return f"{self.validity_hours:02d}:00:00"

    @classmethod
    def from_voucher(cls, voucher, now=None):
        customer = voucher.customer
        parts = []
        if customer is not None:
            if customer.name:
                parts.append(f"Customer: {customer.name}")
            parts.append(f"Phone: {customer.phone_e164}")
        parts.append(f"Price: {voucher.currency} {voucher.price:.2f}")
        if voucher.expires_at:
            expires = timezone.localtime(voucher.expires_at).strftime('%Y-%m-%d %H:%M')
            parts.append(f"Expires: {expires}")
        generated = timezone.localtime(now or timezone.now()).strftime('%Y-%m-%d %H:%M')
        parts.append(f"Generated at: {generated}")

        return cls(
            username=voucher.code,
            password=voucher.password,
            profile=voucher.profile,
            validity_hours=voucher.validity_hours,
            data_limit_bytes=voucher.data_limit_mb * 1024 * 1024 if voucher.data_limit_mb else None,
            comment=' | '.join(parts),
            enabled=voucher.should_be_enabled(now),
        )


class AccessController(ABC):
    """User-directory operations of a hotspot access controller."""

    @abstractmethod
    def get_user(self, username: str) -> Optional[RemoteUserRecord]:
        """Return the user record, or None if the device has no such user."""

    @abstractmethod
    def create_user(self, spec: HotspotUserSpec) -> bool:
        pass

    @abstractmethod
    def enable_user(self, username: str) -> bool:
        pass

    @abstractmethod
    def disable_user(self, username: str) -> bool:
        pass

    @abstractmethod
    def remove_expired_users(self, usernames: Optional[Iterable[str]] = None) -> int:
        """
        Remove users from the device.

        Args:
            usernames: Users known to be expired. When None, every user the
                device itself has marked disabled is removed.

        Returns:
            int: Number of users removed
        """
