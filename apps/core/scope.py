"""
Tenant scoping for every query issued by the billing pipeline.

A ``TenantScope`` is built once per request (by ``TenantContextMiddleware``)
or once per background task and handed explicitly to the scoped managers.
Scoped managers expose ``for_scope(scope)`` as their only entry point for
tenant reads; a non-global scope always filters on ``tenant_id``.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from apps.core.exceptions import ScopeRequired
from apps.core.models import BaseModelManager, BaseModelQuerySet


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    if hasattr(value, 'pk'):
        return value.pk
    return uuid.UUID(str(value))


@dataclass(frozen=True)
class TenantScope:
    """
    Actor context carried through every store call.

    Attributes:
        tenant_id: Tenant the actor belongs to (required unless global)
        is_global: Platform-level actor, not implicitly scoped
        target_tenant_id: Optional explicit filter chosen by a global actor
    """

    tenant_id: Optional[uuid.UUID] = None
    is_global: bool = False
    target_tenant_id: Optional[uuid.UUID] = None

    def __post_init__(self):
        if not self.is_global and self.tenant_id is None:
            raise ScopeRequired("A tenant scope requires a tenant id")
        if not self.is_global and self.target_tenant_id is not None:
            raise ScopeRequired(
                "Only a global scope may target another tenant",
                details={'tenant_id': str(self.tenant_id)}
            )

    @classmethod
    def for_tenant(cls, tenant) -> 'TenantScope':
        """Build a scope bound to ``tenant`` (model instance or id)."""
        return cls(tenant_id=_as_uuid(tenant))

    @classmethod
    def global_scope(cls, target_tenant=None) -> 'TenantScope':
        return cls(is_global=True, target_tenant_id=_as_uuid(target_tenant))

    @property
    def effective_tenant_id(self) -> Optional[uuid.UUID]:
        """Tenant the queries are filtered on, or None for an unfiltered global scope."""
        if self.is_global:
            return self.target_tenant_id
        return self.tenant_id

    def narrowed_to(self, tenant) -> 'TenantScope':
        """
        Return a scope limited to ``tenant``.

        A tenant actor can only narrow to its own tenant; a global actor
        gets a targeted global scope.
        """
        tenant_id = _as_uuid(tenant)
        if self.is_global:
            return TenantScope.global_scope(tenant_id)
        if tenant_id != self.tenant_id:
            raise ScopeRequired(
                "Cannot narrow a tenant scope to another tenant",
                details={'tenant_id': str(self.tenant_id), 'requested': str(tenant_id)}
            )
        return self

    def allows(self, tenant_id) -> bool:
        """Check whether a row owned by ``tenant_id`` is visible to this scope."""
        effective = self.effective_tenant_id
        if effective is None:
            return True
        return _as_uuid(tenant_id) == effective

    def apply(self, queryset, field: str = 'tenant_id'):
        effective = self.effective_tenant_id
        if effective is None:
            return queryset
        return queryset.filter(**{field: effective})

    def log_extra(self) -> dict:
        return {
            'tenant_id': str(self.effective_tenant_id) if self.effective_tenant_id else None,
            'global_scope': self.is_global,
        }


class ScopedQuerySet(BaseModelQuerySet):
    """QuerySet whose tenant rows are reached through ``for_scope``."""

    scope_field = 'tenant_id'

    def for_scope(self, scope: TenantScope):
        if not isinstance(scope, TenantScope):
            raise ScopeRequired(
                f"{self.model.__name__} queries require a TenantScope",
                details={'received': type(scope).__name__}
            )
        return scope.apply(self, field=self.scope_field)


class ScopedManager(BaseModelManager):
    """
    Default manager for tenant-owned models.

    ``Model.objects.filter(...)`` raises ``ScopeRequired``: reads start from
    ``for_scope(scope)``. Writes addressed by primary key go through
    ``by_pk``, and ``unscoped()`` names the remaining cross-tenant access.
    """

    def get_queryset(self):
        # Reverse relation managers are already filtered on their owning row.
        if hasattr(self, 'core_filters'):
            return super().get_queryset()
        raise ScopeRequired(
            f"{self.model.__name__} queries require a TenantScope",
            details={'hint': 'use for_scope(scope), by_pk(pk) or unscoped()'}
        )

    def unscoped(self):
        return super().get_queryset()

    def for_scope(self, scope: TenantScope):
        return self.unscoped().for_scope(scope)

    def by_pk(self, pk):
        """Rows addressed by primary key, for CAS updates and task lookups."""
        return self.unscoped().filter(pk=pk)

    def create(self, **kwargs):
        return self.unscoped().create(**kwargs)
