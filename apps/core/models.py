"""
Core models for the hotspot billing platform.

BaseModel gives every table a UUID primary key, created/updated
timestamps and soft delete. Payments and vouchers are never hard-deleted
through the ORM shortcuts; ``hard_delete`` is reserved for retention
purges.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelManager(models.Manager):
    """Manager that hides soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModelQuerySet(models.QuerySet):
    """QuerySet where ``delete`` stamps ``deleted_at`` instead of removing rows."""

    def delete(self):
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Remove rows permanently (retention purges only)."""
        return super().delete()


class BaseModel(models.Model):
    """
    Abstract base for all billing tables.

    Provides a UUID primary key, creation/update timestamps and a
    ``deleted_at`` marker used for soft deletion.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When the row was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the row was last written"
    )

    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the row was soft deleted"
    )

    objects = BaseModelManager.from_queryset(BaseModelQuerySet)()
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        """Soft delete the row."""
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])
