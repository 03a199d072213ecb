"""
Shared model base for the policy engine.

Rules, overrides and windows are soft deleted so that an audit entry can
still point at the configuration a decision was made under.
"""
import uuid
from django.db import models
from django.utils import timezone


class BaseModelQuerySet(models.QuerySet):

    def delete(self):
        return self.update(deleted_at=timezone.now())

    def hard_delete(self):
        """Remove rows for good (rule batches and counter pruning)."""
        return super().delete()


class BaseModelManager(models.Manager.from_queryset(BaseModelQuerySet)):
    """Default manager; soft-deleted rows are invisible."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class BaseModel(models.Model):
    """
    Abstract base with UUID primary key, timestamps and soft delete.

    Use ``objects_with_deleted`` when soft-deleted rows must be seen.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = BaseModelManager()
    objects_with_deleted = models.Manager.from_queryset(BaseModelQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']

    def delete(self, using=None, keep_parents=False):
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['deleted_at', 'updated_at'])

    def hard_delete(self, using=None, keep_parents=False):
        super().delete(using=using, keep_parents=keep_parents)
