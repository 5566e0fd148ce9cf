from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone

from main.tenancy.managers import SchoolScopedQuerySet


class RecordModel(models.Model):
    """
    Base for every persisted record: opaque UUID id plus creation timestamp.
    `default_objects` stays the unfiltered default manager so related lookups
    still reach soft-deleted rows; `objects` is the school-scoped manager.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    default_objects = models.Manager()
    objects = SchoolScopedQuerySet.as_manager()

    related_school_field = "school"

    class Meta:
        abstract = True


class SchoolAwareModel(RecordModel):
    """
    Abstract base class for models that belong to a school.
    Subclasses reaching their school through another relation override
    `related_school_field` with the dotted path instead.
    """
    school = models.ForeignKey(
        "main.School",
        on_delete=models.CASCADE,
        related_name="%(class)ss",
        db_index=True,
        help_text="The school this item belongs to",
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class AuditableModel(models.Model):
    """
    Abstract base class for models that need to track who created them.
    """
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_%(class)ss",
        help_text="User who created this record",
    )

    class Meta:
        abstract = True


class SoftDeleteModel(models.Model):
    """
    Abstract base class for models that are never physically deleted, so that
    historical references stay resolvable. Deleted rows drop out of `objects`
    querysets via `.alive()`.
    """
    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deleted_%(class)ss",
        help_text="User who deleted this record",
    )

    class Meta:
        abstract = True

    def delete(self, using=None, keep_parents=False, deleted_by=None):
        """Soft delete the model instance."""
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.deleted_by = deleted_by
        self.save(using=using, update_fields=["is_deleted", "deleted_at", "deleted_by"])
