# main/tenancy/managers.py
from __future__ import annotations

from django.core.exceptions import FieldDoesNotExist
from django.db import models
from django.db.models import Q


class SchoolScopedQuerySet(models.QuerySet):
    """
    Explicit school scoping for records. Works when the model has either:
      - FK named `school`, or
      - class attr `related_school_field` with dotted path, e.g. "student__school".
    There is no implicit thread-local scoping: every read names
    its scope key.

    Methods:
      - for_school(school): rows belonging to the given school
      - alive(): drop soft-deleted rows (no-op for models without `is_deleted`)
      - active(): rows whose `is_active` flag is set (no-op without the field)
    """

    def _school_field_name(self) -> str:
        return getattr(self.model, "related_school_field", None) or "school"

    def _validate_school_field(self, field: str) -> None:
        """
        Validate the 1st hop of the dotted path exists; raise AttributeError on invalid config.
        """
        first_hop = field.split("__", 1)[0]
        try:
            self.model._meta.get_field(first_hop)
        except FieldDoesNotExist as e:
            raise AttributeError(
                f"SchoolScopedQuerySet._validate_school_field(): Invalid school field '{field}' "
                f"for model {self.model.__name__}. Set related_school_field correctly "
                f"(e.g. 'school' or 'student__school')."
            ) from e

    def _has_field(self, name: str) -> bool:
        return name in {f.name for f in self.model._meta.fields}

    def for_school(self, school):
        """Explicit scoping by a provided school instance (or its id)."""
        field = self._school_field_name()
        self._validate_school_field(field)
        return self.filter(Q(**{field: school}))

    def alive(self):
        if not self._has_field("is_deleted"):
            return self
        return self.filter(is_deleted=False)

    def active(self):
        if not self._has_field("is_active"):
            return self
        return self.filter(is_active=True)
