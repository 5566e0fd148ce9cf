# ==============================================
# File: main/tenancy/permissions.py
# Purpose: Role checks shared by the core services
# ==============================================
from __future__ import annotations
from typing import Iterable

from django.core.exceptions import PermissionDenied

from main.models import ADMIN_ROLES, PARENT, STAFF_ROLES, STUDENT, Announcement, Grade, Post


def require_role(actor, allowed_roles: Iterable[str], action: str = "perform this action") -> None:
    """
    Raise PermissionDenied unless the actor's role is one of `allowed_roles`.
    Called before any store access so role-mismatched writes never touch the database.
    """
    allowed = tuple(allowed_roles)
    role = getattr(actor, "role", None)
    if actor is None or not getattr(actor, "is_active", True) or role not in allowed:
        raise PermissionDenied(f"Role '{role}' may not {action}.")


def is_admin(actor) -> bool:
    return getattr(actor, "role", None) in ADMIN_ROLES


def sees_only_published(viewer) -> bool:
    """Students and guardians never see drafts or unpublished report cards."""
    return viewer is not None and getattr(viewer, "role", None) in (STUDENT, PARENT)


def can_view_student(viewer, student, viewer_school=None) -> bool:
    """
    Self, own guardian, or staff whose resolved school is the student's school.
    `viewer_school` is the School the scope resolver attached to the viewer.
    """
    if viewer is None or student is None:
        return False
    if student.user_id == viewer.pk:
        return True
    if viewer.role == PARENT:
        return student.guardian_id == viewer.pk
    if viewer.role in STAFF_ROLES:
        return viewer_school is not None and viewer_school.pk == student.school_id
    return False


def visible_to_learners(record) -> bool:
    """Whether students and guardians may see a grade, post or announcement."""
    if isinstance(record, Grade):
        return record.status == Grade.Status.PUBLISHED
    if isinstance(record, Post):
        return record.is_published
    if isinstance(record, Announcement):
        return record.is_active
    return True
