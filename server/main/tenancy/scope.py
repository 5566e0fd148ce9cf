# ==============================================
# File: main/tenancy/scope.py
# Purpose: Resolve which school (and profile) an identity belongs to
# ==============================================
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError

from main.models import School, Student, Teacher, User

logger = logging.getLogger(__name__)

# Link kinds in precedence order. Administrative links win so that an owner who
# also teaches (or is a guardian) lands on the school they administer.
PROPRIETOR_OF = "proprietor"
PRINCIPAL_OF = "principal"
TEACHER_OF = "teacher"
STUDENT_OF = "student"
GUARDIAN_OF = "guardian"
LINK_PRECEDENCE = (PROPRIETOR_OF, PRINCIPAL_OF, TEACHER_OF, STUDENT_OF, GUARDIAN_OF)


@dataclass(frozen=True)
class Scope:
    identity: User
    school: Optional[School] = None
    link: Optional[str] = None
    student: Optional[Student] = None
    teacher: Optional[Teacher] = None

    @property
    def resolved(self) -> bool:
        return self.school is not None


class ScopeResolver:
    """
    Given an identity, find its school by checking links in strict precedence.
    Not finding one is a normal state (new account awaiting linkage) and is
    reported as None, never raised.
    """

    def __init__(self, using: str = "default"):
        self.using = using

    # -------- identity lookup --------
    def get_identity(self, identity) -> Optional[User]:
        if identity is None or isinstance(identity, User):
            return identity
        try:
            return User.objects.db_manager(self.using).filter(pk=identity).first()
        except ValidationError:
            # malformed uuid
            return None

    # -------- profile lookups --------
    def student_profile(self, identity) -> Optional[Student]:
        return (
            Student.objects.using(self.using)
            .select_related("school", "school_class", "user")
            .filter(user=identity)
            .first()
        )

    def teacher_profile(self, identity) -> Optional[Teacher]:
        return (
            Teacher.objects.using(self.using)
            .select_related("school", "user")
            .filter(user=identity)
            .first()
        )

    def _school_where(self, **lookup) -> Optional[School]:
        return (
            School.objects.using(self.using)
            .filter(**lookup)
            .order_by("created_at", "id")
            .first()
        )

    def _first_link(self, identity):
        """Return (link, school, student, teacher) for the highest-precedence link."""
        school = self._school_where(proprietor=identity)
        if school is not None:
            return PROPRIETOR_OF, school, None, None

        school = self._school_where(principal=identity)
        if school is not None:
            return PRINCIPAL_OF, school, None, None

        teacher = self.teacher_profile(identity)
        if teacher is not None:
            return TEACHER_OF, teacher.school, None, teacher

        student = self.student_profile(identity)
        if student is not None:
            return STUDENT_OF, student.school, student, None

        child = (
            Student.objects.using(self.using)
            .select_related("school")
            .filter(guardian=identity)
            .order_by("created_at", "id")
            .first()
        )
        if child is not None:
            return GUARDIAN_OF, child.school, None, None

        return None, None, None, None

    # -------- public API --------
    def resolve_school(self, identity) -> Optional[School]:
        user = self.get_identity(identity)
        if user is None:
            return None
        _, school, _, _ = self._first_link(user)
        return school

    def resolve(self, identity) -> Optional[Scope]:
        """
        Full scope for an identity: resolved school, the link that won, and the
        identity's own student/teacher profile when one exists (looked up even
        when a higher-precedence link decided the school).
        """
        user = self.get_identity(identity)
        if user is None:
            return None
        link, school, student, teacher = self._first_link(user)
        if link in (PROPRIETOR_OF, PRINCIPAL_OF, GUARDIAN_OF):
            teacher = self.teacher_profile(user)
            student = self.student_profile(user)
        elif link == TEACHER_OF:
            student = self.student_profile(user)
        elif link == STUDENT_OF:
            teacher = self.teacher_profile(user)
        if school is None:
            logger.info("No school linked to identity %s (role=%s)", user.pk, user.role)
        return Scope(identity=user, school=school, link=link, student=student, teacher=teacher)
