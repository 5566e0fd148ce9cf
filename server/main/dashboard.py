"""
Role-shaped dashboard payloads.

Each role maps to exactly one arm. An arm names the profile it needs and the
sections it fills; when the profile (or the school) cannot be resolved the
caller still gets the base payload of identity + school.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ImproperlyConfigured, PermissionDenied, ValidationError

from main.models import (
    PARENT,
    PRINCIPAL,
    PROPRIETOR,
    ROLE_CHOICES,
    STUDENT,
    TEACHER,
    AcademicSession,
    School,
    Student,
    Teacher,
    Term,
    User,
)
from main.records import RecordStore
from main.reporting import SummaryCalculator
from main.tenancy.scope import Scope

logger = logging.getLogger(__name__)


@dataclass
class DashboardContext:
    store: RecordStore
    summaries: SummaryCalculator
    user: User
    school: School
    scope: Scope
    term: str
    session: Optional[AcademicSession] = None

    @property
    def student(self) -> Optional[Student]:
        return self.scope.student

    @property
    def teacher(self) -> Optional[Teacher]:
        return self.scope.teacher


class DashboardArm:
    requires_profile: Optional[str] = None  # "student" | "teacher"
    sections: tuple[str, ...] = ()

    def ready(self, ctx: DashboardContext) -> bool:
        if self.requires_profile is None:
            return True
        return getattr(ctx, self.requires_profile) is not None

    def fill(self, ctx: DashboardContext, payload: dict) -> dict:
        for name in self.sections:
            payload[name] = getattr(self, f"fetch_{name}")(ctx)
        return payload


class StudentArm(DashboardArm):
    requires_profile = "student"
    sections = ("profile", "grades", "attendance", "assignments", "messages", "fee_payments", "summary")

    def fetch_profile(self, ctx):
        return ctx.student

    def fetch_grades(self, ctx):
        return list(ctx.store.list_grades_by_student(
            ctx.student, term=ctx.term, session=ctx.session, viewer=ctx.user))

    def fetch_attendance(self, ctx):
        return list(ctx.store.list_attendance_by_student(ctx.student))

    def fetch_assignments(self, ctx):
        return list(ctx.store.list_assignments_by_student(ctx.student))

    def fetch_messages(self, ctx):
        return list(ctx.store.list_messages_by_user(ctx.user))

    def fetch_fee_payments(self, ctx):
        return list(ctx.store.list_fee_payments_by_student(ctx.student))

    def fetch_summary(self, ctx):
        return ctx.summaries.student_summary(ctx.student, ctx.term, ctx.session)


class TeacherArm(DashboardArm):
    requires_profile = "teacher"
    sections = ("profile", "classes", "subjects", "messages")

    def fetch_profile(self, ctx):
        return ctx.teacher

    def fetch_classes(self, ctx):
        return list(ctx.store.list_classes_by_school(ctx.school))

    def fetch_subjects(self, ctx):
        return list(ctx.store.list_subjects_by_school(ctx.school))

    def fetch_messages(self, ctx):
        return list(ctx.store.list_messages_by_user(ctx.user))


class AdministratorArm(DashboardArm):
    sections = ("classes", "teachers", "subjects", "announcements")

    def fetch_classes(self, ctx):
        return list(ctx.store.list_classes_by_school(ctx.school))

    def fetch_teachers(self, ctx):
        return list(ctx.store.list_teachers_by_school(ctx.school))

    def fetch_subjects(self, ctx):
        return list(ctx.store.list_subjects_by_school(ctx.school))

    def fetch_announcements(self, ctx):
        return list(ctx.store.list_announcements_by_school(ctx.school))


class GuardianArm(DashboardArm):
    sections = ("children", "messages")

    def fetch_children(self, ctx):
        return [
            {
                "profile": child,
                "report_cards": list(ctx.store.list_report_cards_by_student(child, viewer=ctx.user)),
            }
            for child in ctx.store.list_children(ctx.user)
        ]

    def fetch_messages(self, ctx):
        return list(ctx.store.list_messages_by_user(ctx.user))


DASHBOARD_ARMS: dict[str, DashboardArm] = {
    STUDENT: StudentArm(),
    TEACHER: TeacherArm(),
    PARENT: GuardianArm(),
    PRINCIPAL: AdministratorArm(),
    PROPRIETOR: AdministratorArm(),
}

_unhandled = {role for role, _ in ROLE_CHOICES} - set(DASHBOARD_ARMS)
if _unhandled:
    raise ImproperlyConfigured(f"No dashboard arm for roles: {sorted(_unhandled)}")


class DashboardComposer:
    """
    Assemble the dashboard for an identity. Sub-fetches run one after another
    on the same connection; each is a bounded, scoped read.
    """

    def __init__(self, using: str = "default", store: Optional[RecordStore] = None,
                 summaries: Optional[SummaryCalculator] = None):
        self.using = using
        self.store = store or RecordStore(using=using)
        self.summaries = summaries or SummaryCalculator(using=using)

    def compose(self, identity, role: Optional[str] = None, term: Optional[str] = None) -> Optional[dict]:
        """
        Returns None when the identity does not exist. A role other than the
        identity's own is refused.
        """
        user = self.store.scopes.get_identity(identity)
        if user is None:
            return None
        role = role or user.role
        if role != user.role:
            raise PermissionDenied("Dashboard role does not match the identity.")
        if term is not None and term not in Term.values:
            raise ValidationError({"term": f"'{term}' is not a valid term."})

        scope = self.store.scopes.resolve(user)
        payload = {"role": role, "identity": user, "school": scope.school}
        if scope.school is None:
            return payload

        arm = DASHBOARD_ARMS[role]
        session = self.store.get_active_session(scope.school)
        ctx = DashboardContext(
            store=self.store,
            summaries=self.summaries,
            user=user,
            school=scope.school,
            scope=scope,
            term=term or Term.FIRST.value,
            session=session,
        )
        if not arm.ready(ctx):
            logger.info("Dashboard for %s degraded: no %s profile", user.pk, arm.requires_profile)
            return payload

        payload["session"] = session
        payload["term"] = ctx.term
        return arm.fill(ctx, payload)
