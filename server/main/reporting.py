"""
Derived artifacts computed from raw records: term report cards (totals,
average, class rank) and the per-student dashboard summary.

Sums are done on Decimal values in Python rather than with SQL SUM so that no
backend ever routes scores through floating point.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured, PermissionDenied, ValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from attendance.models import Attendance
from main.models import (
    ADMIN_ROLES,
    AcademicSession,
    Assignment,
    Grade,
    ReportCard,
    SchoolClass,
    Student,
    Term,
)
from main.tenancy.permissions import require_role
from main.tenancy.scope import ScopeResolver

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class TermTotals:
    total_score: Decimal = ZERO
    total_possible: Decimal = ZERO
    average: Decimal = ZERO

    @property
    def graded(self) -> bool:
        return self.total_possible > 0


def quantize_average(total_score: Decimal, total_possible: Decimal, places: int = 2) -> Decimal:
    """total / possible x 100, half-up at `places` decimals; zero when nothing is possible."""
    quantum = Decimal(1).scaleb(-places)
    if total_possible <= 0:
        return ZERO.quantize(quantum)
    return (total_score / total_possible * HUNDRED).quantize(quantum, rounding=ROUND_HALF_UP)


def rank_of(average: Decimal, class_averages) -> int:
    """1 + number of classmates with a strictly higher average; ties share a rank."""
    return 1 + sum(1 for other in class_averages if other > average)


class ReportCardGenerator:
    """
    Builds and persists ReportCard rows. Regeneration overwrites only the
    computed columns, and only touches `generated_at` when one of them moved,
    so running it twice over unchanged grades leaves the row identical.
    """

    def __init__(self, using: str = "default", places: Optional[int] = None, scopes: Optional[ScopeResolver] = None):
        self.using = using
        self.places = places if places is not None else getattr(settings, "REPORT_CARD_AVERAGE_PLACES", 2)
        column = ReportCard._meta.get_field("average").decimal_places
        if not 0 <= self.places <= column:
            raise ImproperlyConfigured(f"Report card averages keep at most {column} decimal places, not {self.places}.")
        self.scopes = scopes or ScopeResolver(using=using)

    # ---------------- lookups ----------------
    def _resolve(self, model, value):
        if isinstance(value, model):
            return value
        try:
            obj = model.objects.using(self.using).alive().filter(pk=value).first()
        except (ValidationError, ValueError):
            obj = None
        if obj is None:
            raise model.DoesNotExist(f"{model.__name__} {value} does not exist.")
        return obj

    def _check_period(self, student, term, session) -> None:
        if term not in Term.values:
            raise ValidationError({"term": f"'{term}' is not a valid term."})
        if session.school_id != student.school_id:
            raise ValidationError({"academic_session": "Session belongs to a different school."})

    # ---------------- arithmetic ----------------
    def _class_totals(self, school_class, term, session) -> dict:
        """
        {student_id: TermTotals} for every student currently in the class,
        including those without published grades (who average zero).
        """
        roster = list(
            Student.objects.using(self.using)
            .filter(school_class=school_class)
            .values_list("id", flat=True)
        )
        sums = {sid: [ZERO, ZERO] for sid in roster}
        rows = (
            Grade.objects.using(self.using)
            .published()
            .for_period(term, session)
            .filter(student_id__in=roster, score__isnull=False)
            .values_list("student_id", "score", "max_score")
        )
        for student_id, score, max_score in rows:
            sums[student_id][0] += score
            sums[student_id][1] += max_score

        return {
            sid: TermTotals(
                total_score=score.quantize(CENTS),
                total_possible=possible.quantize(CENTS),
                average=quantize_average(score, possible, self.places),
            )
            for sid, (score, possible) in sums.items()
        }

    def term_totals(self, student, term, session) -> TermTotals:
        score, possible = ZERO, ZERO
        rows = (
            Grade.objects.using(self.using)
            .published()
            .for_period(term, session)
            .filter(student=student, score__isnull=False)
            .values_list("score", "max_score")
        )
        for s, m in rows:
            score += s
            possible += m
        return TermTotals(score.quantize(CENTS), possible.quantize(CENTS),
                          quantize_average(score, possible, self.places))

    @staticmethod
    def _computed_values(student_id, class_totals: dict) -> dict:
        mine = class_totals.get(student_id, TermTotals())
        if not mine.graded:
            return {
                "total_score": ZERO,
                "total_possible": ZERO,
                "average": ZERO,
                "position": None,
                "class_size": None,
            }
        averages = [t.average for t in class_totals.values()]
        return {
            "total_score": mine.total_score,
            "total_possible": mine.total_possible,
            "average": mine.average,
            "position": rank_of(mine.average, averages),
            "class_size": len(class_totals),
        }

    # ---------------- persistence ----------------
    def _persist(self, student, term, session, values: dict) -> ReportCard:
        card = (
            ReportCard.objects.using(self.using)
            .select_for_update()
            .filter(student=student, academic_session=session, term=term)
            .first()
        )
        if card is None:
            card = ReportCard(student=student, academic_session=session, term=term, **values)
            card.generated_at = timezone.now()
            card.save(using=self.using)
            audit_logger.info("generate main.ReportCard id=%s student=%s term=%s", card.pk, student.pk, term)
            return card

        changed = [f for f in ReportCard.COMPUTED_FIELDS if getattr(card, f) != values[f]]
        if changed:
            for f in changed:
                setattr(card, f, values[f])
            card.generated_at = timezone.now()
            card.save(using=self.using, update_fields=changed + ["generated_at"])
            audit_logger.info(
                "regenerate main.ReportCard id=%s student=%s term=%s fields=%s",
                card.pk, student.pk, term, ",".join(changed),
            )
        return card

    # ---------------- public API ----------------
    def generate(self, student, term: str, session, actor=None) -> ReportCard:
        """
        Compute and store the report card for one student. Missing student,
        session or class raises the model's DoesNotExist before anything is written.
        """
        if actor is not None:
            require_role(actor, ADMIN_ROLES, "generate report cards")
        student = self._resolve(Student, student)
        session = self._resolve(AcademicSession, session)
        if student.school_class_id is None:
            raise SchoolClass.DoesNotExist(f"Student {student.pk} is not in a class.")
        self._check_period(student, term, session)
        if actor is not None and self.scopes.resolve_school(actor) != student.school:
            raise PermissionDenied("Student belongs to a different school.")

        with transaction.atomic(using=self.using):
            class_totals = self._class_totals(student.school_class_id, term, session)
            values = self._computed_values(student.pk, class_totals)
            return self._persist(student, term, session, values)

    def generate_for_class(self, school_class, term: str, session, actor=None) -> list[ReportCard]:
        if actor is not None:
            require_role(actor, ADMIN_ROLES, "generate report cards")
        school_class = self._resolve(SchoolClass, school_class)
        session = self._resolve(AcademicSession, session)
        if term not in Term.values:
            raise ValidationError({"term": f"'{term}' is not a valid term."})
        if session.school_id != school_class.school_id:
            raise ValidationError({"academic_session": "Session belongs to a different school."})
        if actor is not None and self.scopes.resolve_school(actor) != school_class.school:
            raise PermissionDenied("Class belongs to a different school.")

        cards = []
        with transaction.atomic(using=self.using):
            class_totals = self._class_totals(school_class, term, session)
            students = Student.objects.using(self.using).filter(school_class=school_class).order_by("student_code", "id")
            for student in students:
                values = self._computed_values(student.pk, class_totals)
                cards.append(self._persist(student, term, session, values))
        return cards

    def refresh_existing(self, school_class, term: str, session) -> int:
        """
        Regenerate only cards that already exist for the class/term/session.
        Used after grade writes; never creates new cards.
        """
        with transaction.atomic(using=self.using):
            existing = list(
                ReportCard.objects.using(self.using)
                .select_related("student")
                .filter(student__school_class=school_class, academic_session=session, term=term)
            )
            if not existing:
                return 0
            class_totals = self._class_totals(school_class, term, session)
            for card in existing:
                self._persist(card.student, term, session, self._computed_values(card.student_id, class_totals))
        return len(existing)

    def publish(self, actor, card: ReportCard, teacher_comment=None, principal_comment=None,
                next_term_begins=None) -> ReportCard:
        require_role(actor, ADMIN_ROLES, "publish report cards")
        if self.scopes.resolve_school(actor) != card.student.school:
            raise PermissionDenied("Report card belongs to a different school.")
        # only the first publish writes is_published
        fields = [] if card.is_published else ["is_published"]
        if teacher_comment is not None:
            card.teacher_comment = teacher_comment
            fields.append("teacher_comment")
        if principal_comment is not None:
            card.principal_comment = principal_comment
            fields.append("principal_comment")
        if next_term_begins is not None:
            card.next_term_begins = next_term_begins
            fields.append("next_term_begins")
        card.is_published = True
        if fields:
            card.save(using=self.using, update_fields=fields)
        audit_logger.info("publish main.ReportCard id=%s actor=%s", card.pk, actor.pk)
        return card


class SummaryCalculator:
    """Dashboard figures for one student."""

    def __init__(self, using: str = "default", generator: Optional[ReportCardGenerator] = None):
        self.using = using
        self.generator = generator or ReportCardGenerator(using=using)

    def attendance_rate(self, student, session=None) -> Optional[Decimal]:
        """
        Present or late over every non-excused mark, as a percentage. None when
        the student has no countable marks.
        """
        qs = Attendance.objects.using(self.using).filter(student=student).exclude(
            status=Attendance.Status.EXCUSED)
        if session is not None:
            qs = qs.filter(date__gte=session.start_date, date__lte=session.end_date)
        total = qs.count()
        if not total:
            return None
        attended = qs.filter(status__in=[Attendance.Status.PRESENT, Attendance.Status.LATE]).count()
        return (Decimal(attended) / Decimal(total) * HUNDRED).quantize(CENTS, rounding=ROUND_HALF_UP)

    def pending_assignments(self, student) -> int:
        if student.school_class_id is None:
            return 0
        now = timezone.now()
        return (
            Assignment.objects.using(self.using)
            .filter(school_class_id=student.school_class_id)
            .filter(Q(due_date__isnull=True) | Q(due_date__gte=now))
            .exclude(submissions__student=student)
            .count()
        )

    def student_summary(self, student, term: str, session=None) -> dict:
        totals = self.generator.term_totals(student, term, session) if session is not None else TermTotals()
        return {
            "attendance_rate": self.attendance_rate(student, session),
            "average_grade": totals.average if totals.graded else None,
            "pending_assignments": self.pending_assignments(student),
        }
