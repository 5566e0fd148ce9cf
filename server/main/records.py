"""
Scoped reads and writes over the school records.

Every read names its scope key (a student, class, school or user); there is no
unscoped "list all". Reads return querysets ordered deterministically (a
trailing id breaks ties) or None when a single record is missing. Writes take
the acting identity first, check its role before touching the store, validate
the instance, and write one audit line.
"""
from __future__ import annotations

import datetime
import logging
from decimal import Decimal
from typing import Iterable, Optional

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import transaction
from django.db.models import Case, F, IntegerField, Q, Value, When
from django.utils import timezone
from django.utils.dateparse import parse_date

from attendance.models import Attendance
from main.finance.utils import sync_fee_status
from main.models import (
    ADMIN_ROLES,
    PRINCIPAL,
    STAFF_ROLES,
    STUDENT,
    TEACHER,
    AcademicSession,
    Announcement,
    Assignment,
    AssignmentSubmission,
    Comment,
    CommentParent,
    FeePayment,
    FeeStructure,
    Grade,
    Message,
    Post,
    ReportCard,
    School,
    SchoolClass,
    Student,
    Subject,
    Teacher,
    Term,
    TimetableEntry,
    User,
)
from main.tenancy.permissions import (
    can_view_student,
    is_admin,
    require_role,
    sees_only_published,
    visible_to_learners,
)
from main.tenancy.scope import ScopeResolver
from notification.models import Notification

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("audit")

TERM_ORDER = Case(
    When(term=Term.FIRST, then=Value(1)),
    When(term=Term.SECOND, then=Value(2)),
    When(term=Term.THIRD, then=Value(3)),
    default=Value(0),
    output_field=IntegerField(),
)

GRADE_EDITABLE = ("subject", "academic_session", "term", "assessment_type", "score", "max_score", "status")
ATTENDANCE_EDITABLE = ("status", "remarks")
ASSIGNMENT_EDITABLE = ("title", "description", "due_date", "max_score", "subject")


class RecordStore:
    """
    Record query layer bound to one database alias. Construct one per caller;
    it holds no state beyond the alias and its scope resolver.
    """

    def __init__(self, using: str = "default", scopes: Optional[ScopeResolver] = None):
        self.using = using
        self.scopes = scopes or ScopeResolver(using=using)

    # ---------------- helpers ----------------
    def _qs(self, model):
        return model.objects.using(self.using)

    def _live(self, model):
        qs = self._qs(model)
        return qs.alive() if hasattr(qs, "alive") else qs

    def _get(self, model, pk, **lookup):
        """Single record or None; malformed ids count as missing."""
        if pk is None:
            return None
        try:
            return self._live(model).filter(pk=pk, **lookup).first()
        except (ValidationError, ValueError):
            return None

    def _ref(self, model, value, field: str, required: bool = True):
        """
        Resolve a referenced entity for a write. Missing required values are a
        validation error; a dangling reference raises the model's DoesNotExist.
        """
        if value is None or value == "":
            if required:
                raise ValidationError({field: "This field is required."})
            return None
        if isinstance(value, model):
            return value
        try:
            obj = self._live(model).filter(pk=value).first()
        except (ValidationError, ValueError):
            raise ValidationError({field: f"'{value}' is not a valid id."})
        if obj is None:
            raise model.DoesNotExist(f"{model.__name__} {value} does not exist.")
        return obj

    def _validate(self, instance, exclude: Iterable[str] = ()) -> None:
        instance.full_clean(exclude=list(exclude), validate_unique=False, validate_constraints=False)

    @staticmethod
    def _apply(instance, data: dict, editable: Iterable[str]) -> list[str]:
        """Set only the provided keys; anything outside `editable` is rejected."""
        editable = tuple(editable)
        rejected = {k: "This field cannot be changed." for k in data if k not in editable}
        if rejected:
            raise ValidationError(rejected)
        changed = []
        for key in editable:
            if key in data:
                setattr(instance, key, data[key])
                changed.append(key)
        return changed

    def _actor_school(self, actor) -> School:
        school = self.scopes.resolve_school(actor)
        if school is None:
            raise PermissionDenied("Your account is not linked to a school.")
        return school

    @staticmethod
    def _same_school(school, school_id, what: str) -> None:
        if school.pk != school_id:
            raise PermissionDenied(f"{what} belongs to a different school.")

    def _audit(self, action: str, instance, actor=None, **extra) -> None:
        details = " ".join(f"{k}={v}" for k, v in extra.items())
        audit_logger.info(
            "%s %s id=%s actor=%s %s",
            action, instance._meta.label, instance.pk, getattr(actor, "pk", None), details,
        )

    # ---------------- single-record lookups ----------------
    def get_subject(self, pk) -> Optional[Subject]:
        return self._get(Subject, pk)

    def get_grade(self, pk) -> Optional[Grade]:
        return self._get(Grade, pk)

    def get_attendance(self, pk) -> Optional[Attendance]:
        return self._get(Attendance, pk)

    def get_assignment(self, pk) -> Optional[Assignment]:
        return self._get(Assignment, pk)

    def get_submission(self, pk, assignment=None) -> Optional[AssignmentSubmission]:
        lookup = {"assignment": assignment} if assignment is not None else {}
        return self._get(AssignmentSubmission, pk, **lookup)

    def get_message(self, pk) -> Optional[Message]:
        return self._get(Message, pk)

    def get_fee_structure(self, pk) -> Optional[FeeStructure]:
        return self._get(FeeStructure, pk)

    def get_announcement(self, pk) -> Optional[Announcement]:
        return self._get(Announcement, pk)

    def get_notification(self, pk) -> Optional[Notification]:
        return self._get(Notification, pk)

    def get_comment(self, pk) -> Optional[Comment]:
        return self._get(Comment, pk)

    def get_post(self, pk) -> Optional[Post]:
        return self._get(Post, pk)

    def get_timetable_entry(self, pk, school_class=None) -> Optional[TimetableEntry]:
        lookup = {"school_class": school_class} if school_class is not None else {}
        return self._get(TimetableEntry, pk, **lookup)

    # ---------------- access ----------------
    def check_student_access(self, viewer, student) -> None:
        """Raise PermissionDenied unless the viewer may read this student's records."""
        viewer_school = None
        if getattr(viewer, "role", None) in STAFF_ROLES:
            viewer_school = self.scopes.resolve_school(viewer)
        if not can_view_student(viewer, student, viewer_school):
            raise PermissionDenied("You may not view this student's records.")

    # ---------------- identity / profiles ----------------
    def get_user(self, pk) -> Optional[User]:
        return self.scopes.get_identity(pk)

    def get_student(self, pk) -> Optional[Student]:
        return self._get(Student, pk)

    def get_student_by_user(self, user) -> Optional[Student]:
        return self.scopes.student_profile(user)

    def get_teacher_by_user(self, user) -> Optional[Teacher]:
        return self.scopes.teacher_profile(user)

    def list_students_by_class(self, school_class):
        return (
            self._qs(Student).select_related("user")
            .filter(school_class=school_class)
            .order_by("student_code", "id")
        )

    def list_teachers_by_school(self, school):
        return self._qs(Teacher).select_related("user").for_school(school).order_by("teacher_code", "id")

    def list_children(self, guardian):
        return (
            self._qs(Student).select_related("user", "school", "school_class")
            .filter(guardian=guardian)
            .order_by("student_code", "id")
        )

    def school_members(self, school, role: Optional[str] = None):
        """Every identity attached to the school by any link."""
        qs = self._qs(User).filter(
            Q(student_profile__school=school)
            | Q(teacher_profile__school=school)
            | Q(children__school=school)
            | Q(principal_of=school)
            | Q(proprietor_of=school),
            is_active=True,
        )
        if role:
            qs = qs.filter(role=role)
        return qs.distinct().order_by("email")

    def _linkable_user(self, value, role: str) -> User:
        user = self._ref(User, value, "user")
        if user.role != role:
            raise ValidationError({"user": f"User must have the {role} role."})
        if self._qs(Student).filter(user=user).exists() or self._qs(Teacher).filter(user=user).exists():
            raise ValidationError({"user": "User already has a profile."})
        return user

    def create_student(self, actor, data: dict) -> Student:
        """Attach a student profile to an existing student-role identity in the actor's school."""
        require_role(actor, ADMIN_ROLES, "enrol students")
        school = self._actor_school(actor)
        student = Student(
            user=self._linkable_user(data.get("user"), STUDENT),
            school=school,
            student_code=data.get("student_code"),
            school_class=self._ref(SchoolClass, data.get("school_class"), "school_class", required=False),
            guardian=self._ref(User, data.get("guardian"), "guardian", required=False),
            date_of_birth=data.get("date_of_birth"),
            admission_date=data.get("admission_date"),
        )
        self._validate(student)
        if self._qs(Student).for_school(school).filter(student_code=student.student_code).exists():
            raise ValidationError({"student_code": "Another student in this school has this code."})
        student.save(using=self.using)
        self._audit("create", student, actor, school=school.pk)
        return student

    def create_teacher(self, actor, data: dict) -> Teacher:
        require_role(actor, ADMIN_ROLES, "hire teachers")
        school = self._actor_school(actor)
        teacher = Teacher(
            user=self._linkable_user(data.get("user"), TEACHER),
            school=school,
            teacher_code=data.get("teacher_code"),
            department=data.get("department") or "",
            qualification=data.get("qualification") or "",
            hire_date=data.get("hire_date"),
        )
        self._validate(teacher)
        if self._qs(Teacher).for_school(school).filter(teacher_code=teacher.teacher_code).exists():
            raise ValidationError({"teacher_code": "Another teacher in this school has this code."})
        teacher.save(using=self.using)
        self._audit("create", teacher, actor, school=school.pk)
        return teacher

    # ---------------- structure ----------------
    def get_class(self, pk) -> Optional[SchoolClass]:
        return self._get(SchoolClass, pk)

    def get_session(self, pk) -> Optional[AcademicSession]:
        return self._get(AcademicSession, pk)

    def list_classes_by_school(self, school):
        return self._qs(SchoolClass).for_school(school).order_by("name", "id")

    def list_subjects_by_school(self, school):
        return self._qs(Subject).for_school(school).order_by("name", "id")

    def list_sessions_by_school(self, school):
        return self._qs(AcademicSession).alive().for_school(school).order_by("-start_date", "id")

    def get_active_session(self, school) -> Optional[AcademicSession]:
        return self._qs(AcademicSession).alive().for_school(school).filter(is_active=True).first()

    def delete_session(self, actor, session) -> None:
        require_role(actor, ADMIN_ROLES, "delete academic sessions")
        self._same_school(self._actor_school(actor), session.school_id, "Session")
        session.delete(using=self.using, deleted_by=actor)
        self._audit("delete", session, actor)

    def create_session(self, actor, data: dict) -> AcademicSession:
        """Activating the new session deactivates the school's current one."""
        require_role(actor, ADMIN_ROLES, "create academic sessions")
        school = self._actor_school(actor)
        session = AcademicSession(
            school=school,
            name=data.get("name"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            is_active=bool(data.get("is_active", False)),
            created_by=actor,
        )
        self._validate(session)
        if self._live(AcademicSession).for_school(school).filter(name=session.name).exists():
            raise ValidationError({"name": "This school already has a session with this name."})
        session.save(using=self.using)
        self._audit("create", session, actor, active=session.is_active)
        return session

    def create_class(self, actor, data: dict) -> SchoolClass:
        require_role(actor, ADMIN_ROLES, "create classes")
        school = self._actor_school(actor)
        class_teacher = self._ref(User, data.get("class_teacher"), "class_teacher", required=False)
        if class_teacher is not None and class_teacher.role != TEACHER:
            raise ValidationError({"class_teacher": "Class teacher must have the teacher role."})
        school_class = SchoolClass(
            school=school,
            name=data.get("name"),
            level=data.get("level"),
            class_teacher=class_teacher,
            capacity=data.get("capacity") or 40,
            created_by=actor,
        )
        self._validate(school_class)
        if self._qs(SchoolClass).for_school(school).filter(name__iexact=school_class.name).exists():
            raise ValidationError({"name": "This school already has a class with this name."})
        school_class.save(using=self.using)
        self._audit("create", school_class, actor)
        return school_class

    def create_subject(self, actor, data: dict) -> Subject:
        require_role(actor, ADMIN_ROLES, "create subjects")
        school = self._actor_school(actor)
        subject = Subject(
            school=school,
            name=data.get("name"),
            code=data.get("code"),
            description=data.get("description") or "",
            created_by=actor,
        )
        self._validate(subject)
        if self._qs(Subject).for_school(school).filter(code=subject.code).exists():
            raise ValidationError({"code": "Another subject in this school has this code."})
        subject.save(using=self.using)
        self._audit("create", subject, actor)
        return subject

    # ---------------- grades ----------------
    def list_grades_by_student(self, student, term: Optional[str] = None, session=None, viewer=None):
        qs = (
            self._qs(Grade).select_related("subject", "teacher__user", "academic_session")
            .for_student(student)
        )
        if term:
            qs = qs.filter(term=term)
        if session is not None:
            qs = qs.filter(academic_session=session)
        if sees_only_published(viewer):
            qs = qs.published()
        return qs.order_by("-created_at", "-id")

    def list_grades_by_class(self, school_class, subject=None, term: Optional[str] = None, session=None):
        qs = self._qs(Grade).select_related("student__user", "subject").filter(student__school_class=school_class)
        if subject is not None:
            qs = qs.filter(subject=subject)
        if term:
            qs = qs.filter(term=term)
        if session is not None:
            qs = qs.filter(academic_session=session)
        return qs.order_by("student__student_code", "-created_at", "id")

    def _stamp_graded(self, grade) -> None:
        if grade.score is not None and grade.status == Grade.Status.PUBLISHED and grade.graded_at is None:
            grade.graded_at = timezone.now()

    def create_grade(self, actor, data: dict) -> Grade:
        require_role(actor, (TEACHER,), "record grades")
        teacher = self.scopes.teacher_profile(actor)
        if teacher is None:
            raise PermissionDenied("Only teachers with a teacher profile may record grades.")

        student = self._ref(Student, data.get("student"), "student")
        self._same_school(teacher.school, student.school_id, "Student")
        grade = Grade(
            student=student,
            subject=self._ref(Subject, data.get("subject"), "subject"),
            academic_session=self._ref(AcademicSession, data.get("academic_session"), "academic_session"),
            teacher=teacher,
            term=data.get("term"),
            assessment_type=data.get("assessment_type"),
            score=data.get("score"),
            max_score=data.get("max_score", Decimal("100")),
            status=data.get("status", Grade.Status.DRAFT),
        )
        self._validate(grade)
        self._stamp_graded(grade)
        grade.save(using=self.using)
        self._audit("create", grade, actor, student=student.pk, status=grade.status)
        return grade

    def update_grade(self, actor, grade, data: dict) -> Grade:
        require_role(actor, STAFF_ROLES, "edit grades")
        if actor.role == TEACHER:
            teacher = self.scopes.teacher_profile(actor)
            if teacher is None or grade.teacher_id != teacher.pk:
                raise PermissionDenied("Teachers may only edit grades they recorded.")
        else:
            self._same_school(self._actor_school(actor), grade.student.school_id, "Grade")

        data = dict(data)
        for key, model in (("subject", Subject), ("academic_session", AcademicSession)):
            if key in data:
                data[key] = self._ref(model, data[key], key)
        changed = self._apply(grade, data, GRADE_EDITABLE)
        self._validate(grade)
        if "score" in changed or "status" in changed:
            grade.graded_at = None if grade.score is None else grade.graded_at
            self._stamp_graded(grade)
        grade.save(using=self.using)
        self._audit("update", grade, actor, fields=",".join(changed))
        return grade

    def import_grades(self, actor, rows: Iterable[dict], session, term: str) -> list[Grade]:
        """
        Bulk create from spreadsheet rows keyed by student_code / subject_code.
        Every row is validated first; nothing is written unless all rows pass.
        """
        require_role(actor, (TEACHER,), "import grades")
        teacher = self.scopes.teacher_profile(actor)
        if teacher is None:
            raise PermissionDenied("Only teachers with a teacher profile may import grades.")
        session = self._ref(AcademicSession, session, "academic_session")
        self._same_school(teacher.school, session.school_id, "Session")

        students = {s.student_code: s for s in self._qs(Student).for_school(teacher.school)}
        subjects = {s.code: s for s in self._qs(Subject).for_school(teacher.school)}

        grades, errors = [], []
        for index, row in enumerate(rows, start=2):
            student = students.get(str(row.get("student_code", "")).strip())
            subject = subjects.get(str(row.get("subject_code", "")).strip())
            if student is None or subject is None:
                errors.append(f"Row {index}: unknown student or subject code.")
                continue
            grade = Grade(
                student=student, subject=subject, teacher=teacher, academic_session=session,
                term=term,
                assessment_type=str(row.get("assessment_type", "")).strip(),
                score=sheet_decimal(row.get("score")),
                max_score=sheet_decimal(row.get("max_score")) or Decimal("100"),
                status=row.get("status") or Grade.Status.DRAFT,
            )
            try:
                self._validate(grade)
            except ValidationError as e:
                errors.append(f"Row {index}: {'; '.join(e.messages)}")
                continue
            self._stamp_graded(grade)
            grades.append(grade)

        if errors:
            raise ValidationError({"rows": errors})
        with transaction.atomic(using=self.using):
            for grade in grades:
                grade.save(using=self.using)
        audit_logger.info("import main.Grade count=%s actor=%s session=%s", len(grades), actor.pk, session.pk)
        return grades

    # ---------------- attendance ----------------
    def list_attendance_by_student(self, student, start=None, end=None):
        qs = self._qs(Attendance).select_related("school_class").filter(student=student)
        if start:
            qs = qs.filter(date__gte=start)
        if end:
            qs = qs.filter(date__lte=end)
        return qs.order_by("-date", "-id")

    def list_attendance_by_class(self, school_class, day):
        return (
            self._qs(Attendance).select_related("student__user")
            .filter(school_class=school_class, date=day)
            .order_by("student__student_code", "id")
        )

    def record_attendance(self, actor, data: dict) -> tuple[Attendance, bool]:
        """
        Upsert on (student, date): a second mark for the same day overwrites the
        first. Returns (record, created).
        """
        require_role(actor, (TEACHER, PRINCIPAL), "record attendance")
        school = self._actor_school(actor)
        student = self._ref(Student, data.get("student"), "student")
        self._same_school(school, student.school_id, "Student")
        school_class = self._ref(SchoolClass, data.get("school_class"), "school_class", required=False) \
            or student.school_class

        day = as_date(data.get("date"))
        draft = Attendance(
            student=student,
            school_class=school_class,
            date=day,
            status=data.get("status"),
            remarks=data.get("remarks") or "",
            recorded_by=actor,
        )
        self._validate(draft)
        if school_class is not None:
            self._same_school(school, school_class.school_id, "Class")

        record, created = self._qs(Attendance).update_or_create(
            student=student,
            date=draft.date,
            defaults={
                "status": draft.status,
                "remarks": draft.remarks,
                "school_class": school_class,
                "recorded_by": actor,
            },
        )
        self._audit("create" if created else "overwrite", record, actor, student=student.pk, date=record.date)
        return record, created

    def update_attendance(self, actor, record, data: dict) -> Attendance:
        require_role(actor, (TEACHER, PRINCIPAL), "edit attendance")
        self._same_school(self._actor_school(actor), record.student.school_id, "Attendance record")
        changed = self._apply(record, data, ATTENDANCE_EDITABLE)
        record.recorded_by = actor
        self._validate(record)
        record.save(using=self.using)
        self._audit("update", record, actor, fields=",".join(changed))
        return record

    # ---------------- assignments ----------------
    def list_assignments_by_class(self, school_class):
        return (
            self._qs(Assignment).select_related("subject", "teacher__user")
            .filter(school_class=school_class)
            .order_by(F("due_date").desc(nulls_last=True), "-created_at", "id")
        )

    def list_assignments_by_student(self, student):
        if student.school_class_id is None:
            return self._qs(Assignment).none()
        return self.list_assignments_by_class(student.school_class_id)

    def create_assignment(self, actor, data: dict) -> Assignment:
        require_role(actor, (TEACHER,), "create assignments")
        teacher = self.scopes.teacher_profile(actor)
        if teacher is None:
            raise PermissionDenied("Only teachers with a teacher profile may create assignments.")
        school_class = self._ref(SchoolClass, data.get("school_class"), "school_class")
        self._same_school(teacher.school, school_class.school_id, "Class")
        assignment = Assignment(
            title=data.get("title"),
            description=data.get("description") or "",
            school_class=school_class,
            subject=self._ref(Subject, data.get("subject"), "subject"),
            teacher=teacher,
            due_date=data.get("due_date"),
            max_score=data.get("max_score") or Decimal("100"),
        )
        self._validate(assignment)
        assignment.save(using=self.using)
        self._audit("create", assignment, actor, school_class=school_class.pk)
        return assignment

    def update_assignment(self, actor, assignment, data: dict) -> Assignment:
        require_role(actor, STAFF_ROLES, "edit assignments")
        if actor.role == TEACHER:
            teacher = self.scopes.teacher_profile(actor)
            if teacher is None or assignment.teacher_id != teacher.pk:
                raise PermissionDenied("Teachers may only edit their own assignments.")
        else:
            self._same_school(self._actor_school(actor), assignment.school_class.school_id, "Assignment")
        data = dict(data)
        if "subject" in data:
            data["subject"] = self._ref(Subject, data["subject"], "subject")
        changed = self._apply(assignment, data, ASSIGNMENT_EDITABLE)
        self._validate(assignment)
        assignment.save(using=self.using)
        self._audit("update", assignment, actor, fields=",".join(changed))
        return assignment

    def list_submissions(self, assignment):
        return (
            self._qs(AssignmentSubmission).select_related("student__user")
            .filter(assignment=assignment)
            .order_by("submitted_at", "id")
        )

    def submit_assignment(self, actor, assignment, content: str) -> AssignmentSubmission:
        """Students submit once per assignment; resubmitting replaces an ungraded submission."""
        require_role(actor, (STUDENT,), "submit assignments")
        student = self.scopes.student_profile(actor)
        if student is None or student.school_class_id != assignment.school_class_id:
            raise PermissionDenied("This assignment is not set for your class.")

        submission = self._qs(AssignmentSubmission).filter(assignment=assignment, student=student).first()
        if submission is not None and submission.graded_at is not None:
            raise ValidationError({"content": "This submission has already been graded."})
        if submission is None:
            submission = AssignmentSubmission(assignment=assignment, student=student)
        submission.content = content or ""
        submission.submitted_at = timezone.now()
        self._validate(submission)
        submission.save(using=self.using)
        self._audit("submit", submission, actor, assignment=assignment.pk)
        return submission

    def grade_submission(self, actor, submission, score, feedback: str = "") -> AssignmentSubmission:
        require_role(actor, STAFF_ROLES, "grade submissions")
        self._same_school(self._actor_school(actor), submission.student.school_id, "Submission")
        submission.score = score
        submission.feedback = feedback or ""
        submission.graded_at = timezone.now()
        self._validate(submission)
        submission.save(using=self.using)
        self._audit("grade", submission, actor, score=submission.score)
        return submission

    # ---------------- messages ----------------
    def list_messages_by_user(self, user):
        return (
            self._qs(Message).select_related("sender")
            .filter(recipient=user)
            .order_by("-created_at", "-id")
        )

    def get_conversation(self, user, other):
        return (
            self._qs(Message).select_related("sender", "recipient")
            .filter(Q(sender=user, recipient=other) | Q(sender=other, recipient=user))
            .order_by("created_at", "id")
        )

    def send_message(self, actor, data: dict) -> Message:
        if actor is None or not actor.is_active:
            raise PermissionDenied("Inactive accounts cannot send messages.")
        message = Message(
            sender=actor,
            recipient=self._ref(User, data.get("recipient"), "recipient"),
            subject=data.get("subject") or "",
            content=data.get("content"),
        )
        self._validate(message)
        message.save(using=self.using)
        self._audit("send", message, actor, recipient=message.recipient_id)
        return message

    def mark_message_read(self, actor, message) -> Message:
        if message.recipient_id != getattr(actor, "pk", None):
            raise PermissionDenied("Only the recipient can mark a message as read.")
        if not message.is_read:
            message.is_read = True
            message.save(using=self.using, update_fields=["is_read"])
        return message

    # ---------------- fees ----------------
    def list_fee_structures_by_class(self, school_class, term: Optional[str] = None, session=None):
        qs = self._qs(FeeStructure).filter(school_class=school_class)
        if term:
            qs = qs.filter(term=term)
        if session is not None:
            qs = qs.filter(academic_session=session)
        return qs.order_by("name", "id")

    def list_fee_payments_by_student(self, student):
        return (
            self._qs(FeePayment).select_related("fee_structure")
            .filter(student=student)
            .order_by("-created_at", "-id")
        )

    def create_fee_structure(self, actor, data: dict) -> FeeStructure:
        require_role(actor, ADMIN_ROLES, "create fee structures")
        school = self._actor_school(actor)
        school_class = self._ref(SchoolClass, data.get("school_class"), "school_class")
        session = self._ref(AcademicSession, data.get("academic_session"), "academic_session")
        self._same_school(school, school_class.school_id, "Class")
        self._same_school(school, session.school_id, "Session")
        structure = FeeStructure(
            name=data.get("name"),
            amount=data.get("amount"),
            school_class=school_class,
            academic_session=session,
            term=data.get("term") or None,
            is_optional=bool(data.get("is_optional", False)),
            created_by=actor,
        )
        self._validate(structure)
        structure.save(using=self.using)
        self._audit("create", structure, actor, amount=structure.amount)
        return structure

    def record_fee_payment(self, actor, data: dict) -> FeePayment:
        require_role(actor, ADMIN_ROLES, "record fee payments")
        school = self._actor_school(actor)
        student = self._ref(Student, data.get("student"), "student")
        structure = self._ref(FeeStructure, data.get("fee_structure"), "fee_structure")
        self._same_school(school, student.school_id, "Student")
        self._same_school(school, structure.school_class.school_id, "Fee structure")

        payment = FeePayment(
            student=student,
            fee_structure=structure,
            amount_paid=data.get("amount_paid"),
            payment_method=data.get("payment_method") or FeePayment.Method.CASH,
            transaction_ref=data.get("transaction_ref") or "",
            paid_at=data.get("paid_at") or timezone.now(),
            created_by=actor,
        )
        self._validate(payment, exclude=["status"])
        if payment.amount_paid <= 0:
            raise ValidationError({"amount_paid": "Amount paid must be greater than zero."})
        with transaction.atomic(using=self.using):
            payment.save(using=self.using)
            payment.status = sync_fee_status(student, structure, using=self.using)
        self._audit("create", payment, actor, amount=payment.amount_paid, status=payment.status)
        return payment

    # ---------------- announcements ----------------
    def list_announcements_by_school(self, school, role: Optional[str] = None):
        qs = self._qs(Announcement).select_related("author").alive().for_school(school).active()
        if role:
            qs = qs.filter(Q(target_role__isnull=True) | Q(target_role=role))
        return qs.order_by("-created_at", "-id")

    def create_announcement(self, actor, data: dict) -> Announcement:
        require_role(actor, ADMIN_ROLES, "publish announcements")
        school = self.scopes.resolve_school(actor)
        if school is None:
            raise School.DoesNotExist("No school is linked to your account.")
        announcement = Announcement(
            school=school,
            author=actor,
            title=data.get("title"),
            content=data.get("content"),
            target_role=data.get("target_role") or None,
            priority=data.get("priority") or Announcement.Priority.NORMAL,
        )
        self._validate(announcement)
        announcement.save(using=self.using)
        self._audit("create", announcement, actor, school=school.pk, target_role=announcement.target_role)
        return announcement

    def deactivate_announcement(self, actor, announcement) -> Announcement:
        require_role(actor, ADMIN_ROLES, "withdraw announcements")
        self._same_school(self._actor_school(actor), announcement.school_id, "Announcement")
        announcement.is_active = False
        announcement.save(using=self.using, update_fields=["is_active", "updated_at"])
        self._audit("deactivate", announcement, actor)
        return announcement

    def delete_announcement(self, actor, announcement) -> None:
        require_role(actor, ADMIN_ROLES, "delete announcements")
        self._same_school(self._actor_school(actor), announcement.school_id, "Announcement")
        announcement.delete(using=self.using, deleted_by=actor)
        self._audit("delete", announcement, actor)

    # ---------------- notifications ----------------
    def list_notifications_by_user(self, user, unread_only: bool = False):
        qs = self._qs(Notification).filter(user=user)
        if unread_only:
            qs = qs.filter(is_read=False)
        return qs.order_by("-created_at", "-id")

    def create_notification(self, user, title: str, message: str, type: str, action_url: str = "") -> Notification:
        notification = Notification(user=user, title=title, message=message, type=type, action_url=action_url)
        self._validate(notification)
        notification.save(using=self.using)
        return notification

    def notify_many(self, users, title: str, message: str, type: str, action_url: str = "") -> int:
        rows = [
            Notification(user=u, title=title, message=message, type=type, action_url=action_url)
            for u in users
        ]
        self._qs(Notification).bulk_create(rows)
        return len(rows)

    def mark_notification_read(self, actor, notification) -> Notification:
        if notification.user_id != getattr(actor, "pk", None):
            raise PermissionDenied("Only the owner can mark a notification as read.")
        if not notification.is_read:
            notification.is_read = True
            notification.save(using=self.using, update_fields=["is_read"])
        return notification

    def mark_all_notifications_read(self, actor) -> int:
        return self._qs(Notification).filter(user=actor, is_read=False).update(is_read=True)

    # ---------------- comments ----------------
    def open_comment_parent(self, viewer, parent: CommentParent):
        """
        Load the row a comment thread hangs off. The viewer must belong to the
        row's school (and, for a grade, be allowed to read that student).
        Soft-deleted rows, and rows students and guardians may not see yet,
        count as missing.
        """
        row = self._live(parent.model).filter(pk=parent.id).first()
        if row is None:
            raise parent.model.DoesNotExist(f"{parent.kind} {parent.id} does not exist.")
        school_id = (
            self._qs(parent.model).filter(pk=row.pk)
            .values_list(parent.model.related_school_field, flat=True).first()
        )
        self._same_school(self._actor_school(viewer), school_id, parent.kind.title())
        if isinstance(row, Grade):
            self.check_student_access(viewer, row.student)
        if sees_only_published(viewer) and not visible_to_learners(row):
            raise parent.model.DoesNotExist(f"{parent.kind} {parent.id} does not exist.")
        return row

    def list_comments(self, viewer, parent: CommentParent):
        self.open_comment_parent(viewer, parent)
        return (
            self._qs(Comment).select_related("author").alive()
            .filter(content_type=parent.content_type, object_id=parent.id)
            .order_by("created_at", "id")
        )

    def create_comment(self, actor, parent: CommentParent, content: str) -> Comment:
        if actor is None or not actor.is_active:
            raise PermissionDenied("Inactive accounts cannot comment.")
        self.open_comment_parent(actor, parent)
        comment = Comment(
            author=actor,
            content_type=parent.content_type,
            object_id=parent.id,
            content=content,
        )
        self._validate(comment)
        comment.save(using=self.using)
        self._audit("create", comment, actor, parent=f"{parent.kind}:{parent.id}")
        return comment

    def delete_comment(self, actor, comment) -> None:
        if comment.author_id != getattr(actor, "pk", None):
            if not is_admin(actor):
                raise PermissionDenied("Only the author or an administrator can delete a comment.")
            parent = comment.content_type.model_class()
            school_id = (
                self._qs(parent).filter(pk=comment.object_id)
                .values_list(parent.related_school_field, flat=True).first()
            )
            self._same_school(self._actor_school(actor), school_id, "Comment")
        comment.delete(using=self.using, deleted_by=actor)
        self._audit("delete", comment, actor)

    # ---------------- posts ----------------
    def list_posts_by_school(self, school):
        return (
            self._qs(Post).select_related("author").alive().for_school(school)
            .filter(is_published=True)
            .order_by("-published_at", "-id")
        )

    def create_post(self, actor, data: dict) -> Post:
        require_role(actor, STAFF_ROLES, "publish posts")
        school = self._actor_school(actor)
        post = Post(
            school=school,
            author=actor,
            title=data.get("title"),
            content=data.get("content"),
            image_url=data.get("image_url") or "",
            category=data.get("category") or Post.Category.GENERAL,
            is_published=data.get("is_published", True),
        )
        self._validate(post)
        post.save(using=self.using)
        self._audit("create", post, actor, school=school.pk)
        return post

    def delete_post(self, actor, post) -> None:
        if post.author_id != getattr(actor, "pk", None) and not is_admin(actor):
            raise PermissionDenied("Only the author or an administrator can delete a post.")
        post.delete(using=self.using, deleted_by=actor)
        self._audit("delete", post, actor)

    # ---------------- timetable ----------------
    def list_timetable_by_class(self, school_class):
        return (
            self._qs(TimetableEntry).select_related("subject", "teacher__user").alive()
            .filter(school_class=school_class, is_active=True)
            .order_by("day_of_week", "start_time", "id")
        )

    def create_timetable_entry(self, actor, data: dict) -> TimetableEntry:
        require_role(actor, ADMIN_ROLES, "edit the timetable")
        school = self._actor_school(actor)
        school_class = self._ref(SchoolClass, data.get("school_class"), "school_class")
        self._same_school(school, school_class.school_id, "Class")
        entry = TimetableEntry(
            school_class=school_class,
            subject=self._ref(Subject, data.get("subject"), "subject"),
            teacher=self._ref(Teacher, data.get("teacher"), "teacher", required=False),
            day_of_week=data.get("day_of_week"),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            academic_session=self._ref(
                AcademicSession, data.get("academic_session"), "academic_session", required=False),
            created_by=actor,
        )
        self._validate(entry)
        entry.save(using=self.using)
        self._audit("create", entry, actor, school_class=school_class.pk)
        return entry

    def delete_timetable_entry(self, actor, entry) -> None:
        require_role(actor, ADMIN_ROLES, "edit the timetable")
        self._same_school(self._actor_school(actor), entry.school_class.school_id, "Timetable entry")
        entry.delete(using=self.using, deleted_by=actor)
        self._audit("delete", entry, actor)

    # ---------------- report cards ----------------
    def get_report_card(self, pk) -> Optional[ReportCard]:
        return self._get(ReportCard, pk)

    def list_report_cards_by_student(self, student, viewer=None):
        qs = (
            self._qs(ReportCard).select_related("academic_session")
            .filter(student=student)
            .annotate(term_order=TERM_ORDER)
        )
        if sees_only_published(viewer):
            qs = qs.filter(is_published=True)
        return qs.order_by("-academic_session__start_date", "-term_order", "-id")


def as_date(value) -> Optional[datetime.date]:
    """Accept a date or an ISO string (query params); anything else is a validation error."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime.date):
        return value
    try:
        parsed = parse_date(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError({"date": f"'{value}' is not a valid YYYY-MM-DD date."})
    return parsed


def sheet_decimal(value):
    """Spreadsheet cells arrive as float/int/str; floats go through str so 88.1 stays 88.1."""
    if value is None or value == "":
        return None
    if isinstance(value, float):
        return Decimal(str(value))
    return value
