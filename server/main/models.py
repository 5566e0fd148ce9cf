from __future__ import annotations

import uuid
from decimal import Decimal
from typing import NamedTuple

from django.apps import apps
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from model_utils import FieldTracker

from main.tenancy.managers import SchoolScopedQuerySet
from main.tenancy.tenancy_models import (
    AuditableModel,
    RecordModel,
    SchoolAwareModel,
    SoftDeleteModel,
)

STUDENT = "student"
TEACHER = "teacher"
PARENT = "parent"
PRINCIPAL = "principal"
PROPRIETOR = "proprietor"

ROLE_CHOICES = (
    (STUDENT, "Student"),
    (TEACHER, "Teacher"),
    (PARENT, "Parent"),
    (PRINCIPAL, "Principal"),
    (PROPRIETOR, "Proprietor"),
)
ADMIN_ROLES = (PRINCIPAL, PROPRIETOR)
STAFF_ROLES = (TEACHER, PRINCIPAL, PROPRIETOR)


class Term(models.TextChoices):
    FIRST = "first", _("First Term")
    SECOND = "second", _("Second Term")
    THIRD = "third", _("Third Term")


# ----------------------------- Identity -----------------------------
class UserManager(BaseUserManager):
    """
    Email is the login field; there is no username.
    """
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError("The email address must be set.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("role", PROPRIETOR)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    """
    An authenticated identity. The role is fixed at creation; profiles
    (Student/Teacher) and school links hang off it.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = None
    email = models.EmailField(_("email address"), unique=True)
    role = models.CharField(max_length=12, choices=ROLE_CHOICES)
    profile_image_url = models.URLField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["role"]

    objects = UserManager()
    tracker = FieldTracker(fields=["role"])

    class Meta:
        ordering = ["email"]

    def __str__(self):
        return self.email

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_administrator(self) -> bool:
        return self.role in ADMIN_ROLES

    def save(self, *args, **kwargs):
        if not self._state.adding and self.tracker.has_changed("role"):
            raise ValidationError({"role": _("Role cannot be changed once the account exists.")})
        super().save(*args, **kwargs)


# ----------------------------- Organisation -----------------------------
class School(RecordModel):
    """
    Represents a school. A proprietor owns it and a principal administers it;
    either link resolves the identity to this school.
    """
    name = models.CharField(max_length=150, db_index=True)
    address = models.TextField(blank=True, default="")
    phone = models.CharField(max_length=30, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    proprietor = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="proprietor_of",
        limit_choices_to={"role": PROPRIETOR},
    )
    principal = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="principal_of",
        limit_choices_to={"role": PRINCIPAL},
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class AcademicSession(SchoolAwareModel, AuditableModel, SoftDeleteModel):
    school = models.ForeignKey(
        School, on_delete=models.CASCADE, related_name="academic_sessions")
    name = models.CharField(max_length=50)  # e.g., "2023/2024"
    start_date = models.DateField()
    end_date = models.DateField()
    is_active = models.BooleanField(default=False)

    class Meta:
        ordering = ["-start_date"]
        constraints = [
            models.UniqueConstraint(
                fields=["school"],
                condition=Q(is_active=True, is_deleted=False),
                name="one_active_session_per_school",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.school.name}){' - active' if self.is_active else ''}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValidationError({"end_date": _("Session must end after it starts.")})

    def save(self, *args, **kwargs):
        using = kwargs.get("using") or self._state.db or "default"
        with transaction.atomic(using=using):
            # At most one active session per school.
            if self.is_active and not self.is_deleted:
                AcademicSession.objects.using(using).filter(
                    school_id=self.school_id, is_active=True
                ).exclude(pk=self.pk).update(is_active=False)
            super().save(*args, **kwargs)


class SchoolClass(SchoolAwareModel, AuditableModel):
    school = models.ForeignKey(
        School, on_delete=models.CASCADE, related_name="classes")
    name = models.CharField(max_length=100)  # e.g., "SS3 Science"
    level = models.CharField(max_length=100)  # e.g., "Senior Secondary"
    class_teacher = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="classes_taught",
        limit_choices_to={"role": TEACHER},
    )
    capacity = models.PositiveIntegerField(default=40)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "school classes"

    def __str__(self):
        return f"{self.name} ({self.school.name})"


class Subject(SchoolAwareModel, AuditableModel):
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20)
    description = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["school", "code"], name="unique_subject_code_per_school"),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"


# ----------------------------- Profiles -----------------------------
class Student(SchoolAwareModel):
    """Student profile linking an identity to a school, a class and a guardian."""
    user = models.OneToOneField(
        User, on_delete=models.CASCADE, related_name="student_profile")
    student_code = models.CharField(max_length=30, help_text="School-local student ID")
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="students",
    )
    date_of_birth = models.DateField(null=True, blank=True)
    admission_date = models.DateField(null=True, blank=True)
    guardian = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="children",
        limit_choices_to={"role": PARENT},
    )

    class Meta:
        ordering = ["student_code"]
        constraints = [
            models.UniqueConstraint(
                fields=["school", "student_code"], name="unique_student_code_per_school"),
        ]

    def __str__(self):
        return f"{self.user.full_name or self.user.email} ({self.student_code})"

    def clean(self):
        errors = {}
        if self.school_class_id and self.school_class.school_id != self.school_id:
            errors["school_class"] = _("Class belongs to a different school.")
        if self.guardian_id and self.guardian.role != PARENT:
            errors["guardian"] = _("Guardian must have the parent role.")
        if errors:
            raise ValidationError(errors)


class Teacher(SchoolAwareModel):
    user = models.OneToOneField(
        User, on_delete=models.CASCADE, related_name="teacher_profile")
    teacher_code = models.CharField(max_length=30, help_text="School-local teacher ID")
    department = models.CharField(max_length=100, blank=True, default="")
    qualification = models.CharField(max_length=150, blank=True, default="")
    hire_date = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["teacher_code"]
        constraints = [
            models.UniqueConstraint(
                fields=["school", "teacher_code"], name="unique_teacher_code_per_school"),
        ]

    def __str__(self):
        return f"{self.user.full_name or self.user.email} ({self.teacher_code})"


# ----------------------------- Assessment -----------------------------
class GradeQuerySet(SchoolScopedQuerySet):
    def published(self): return self.filter(status=Grade.Status.PUBLISHED)
    def drafts(self): return self.filter(status=Grade.Status.DRAFT)

    def for_student(self, student): return self.filter(student=student)

    def for_period(self, term, session):
        return self.filter(term=term, academic_session=session)


class Grade(RecordModel):
    """
    A single assessment score. Only published grades are visible to students
    and guardians, and only published grades with a score feed report cards.
    """
    class Status(models.TextChoices):
        DRAFT = "draft", _("Draft")
        PUBLISHED = "published", _("Published")

    related_school_field = "student__school"

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name="grades")
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="grades")
    teacher = models.ForeignKey(
        Teacher, on_delete=models.SET_NULL, null=True, blank=True, related_name="grades")
    academic_session = models.ForeignKey(
        AcademicSession, on_delete=models.CASCADE, related_name="grades")
    term = models.CharField(max_length=10, choices=Term.choices)
    assessment_type = models.CharField(max_length=30)  # "test1", "test2", "assignment", "exam"
    score = models.DecimalField(
        max_digits=5, decimal_places=2, null=True, blank=True,
        validators=[MinValueValidator(Decimal("0"))])
    max_score = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("100"),
        validators=[MinValueValidator(Decimal("0.01"))])
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.DRAFT)
    graded_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = GradeQuerySet.as_manager()
    tracker = FieldTracker(fields=["score", "max_score", "status", "term", "academic_session"])

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["student", "academic_session", "term"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(score__isnull=True) | Q(score__lte=F("max_score")),
                name="grade_score_within_max",
            ),
        ]

    def __str__(self):
        return f"{self.student} - {self.subject.code} {self.assessment_type}: {self.score}/{self.max_score}"

    def clean(self):
        errors = {}
        if isinstance(self.score, Decimal) and isinstance(self.max_score, Decimal) and self.score > self.max_score:
            errors["score"] = _("Score cannot exceed the maximum score.")
        if self.student_id and self.subject_id and self.subject.school_id != self.student.school_id:
            errors["subject"] = _("Subject belongs to a different school.")
        if (self.student_id and self.academic_session_id
                and self.academic_session.school_id != self.student.school_id):
            errors["academic_session"] = _("Session belongs to a different school.")
        if errors:
            raise ValidationError(errors)


class Assignment(RecordModel):
    related_school_field = "school_class__school"

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    school_class = models.ForeignKey(
        SchoolClass, on_delete=models.CASCADE, related_name="assignments")
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="assignments")
    teacher = models.ForeignKey(
        Teacher, on_delete=models.SET_NULL, null=True, blank=True, related_name="assignments")
    due_date = models.DateTimeField(null=True, blank=True)
    max_score = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("100"),
        validators=[MinValueValidator(Decimal("0.01"))])
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = [F("due_date").desc(nulls_last=True), "-created_at"]

    def __str__(self):
        return self.title

    def clean(self):
        if self.school_class_id and self.subject_id and self.subject.school_id != self.school_class.school_id:
            raise ValidationError({"subject": _("Subject belongs to a different school.")})


class AssignmentSubmission(RecordModel):
    related_school_field = "student__school"

    assignment = models.ForeignKey(
        Assignment, on_delete=models.CASCADE, related_name="submissions")
    student = models.ForeignKey(
        Student, on_delete=models.CASCADE, related_name="submissions")
    content = models.TextField(blank=True, default="")
    submitted_at = models.DateTimeField(default=timezone.now)
    score = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    feedback = models.TextField(blank=True, default="")
    graded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["submitted_at"]
        constraints = [
            models.UniqueConstraint(fields=["assignment", "student"], name="one_submission_per_student"),
        ]

    def __str__(self):
        return f"{self.student} -> {self.assignment}"

    def clean(self):
        if isinstance(self.score, Decimal) and self.score > self.assignment.max_score:
            raise ValidationError({"score": _("Score cannot exceed the assignment maximum.")})


class ReportCard(RecordModel):
    """
    Computed per (student, session, term). Only the aggregation engine writes
    the computed columns; comments and the publish flag are edited separately.
    """
    related_school_field = "student__school"

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name="report_cards")
    academic_session = models.ForeignKey(
        AcademicSession, on_delete=models.CASCADE, related_name="report_cards")
    term = models.CharField(max_length=10, choices=Term.choices)
    total_score = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    total_possible = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    average = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))
    position = models.PositiveIntegerField(null=True, blank=True)
    class_size = models.PositiveIntegerField(null=True, blank=True)
    teacher_comment = models.TextField(blank=True, default="")
    principal_comment = models.TextField(blank=True, default="")
    next_term_begins = models.DateField(null=True, blank=True)
    is_published = models.BooleanField(default=False)
    generated_at = models.DateTimeField(default=timezone.now)

    COMPUTED_FIELDS = ("total_score", "total_possible", "average", "position", "class_size")

    class Meta:
        ordering = ["-generated_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["student", "academic_session", "term"], name="one_report_card_per_term"),
        ]

    def __str__(self):
        return f"{self.student} - {self.academic_session.name} {self.term}"


# ----------------------------- Finance -----------------------------
class FeeStructure(RecordModel, AuditableModel):
    related_school_field = "school_class__school"

    name = models.CharField(max_length=150)  # e.g., "Tuition Fee", "Development Levy"
    amount = models.DecimalField(
        max_digits=10, decimal_places=2, validators=[MinValueValidator(Decimal("0.01"))])
    school_class = models.ForeignKey(
        SchoolClass, on_delete=models.CASCADE, related_name="fee_structures")
    academic_session = models.ForeignKey(
        AcademicSession, on_delete=models.CASCADE, related_name="fee_structures")
    term = models.CharField(max_length=10, choices=Term.choices, null=True, blank=True)
    is_optional = models.BooleanField(default=False)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} - {self.amount}"


class FeePayment(RecordModel, AuditableModel):
    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PARTIAL = "partial", _("Partial")
        PAID = "paid", _("Paid")

    class Method(models.TextChoices):
        BANK_TRANSFER = "bank_transfer", _("Bank Transfer")
        CARD = "card", _("Card")
        CASH = "cash", _("Cash")

    related_school_field = "student__school"

    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name="fee_payments")
    fee_structure = models.ForeignKey(
        FeeStructure, on_delete=models.CASCADE, related_name="payments")
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=Method.choices, default=Method.CASH)
    transaction_ref = models.CharField(max_length=100, blank=True, default="")
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(amount_paid__gt=0), name="fee_payment_positive"),
        ]

    def __str__(self):
        return f"{self.student} paid {self.amount_paid} ({self.status})"


# ----------------------------- Communication -----------------------------
class Message(RecordModel):
    sender = models.ForeignKey(User, on_delete=models.CASCADE, related_name="sent_messages")
    recipient = models.ForeignKey(User, on_delete=models.CASCADE, related_name="received_messages")
    subject = models.CharField(max_length=200, blank=True, default="")
    content = models.TextField()
    is_read = models.BooleanField(default=False)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.sender} -> {self.recipient}: {self.subject}"


class Announcement(SchoolAwareModel, SoftDeleteModel):
    """
    School-wide notice. `target_role` of None means every role in the school.
    """
    class Priority(models.TextChoices):
        LOW = "low", _("Low")
        NORMAL = "normal", _("Normal")
        HIGH = "high", _("High")

    title = models.CharField(max_length=200)
    content = models.TextField()
    author = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, related_name="announcements")
    target_role = models.CharField(max_length=12, choices=ROLE_CHOICES, null=True, blank=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.NORMAL)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["school", "is_active", "created_at"]),
        ]

    def __str__(self):
        return f"{self.title} - {self.school.name}"


class Post(SchoolAwareModel, SoftDeleteModel):
    class Category(models.TextChoices):
        ACADEMIC = "academic", _("Academic")
        SPORTS = "sports", _("Sports")
        EVENTS = "events", _("Events")
        GENERAL = "general", _("General")

    author = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name="posts")
    title = models.CharField(max_length=200)
    content = models.TextField()
    image_url = models.URLField(blank=True, default="")
    category = models.CharField(max_length=10, choices=Category.choices, default=Category.GENERAL)
    is_published = models.BooleanField(default=True)
    published_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-published_at"]

    def __str__(self):
        return self.title


# Addressable comment parents: kind -> "app_label.Model".
COMMENT_PARENT_MODELS = {
    "assignment": "main.Assignment",
    "announcement": "main.Announcement",
    "grade": "main.Grade",
    "post": "main.Post",
}


class CommentParent(NamedTuple):
    """Typed reference to something a comment can hang off."""
    kind: str
    id: uuid.UUID

    @classmethod
    def of(cls, kind, id) -> "CommentParent":
        if kind not in COMMENT_PARENT_MODELS:
            raise ValidationError({"parent_type": f"'{kind}' cannot be commented on."})
        try:
            parent_id = id if isinstance(id, uuid.UUID) else uuid.UUID(str(id))
        except ValueError:
            raise ValidationError({"parent_id": _("Malformed parent id.")})
        return cls(kind, parent_id)

    @classmethod
    def for_instance(cls, obj) -> "CommentParent":
        label = obj._meta.label
        for kind, model_label in COMMENT_PARENT_MODELS.items():
            if model_label == label:
                return cls(kind, obj.pk)
        raise ValidationError({"parent_type": f"{label} cannot be commented on."})

    @property
    def model(self):
        return apps.get_model(COMMENT_PARENT_MODELS[self.kind])

    @property
    def content_type(self):
        return ContentType.objects.get_for_model(self.model)


class Comment(RecordModel, SoftDeleteModel):
    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name="comments")
    content_type = models.ForeignKey(ContentType, on_delete=models.CASCADE)
    object_id = models.UUIDField()
    parent = GenericForeignKey("content_type", "object_id")
    content = models.TextField()
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["content_type", "object_id"]),
        ]

    def __str__(self):
        return f"{self.author} on {self.content_type.model}:{self.object_id}"

    @property
    def parent_ref(self) -> CommentParent:
        return CommentParent.for_instance(self.parent)


# ----------------------------- Timetable -----------------------------
class TimetableEntry(RecordModel, AuditableModel, SoftDeleteModel):
    related_school_field = "school_class__school"

    school_class = models.ForeignKey(
        SchoolClass, on_delete=models.CASCADE, related_name="timetable_entries")
    subject = models.ForeignKey(Subject, on_delete=models.CASCADE, related_name="timetable_entries")
    teacher = models.ForeignKey(
        Teacher, on_delete=models.SET_NULL, null=True, blank=True, related_name="timetable_entries")
    DAY_CHOICES = [
        (0, "Sunday"), (1, "Monday"), (2, "Tuesday"), (3, "Wednesday"),
        (4, "Thursday"), (5, "Friday"), (6, "Saturday"),
    ]

    day_of_week = models.PositiveSmallIntegerField(
        choices=DAY_CHOICES,
        validators=[MinValueValidator(0), MaxValueValidator(6)])
    start_time = models.TimeField()
    end_time = models.TimeField()
    academic_session = models.ForeignKey(
        AcademicSession, on_delete=models.CASCADE, null=True, blank=True,
        related_name="timetable_entries")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["day_of_week", "start_time"]
        verbose_name_plural = "timetable entries"
        constraints = [
            models.CheckConstraint(condition=Q(start_time__lt=F("end_time")), name="timetable_slot_ordered"),
        ]

    def __str__(self):
        return f"{self.school_class.name} {self.get_day_of_week_display()} {self.start_time}-{self.end_time}"

    def clean(self):
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({"end_time": _("Slot must end after it starts.")})
