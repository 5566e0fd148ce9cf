from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _
from model_utils import FieldTracker

from main.tenancy.tenancy_models import RecordModel


class Attendance(RecordModel):
    """
    One attendance mark per student per day.
    """
    class Status(models.TextChoices):
        PRESENT = 'present', _('Present')
        ABSENT = 'absent', _('Absent')
        LATE = 'late', _('Late')
        EXCUSED = 'excused', _('Excused Absence')

    related_school_field = 'student__school'

    student = models.ForeignKey(
        'main.Student',
        on_delete=models.CASCADE,
        related_name='attendance_records',
        verbose_name=_('student')
    )
    school_class = models.ForeignKey(
        'main.SchoolClass',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='attendance_records',
        verbose_name=_('class')
    )
    date = models.DateField(verbose_name=_('date'))
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        verbose_name=_('status')
    )
    remarks = models.TextField(
        blank=True,
        default='',
        verbose_name=_('remarks')
    )
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='attendance_recorded',
        verbose_name=_('recorded by')
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name=_('updated at')
    )

    tracker = FieldTracker(fields=['status'])

    class Meta:
        ordering = ['-date']
        verbose_name = _('attendance record')
        verbose_name_plural = _('attendance records')
        constraints = [
            models.UniqueConstraint(fields=['student', 'date'], name='one_attendance_per_student_per_day'),
        ]
        indexes = [
            models.Index(fields=['school_class', 'date']),
            models.Index(fields=['status', 'date']),
        ]

    def __str__(self):
        return f"{self.student} - {self.date} ({self.get_status_display()})"
