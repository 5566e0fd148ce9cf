from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _

from main.tenancy.tenancy_models import RecordModel


class Notification(RecordModel):
    class Type(models.TextChoices):
        GRADE = "grade", _("Grade")
        ATTENDANCE = "attendance", _("Attendance")
        FEE = "fee", _("Fee")
        ANNOUNCEMENT = "announcement", _("Announcement")
        ASSIGNMENT = "assignment", _("Assignment")
        REPORT_CARD = "report_card", _("Report Card")

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    title = models.CharField(max_length=200)
    message = models.TextField()
    type = models.CharField(max_length=15, choices=Type.choices)
    is_read = models.BooleanField(default=False)
    action_url = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"]),
        ]

    def __str__(self):
        return f"{self.title} -> {self.user}"
