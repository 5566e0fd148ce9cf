import logging

from django.conf import settings
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from main.models import Announcement, Grade, ReportCard
from notification.models import Notification

logger = logging.getLogger(__name__)


def _enabled(flag: str) -> bool:
    return getattr(settings, flag, True)


def _student_audience(student):
    users = [student.user]
    if student.guardian_id:
        users.append(student.guardian)
    return users


def _refresh_cards(student, term, session_id, using):
    from main.reporting import ReportCardGenerator  # lazy import to avoid circulars

    if not student.school_class_id or session_id is None:
        return
    refreshed = ReportCardGenerator(using=using).refresh_existing(
        student.school_class_id, term, session_id)
    if refreshed:
        logger.info("Refreshed %s report card(s) for class %s %s", refreshed, student.school_class_id, term)


@receiver(post_save, sender=Grade)
def _grade_saved(sender, instance, created, using, **kwargs):
    tracker = instance.tracker
    was_published = (
        not created and tracker.has_changed("status")
        and tracker.previous("status") == Grade.Status.PUBLISHED
    )
    now_published = instance.status == Grade.Status.PUBLISHED

    if now_published and (created or tracker.has_changed("status")):
        from main.records import RecordStore
        RecordStore(using=using).notify_many(
            _student_audience(instance.student),
            title="New grade published",
            message=f"{instance.subject.name} {instance.assessment_type}: {instance.score}/{instance.max_score}",
            type=Notification.Type.GRADE,
        )

    if not _enabled("REPORT_CARD_AUTO_REFRESH"):
        return
    if not (now_published or was_published):
        return
    if not created and not tracker.changed():
        return

    _refresh_cards(instance.student, instance.term, instance.academic_session_id, using)
    if not created and (tracker.has_changed("term") or tracker.has_changed("academic_session")):
        _refresh_cards(
            instance.student,
            tracker.previous("term"),
            tracker.previous("academic_session"),
            using,
        )


@receiver(post_delete, sender=Grade)
def _grade_deleted(sender, instance, using, **kwargs):
    if not _enabled("REPORT_CARD_AUTO_REFRESH") or instance.status != Grade.Status.PUBLISHED:
        return
    _refresh_cards(instance.student, instance.term, instance.academic_session_id, using)


@receiver(post_save, sender=ReportCard)
def _report_card_published(sender, instance, created, using, update_fields=None, **kwargs):
    if created or not update_fields or "is_published" not in update_fields or not instance.is_published:
        return
    from main.records import RecordStore
    RecordStore(using=using).notify_many(
        _student_audience(instance.student),
        title="Report card available",
        message=f"{instance.academic_session.name} {instance.get_term_display()} report card has been published.",
        type=Notification.Type.REPORT_CARD,
        action_url=f"/report-cards/{instance.pk}/",
    )


@receiver(post_save, sender=Announcement)
def _announce(sender, instance, created, using, **kwargs):
    if not created or not _enabled("ANNOUNCEMENT_NOTIFICATIONS"):
        return
    from main.records import RecordStore
    store = RecordStore(using=using)
    audience = store.school_members(instance.school, role=instance.target_role).exclude(pk=instance.author_id)
    sent = store.notify_many(
        audience,
        title=instance.title,
        message=instance.content[:200],
        type=Notification.Type.ANNOUNCEMENT,
    )
    logger.info("Announcement %s notified %s user(s)", instance.pk, sent)


@receiver(post_save, sender="attendance.Attendance")
def _absence_noticed(sender, instance, created, using, **kwargs):
    if instance.status != "absent" or not instance.student.guardian_id:
        return
    if not created and not instance.tracker.has_changed("status"):
        return
    from main.records import RecordStore
    RecordStore(using=using).create_notification(
        instance.student.guardian,
        title="Absence recorded",
        message=f"{instance.student.user.full_name or instance.student.student_code} was marked absent on {instance.date}.",
        type=Notification.Type.ATTENDANCE,
    )
