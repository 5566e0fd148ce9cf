from django.apps import AppConfig


class NotificationConfig(AppConfig):
    name = "notification"
    default_auto_field = "django.db.models.BigAutoField"
