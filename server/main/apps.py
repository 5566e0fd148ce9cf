from __future__ import annotations
from django.apps import AppConfig


class MainConfig(AppConfig):
    name = "main"
    default_auto_field = "django.db.models.BigAutoField"

    def ready(self):
        # Import signal handlers
        from main import checks, signals  # noqa: F401
