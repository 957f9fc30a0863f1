from django.apps import AppConfig


class PageHistoryConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "page_history"
    verbose_name = "Page history"

    def ready(self):
        from . import signals  # noqa: F401
