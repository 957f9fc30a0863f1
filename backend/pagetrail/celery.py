import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pagetrail.settings")

app = Celery("pagetrail")

# All CELERY_* names in Django settings configure the app
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
