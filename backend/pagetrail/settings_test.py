"""
Settings for the test suite.

    python manage.py test --settings=pagetrail.settings_test
"""

from .settings import *  # noqa: F401,F403

# one process, no Redis needed; the run-lock tests only need cache.add semantics
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "pagetrail-tests",
    }
}

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
CELERY_TASK_ALWAYS_EAGER = True
