import threading

from celery import shared_task
from celery.signals import worker_shutting_down
from celery.utils.log import get_task_logger
from django.conf import settings
from django.utils import timezone

from .digest import DailyDigest
from .exceptions import MailTransportError
from .services import dispatch_single_notifications

logger = get_task_logger(__name__)

# set on warm shutdown; the digest stops before its next recipient
digest_stop = threading.Event()


@worker_shutting_down.connect
def request_digest_stop(sig=None, how=None, exitcode=None, **kwargs):
    logger.info("Worker shutting down (%s), asking a running digest to stop", how)
    digest_stop.set()


@shared_task(
    autoretry_for=(MailTransportError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    max_retries=getattr(settings, 'PAGE_HISTORY_SINGLE_MAX_RETRIES', 3),
)
def send_single_notifications(record_id):
    """
    Send immediate notifications for one page history record
    Queued once per record when it is created
    """
    result = dispatch_single_notifications(record_id)
    logger.info(
        "PageHistory %s: %s (%s sent, %s refused)",
        record_id, result.status, result.sent, result.failed,
    )
    return result.as_dict()


@shared_task
def send_daily_digest():
    """
    Send the daily digest of page updates
    Run this task once a day, early in the morning
    """
    result = DailyDigest().deliver_all(should_stop=digest_stop.is_set)
    return {
        **result.as_dict(),
        'processed_at': str(timezone.now()),
    }
