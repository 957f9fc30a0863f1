"""
Daily digest of page updates.

Triggered early in the morning (Celery beat or the send_daily_digest
command). It covers everything from the trailing day that has not been
digested yet. To keep the data consistent the run has to finish before the
next one starts: the per-recipient throttle is sized for that, the run-lock
keeps two runs from overlapping, and max_runtime is a hard stop.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Optional

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from . import mailer
from .exceptions import MailTransportError
from .models import PageHistory
from .selectors import digest_recipients, pending_digest_histories, watched_page_ids

logger = logging.getLogger(__name__)


@dataclass
class DigestResult:
    status: str
    considered: int = 0
    recipients: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    stamped: int = 0
    unprocessed: int = 0
    planned: Dict[int, int] = field(default_factory=dict)

    def as_dict(self):
        return {
            'status': self.status,
            'considered': self.considered,
            'recipients': self.recipients,
            'sent': self.sent,
            'failed': self.failed,
            'skipped': self.skipped,
            'stamped': self.stamped,
            'unprocessed': self.unprocessed,
        }


class DailyDigest:
    TIMESPAN = timedelta(days=1)
    LOCK_KEY = 'page_history:daily_digest:lock'

    def __init__(self, throttle=None, max_runtime=None, sleep=time.sleep, clock=time.monotonic):
        if throttle is None:
            throttle = getattr(settings, 'PAGE_HISTORY_DIGEST_THROTTLE_SECONDS', 1.0)
        if max_runtime is None:
            max_runtime = getattr(settings, 'PAGE_HISTORY_DIGEST_MAX_RUNTIME', 20 * 60 * 60)
        self.throttle = throttle
        self.max_runtime = max_runtime
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def window(cls, now):
        return now - cls.TIMESPAN, now

    def deliver_all(
        self,
        now=None,
        should_stop: Optional[Callable[[], bool]] = None,
        dry_run: bool = False,
    ) -> DigestResult:
        now = now or timezone.now()
        if dry_run:
            return self._run(now, should_stop, dry_run=True)

        token = uuid.uuid4().hex
        timeout = getattr(settings, 'PAGE_HISTORY_DIGEST_LOCK_TIMEOUT', 23 * 60 * 60)
        if not cache.add(self.LOCK_KEY, token, timeout):
            logger.warning("Daily digest is already running, skipping this invocation")
            return DigestResult(status='locked')

        try:
            return self._run(now, should_stop, dry_run=False)
        finally:
            if cache.get(self.LOCK_KEY) == token:
                cache.delete(self.LOCK_KEY)

    def histories_for(self, recipient, pending):
        """The recipient's share of the pending records, in page/creation order."""
        page_ids = watched_page_ids(recipient)
        return [
            history for history in pending
            if history.page_id in page_ids and history.user_id != recipient.pk
        ]

    def _run(self, now, should_stop, dry_run):
        since, until = self.window(now)

        if not dry_run:
            discarded, _ = PageHistory.objects.without_page().delete()
            if discarded:
                logger.info("Discarded %s page histories without page", discarded)

        pending = list(
            pending_digest_histories(since, until)
            .select_related('page', 'user')
            .order_by('page_id', 'created_at', 'pk')
        )
        result = DigestResult(status='completed', considered=len(pending))
        if not pending:
            return result

        recipients = list(digest_recipients())
        result.recipients = len(recipients)
        deadline = self._clock() + self.max_runtime
        delivered_ids = set()
        processed = 0

        try:
            for recipient in recipients:
                if should_stop is not None and should_stop():
                    result.status = 'interrupted'
                    break
                if self._clock() >= deadline:
                    result.status = 'timed_out'
                    break

                histories = self.histories_for(recipient, pending)
                processed += 1
                if not histories:
                    result.skipped += 1
                    continue
                if dry_run:
                    result.planned[recipient.pk] = len(histories)
                    continue

                if result.sent or result.failed:
                    self._sleep(self.throttle)
                if self._send(recipient, histories):
                    result.sent += 1
                    delivered_ids.update(h.pk for h in histories)
                else:
                    result.failed += 1
        except MailTransportError:
            result.status = 'failed'
            logger.error(
                "Mail transport failed during the daily digest after %s of %s recipients",
                processed, len(recipients), exc_info=True,
            )
            self._stamp(delivered_ids, now, result)
            raise

        result.unprocessed = len(recipients) - processed
        if dry_run:
            return result

        if result.status == 'completed':
            # every considered record is done, whether or not it reached anyone
            self._stamp([h.pk for h in pending], now, result)
        else:
            logger.warning(
                "Daily digest %s with %s recipients left; %s records stay pending",
                result.status, result.unprocessed, len(pending) - len(delivered_ids),
            )
            self._stamp(delivered_ids, now, result)

        logger.info(
            "Daily digest %s: %s sent, %s failed, %s empty, %s records stamped",
            result.status, result.sent, result.failed, result.skipped, result.stamped,
        )
        return result

    def _send(self, recipient, histories) -> bool:
        connection = mailer.open_connection()
        try:
            return mailer.deliver(mailer.digest_notification(recipient, histories), connection)
        finally:
            connection.close()

    def _stamp(self, ids, now, result):
        if not ids:
            return
        result.stamped = PageHistory.objects.filter(
            pk__in=list(ids), digest_sent_at__isnull=True
        ).update(digest_sent_at=now)
