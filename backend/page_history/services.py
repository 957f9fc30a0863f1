import logging
from dataclasses import dataclass
from typing import Optional

from django.contrib.contenttypes.models import ContentType
from django.db import transaction
from django.utils import timezone

from pages.models import Page
from . import mailer
from .classifier import MutationContext, classify
from .models import PageHistory
from .recipients import resolve_recipients

logger = logging.getLogger(__name__)


def record_history(context: MutationContext) -> Optional[PageHistory]:
    """
    Classify a mutation and store it as a history record.

    Returns None when no variant matches or when the mutation has no page.
    Runs inside the mutation's transaction; the single notification task is
    queued by the post_save receiver once that transaction commits.
    """
    if context.page is None or context.page.pk is None:
        return None

    classification = classify(context)
    if classification is None:
        return None

    subject = classification.subject
    record = PageHistory.objects.create(
        user=context.actor,
        page=context.page,
        item_type=ContentType.objects.get_for_model(subject) if subject is not None else None,
        item_id=subject.pk if subject is not None else None,
        event_type=classification.event_type,
        details=classification.details,
    )

    if classification.touches_page:
        # keep page freshness in line with its history, without save signals
        Page.objects.filter(pk=context.page.pk).update(updated_at=record.created_at)

    logger.debug("Recorded %s for page %s", record.event_type, context.page.pk)
    return record


@dataclass
class DispatchResult:
    record_id: int
    status: str
    sent: int = 0
    failed: int = 0

    def as_dict(self):
        return {
            'record_id': self.record_id,
            'status': self.status,
            'sent': self.sent,
            'failed': self.failed,
        }


def dispatch_single_notifications(record_id, now=None) -> DispatchResult:
    """
    Send the immediate notifications for one history record.

    The record row is locked for the whole resolve + send + stamp unit, so
    two dispatches of the same record never interleave. A record that is
    already stamped is left alone. Refusals for single recipients are logged
    and do not block the stamp; a MailTransportError propagates and leaves
    the record unstamped for a retry.
    """
    with transaction.atomic():
        record = (
            PageHistory.objects.select_for_update()
            .filter(pk=record_id)
            .first()
        )
        if record is None:
            logger.info("PageHistory %s no longer exists, nothing to send", record_id)
            return DispatchResult(record_id, 'missing')

        if record.single_sent_at is not None:
            return DispatchResult(record_id, 'already_sent')

        if record.page_id is None:
            logger.info("Discarding PageHistory %s: its page is gone", record_id)
            record.delete()
            return DispatchResult(record_id, 'discarded')

        recipients = resolve_recipients(record)
        result = DispatchResult(record_id, 'sent')

        if recipients.single:
            connection = mailer.open_connection()
            try:
                for user in sorted(recipients.single, key=lambda u: u.pk):
                    message = mailer.single_notification(user, record)
                    if mailer.deliver(message, connection):
                        result.sent += 1
                    else:
                        result.failed += 1
            finally:
                connection.close()

        record.mark_single_sent(now or timezone.now())

    if result.failed:
        logger.warning(
            "PageHistory %s: %s of %s single notifications refused",
            record_id, result.failed, result.sent + result.failed,
        )
    return result
