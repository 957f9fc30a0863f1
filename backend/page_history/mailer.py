"""
Mail glue for page history notifications.

Messages are plain text. Presentation layers render the richer forms from
description_key/description_params; here we only need something a user can
read and a link back to the page.
"""

import logging
import smtplib
from itertools import groupby

from django.conf import settings
from django.core.mail import EmailMessage, get_connection

from .exceptions import MailTransportError

logger = logging.getLogger(__name__)

# refusals that only concern the message at hand
RECIPIENT_ERRORS = (smtplib.SMTPRecipientsRefused, smtplib.SMTPDataError)
# the message itself cannot be built: bad headers (BadHeaderError), unencodable text
MESSAGE_ERRORS = (ValueError,)


def paranoid_emails():
    return getattr(settings, 'PAGE_HISTORY_PARANOID_EMAILS', False)


def one_line(text):
    return " ".join((text or "").split())


def page_url(page_id):
    site_url = getattr(settings, 'PAGE_HISTORY_SITE_URL', '').rstrip('/')
    return f"{site_url}/pages/{page_id}/"


def describe(record):
    line = f"{record.user_name}: {record.get_event_type_display()}"
    if record.item_type_id:
        line += f" ({record.item_name})"
    details = record.details or {}
    if 'from' in details or 'to' in details:
        line += f" from \"{details.get('from', '')}\" to \"{details.get('to', '')}\""
    if details.get('access'):
        line += f" [{details['access']}]"
    return line


def single_notification(user, record) -> EmailMessage:
    page = record.page
    if paranoid_emails():
        subject = "A page you watch was updated"
        body = f"There is a new update on a page you watch:\n\n{page_url(page.pk)}\n"
    else:
        subject = f"{one_line(page.title)}: {record.get_event_type_display()}"
        body = f"{describe(record)}\n\n{page_url(page.pk)}\n"
    return EmailMessage(
        subject=subject,
        body=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[user.email],
    )


def digest_notification(user, histories) -> EmailMessage:
    """histories must be ordered by page, then creation time."""
    sections = []
    for page_id, page_histories in groupby(histories, key=lambda h: h.page_id):
        page_histories = list(page_histories)
        if paranoid_emails():
            sections.append(f"{len(page_histories)} update(s)\n{page_url(page_id)}")
            continue
        lines = [page_histories[0].page.title, page_url(page_id)]
        for history in page_histories:
            lines.append(f"  {history.created_at:%H:%M} {describe(history)}")
        sections.append("\n".join(lines))

    return EmailMessage(
        subject="Daily digest of page updates",
        body="Updates on pages you watch:\n\n" + "\n\n".join(sections) + "\n",
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[user.email],
    )


def open_connection():
    """Open one transport connection for a batch of messages."""
    connection = get_connection(fail_silently=False)
    try:
        connection.open()
    except OSError as e:
        raise MailTransportError(f"Could not open mail connection: {e}") from e
    return connection


def deliver(message, connection) -> bool:
    """
    Send a message over an open connection.

    Returns False when the transport refused this message only; raises
    MailTransportError when the transport itself failed.
    """
    message.connection = connection
    try:
        message.send()
    except RECIPIENT_ERRORS as e:
        logger.warning("Mail to %s refused: %s", ", ".join(message.to), e)
        return False
    except MESSAGE_ERRORS as e:
        logger.warning("Could not build mail to %s: %s", ", ".join(message.to), e)
        return False
    except OSError as e:
        raise MailTransportError(f"Mail transport failed: {e}") from e
    return True
