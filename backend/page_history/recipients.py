from dataclasses import dataclass, field
from typing import Set

from django.contrib.auth import get_user_model

from .selectors import watcher_ids

User = get_user_model()


@dataclass
class Recipients:
    single: Set = field(default_factory=set)
    digest: Set = field(default_factory=set)

    def __bool__(self):
        return bool(self.single or self.digest)


def resolve_recipients(record) -> Recipients:
    """
    Watchers of the record's page, split by notification preference.

    The actor is never told about their own change, and users who opted
    out ('none') are dropped. For access grants and revokes the subject
    does not matter here, only who watches the page.
    """
    recipients = Recipients()
    if record.page_id is None:
        return recipients

    ids = watcher_ids(record.page_id)
    ids.discard(record.user_id)
    if not ids:
        return recipients

    for user in User.objects.filter(pk__in=ids, is_active=True):
        if user.receive_notifications == 'single':
            recipients.single.add(user)
        elif user.receive_notifications == 'digest':
            recipients.digest.add(user)
    return recipients
