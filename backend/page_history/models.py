from django.db import models
from django.conf import settings
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.utils import timezone

from .exceptions import ImmutableEventType

UNKNOWN_NAME = "Unknown/Deleted"


class EventType(models.TextChoices):
    PAGE_CREATED = 'page_created', 'Page created'
    DELETED = 'deleted', 'Deleted'
    UPDATED_CONTENT = 'updated_content', 'Updated content'
    CHANGE_TITLE = 'change_title', 'Changed title'
    MAKE_PUBLIC = 'make_public', 'Made public'
    MAKE_PRIVATE = 'make_private', 'Made private'
    ADD_STAR = 'add_star', 'Added star'
    REMOVE_STAR = 'remove_star', 'Removed star'
    START_WATCHING = 'start_watching', 'Started watching'
    STOP_WATCHING = 'stop_watching', 'Stopped watching'
    GRANT_GROUP_ACCESS = 'grant_group_access', 'Granted group access'
    GRANT_USER_ACCESS = 'grant_user_access', 'Granted user access'
    REVOKED_GROUP_ACCESS = 'revoked_group_access', 'Revoked group access'
    REVOKED_USER_ACCESS = 'revoked_user_access', 'Revoked user access'
    ADD_COMMENT = 'add_comment', 'Added comment'
    UPDATE_COMMENT = 'update_comment', 'Updated comment'
    DESTROY_COMMENT = 'destroy_comment', 'Destroyed comment'


# translation keys that do not follow the page_history_<event_type> pattern
DESCRIPTION_KEYS = {
    EventType.PAGE_CREATED: 'page_history_user_created_page',
    EventType.DELETED: 'page_history_deleted_page',
    EventType.ADD_COMMENT: 'page_history_added_comment',
    EventType.UPDATE_COMMENT: 'page_history_updated_comment',
    EventType.DESTROY_COMMENT: 'page_history_destroyed_comment',
}

DETAILS_KEYS = {
    EventType.CHANGE_TITLE: 'page_history_details_change_title',
}


class PageHistoryQuerySet(models.QuerySet):

    def pending_single(self):
        return self.filter(single_sent_at__isnull=True)

    def pending_digest(self, since, until):
        """Records not yet digested, created in [since, until)."""
        return self.filter(
            digest_sent_at__isnull=True,
            page__isnull=False,
            created_at__gte=since,
            created_at__lt=until,
        )

    def without_page(self):
        return self.filter(page__isnull=True)


class PageHistory(models.Model):
    """
    One classified event on a page.

    Records are append only. The only updates allowed after creation are
    the two notification stamps, each set at most once.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='page_histories',
        help_text="User who caused the change",
    )
    # nullable only so a hard deleted page leaves something to discard
    page = models.ForeignKey(
        'pages.Page',
        null=True,
        on_delete=models.SET_NULL,
        related_name='histories',
    )

    # the group, user or comment the event is about
    item_type = models.ForeignKey(
        ContentType,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    item_id = models.PositiveBigIntegerField(null=True, blank=True)
    item = GenericForeignKey('item_type', 'item_id')

    event_type = models.CharField(max_length=40, choices=EventType.choices)
    details = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    single_sent_at = models.DateTimeField(null=True, blank=True)
    digest_sent_at = models.DateTimeField(null=True, blank=True)

    objects = PageHistoryQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        verbose_name_plural = 'page histories'
        indexes = [
            models.Index(fields=['page', 'created_at'], name='history_page_created_idx'),
            models.Index(fields=['digest_sent_at', 'created_at'], name='history_digest_pending_idx'),
        ]

    def __str__(self):
        return f"[{self.event_type}] page={self.page_id} user={self.user_id}"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_event_type = instance.__dict__.get('event_type')
        return instance

    def save(self, *args, **kwargs):
        loaded = getattr(self, '_loaded_event_type', None)
        if not self._state.adding and loaded is not None and loaded != self.event_type:
            raise ImmutableEventType(
                f"PageHistory {self.pk} cannot be reclassified from {loaded} to {self.event_type}"
            )
        super().save(*args, **kwargs)
        self._loaded_event_type = self.event_type

    def mark_single_sent(self, when=None) -> bool:
        """Stamp single_sent_at unless already stamped. Returns True if this call stamped it."""
        when = when or timezone.now()
        updated = PageHistory.objects.filter(
            pk=self.pk, single_sent_at__isnull=True
        ).update(single_sent_at=when)
        if updated:
            self.single_sent_at = when
        return bool(updated)

    # Description data for presentation layers

    @property
    def description_key(self):
        key = DESCRIPTION_KEYS.get(self.event_type)
        if key:
            return key
        key = f'page_history_{self.event_type}'
        if self.event_type in (EventType.GRANT_GROUP_ACCESS, EventType.GRANT_USER_ACCESS):
            key = key.replace('grant', 'granted')
            access = self.access
            if access:
                key = key.replace('_access', f'_{access}_access')
        return key

    @property
    def details_key(self):
        return DETAILS_KEYS.get(self.event_type)

    @property
    def description_params(self):
        return {'user_name': self.user_name, 'item_name': self.item_name}

    @property
    def access(self):
        return (self.details or {}).get('access')

    @property
    def user_name(self):
        if self.user is None:
            return UNKNOWN_NAME
        return self.user.display_name

    @property
    def item_name(self):
        item = self.item
        if item is None:
            return UNKNOWN_NAME
        return getattr(item, 'display_name', None) or UNKNOWN_NAME
