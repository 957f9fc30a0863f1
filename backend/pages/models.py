from django.db import models, transaction
from django.conf import settings


class HistoryTrackedModel(models.Model):
    """
    Base for models whose mutations end up in the page history.

    TRACKED_FIELDS are snapshotted in pre_save (see pages.signals) so the
    post_save receivers can look at {field: (old, new)} deltas. Saves and
    deletes run in a transaction together with their receivers, so a receiver
    that raises rolls the mutation back.
    """

    TRACKED_FIELDS = ()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        with transaction.atomic():
            super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        with transaction.atomic():
            return super().delete(*args, **kwargs)

    def get_changes(self):
        previous = getattr(self, '_previous_values', None) or {}
        changes = {}
        for field in self.TRACKED_FIELDS:
            old = previous.get(field)
            new = getattr(self, field)
            if old != new:
                changes[field] = (old, new)
        return changes


class Page(HistoryTrackedModel):
    TRACKED_FIELDS = ('title', 'body', 'is_public', 'is_deleted')

    title = models.CharField(max_length=255)
    body = models.TextField(blank=True, default='')
    is_public = models.BooleanField(default=False)
    # pages are soft deleted so their history stays attached
    is_deleted = models.BooleanField(default=False)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='created_pages',
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name='updated_pages',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['is_deleted', 'updated_at'], name='page_deleted_updated_idx'),
        ]

    def __str__(self):
        return self.title

    @property
    def visibility(self):
        return 'public' if self.is_public else 'private'


class UserParticipation(HistoryTrackedModel):
    """A user's relationship with a page: watching, starring, access"""

    ACCESS_CHOICES = [
        ('view', 'View'),
        ('edit', 'Edit'),
        ('admin', 'Admin'),
    ]
    TRACKED_FIELDS = ('star', 'watch', 'access')

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='page_participations',
    )
    page = models.ForeignKey(
        Page,
        on_delete=models.CASCADE,
        related_name='user_participations',
    )
    watch = models.BooleanField(default=False)
    star = models.BooleanField(default=False)
    access = models.CharField(max_length=10, choices=ACCESS_CHOICES, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ['user', 'page']
        indexes = [
            models.Index(fields=['page', 'watch'], name='participation_watch_idx'),
        ]

    def __str__(self):
        return f"{self.user} on {self.page}"

    @property
    def subject(self):
        return self.user


class GroupParticipation(HistoryTrackedModel):
    """Access of a whole group to a page"""

    ACCESS_CHOICES = UserParticipation.ACCESS_CHOICES
    TRACKED_FIELDS = ('access',)

    group = models.ForeignKey(
        'users.Group',
        on_delete=models.CASCADE,
        related_name='page_participations',
    )
    page = models.ForeignKey(
        Page,
        on_delete=models.CASCADE,
        related_name='group_participations',
    )
    access = models.CharField(max_length=10, choices=ACCESS_CHOICES, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ['group', 'page']

    def __str__(self):
        return f"{self.group} on {self.page}"

    @property
    def subject(self):
        return self.group


class Comment(HistoryTrackedModel):
    TRACKED_FIELDS = ('body',)

    page = models.ForeignKey(
        Page,
        on_delete=models.CASCADE,
        related_name='comments',
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        on_delete=models.SET_NULL,
        related_name='page_comments',
    )
    body = models.TextField()

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"Comment by {self.user} on {self.page}"
