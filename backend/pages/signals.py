from django.db.models.signals import pre_save
from django.dispatch import receiver

from .models import Page, UserParticipation, GroupParticipation, Comment


@receiver(pre_save, sender=Page)
@receiver(pre_save, sender=UserParticipation)
@receiver(pre_save, sender=GroupParticipation)
@receiver(pre_save, sender=Comment)
def track_previous_values(sender, instance, **kwargs):
    """Snapshot tracked fields so post_save receivers can compute deltas."""
    previous = None
    if instance.pk:
        previous = (
            sender.objects.filter(pk=instance.pk)
            .values(*sender.TRACKED_FIELDS)
            .first()
        )
    instance._previous_values = previous or {}
