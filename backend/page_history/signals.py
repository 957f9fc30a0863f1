from functools import partial

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from pages.models import Page, UserParticipation, GroupParticipation, Comment
from .classifier import CREATE, UPDATE, DESTROY, MutationContext
from .models import PageHistory
from .services import record_history
from .tasks import send_single_notifications


def _actor(instance, default=None):
    return getattr(instance, 'history_actor', None) or default


def _cascaded(origin):
    """True when the instance goes away because its page or its user is being deleted."""
    model = getattr(origin, 'model', None) or type(origin)
    return model is Page or model is get_user_model()


@receiver(post_save, sender=Page)
def page_history_for_page(sender, instance, created, **kwargs):
    action = CREATE if created else UPDATE
    record_history(
        MutationContext.for_page(instance, action, actor=_actor(instance, instance.updated_by))
    )


@receiver(post_save, sender=UserParticipation)
@receiver(post_save, sender=GroupParticipation)
def page_history_for_participation(sender, instance, created, **kwargs):
    action = CREATE if created else UPDATE
    record_history(
        MutationContext.for_participation(instance, action, actor=_actor(instance))
    )


@receiver(post_delete, sender=UserParticipation)
@receiver(post_delete, sender=GroupParticipation)
def page_history_for_revoked_participation(sender, instance, origin=None, **kwargs):
    if _cascaded(origin):
        return
    record_history(
        MutationContext.for_participation(instance, DESTROY, actor=_actor(instance))
    )


@receiver(post_save, sender=Comment)
def page_history_for_comment(sender, instance, created, **kwargs):
    action = CREATE if created else UPDATE
    record_history(
        MutationContext.for_comment(instance, action, actor=_actor(instance))
    )


@receiver(post_delete, sender=Comment)
def page_history_for_destroyed_comment(sender, instance, origin=None, **kwargs):
    if _cascaded(origin):
        return
    record_history(
        MutationContext.for_comment(instance, DESTROY, actor=_actor(instance))
    )


@receiver(post_save, sender=PageHistory)
def queue_single_notifications(sender, instance, created, **kwargs):
    """Hand new records to the worker once the mutation has committed."""
    if not created:
        return
    transaction.on_commit(partial(send_single_notifications.delay, instance.pk))
