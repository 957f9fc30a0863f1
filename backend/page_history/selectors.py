from django.contrib.auth import get_user_model
from django.db.models import Q

from pages.models import Page, UserParticipation
from .models import PageHistory

User = get_user_model()


def watcher_ids(page):
    return set(
        UserParticipation.objects.filter(page=page, watch=True).values_list('user_id', flat=True)
    )


def watched_page_ids(user):
    return set(
        UserParticipation.objects.filter(user=user, watch=True).values_list('page_id', flat=True)
    )


def digest_recipients():
    return User.objects.filter(receive_notifications='digest', is_active=True).order_by('pk')


def pending_digest_histories(since, until):
    return PageHistory.objects.pending_digest(since, until)


def histories_for_page(page):
    return (
        PageHistory.objects.filter(page=page)
        .select_related('user')
        .order_by('-created_at', '-pk')
    )


def readable_pages(user):
    """Live public pages, plus pages the user created or holds access on."""
    if user.is_staff:
        return Page.objects.all()
    return Page.objects.filter(
        Q(is_public=True, is_deleted=False)
        | Q(created_by=user)
        | Q(user_participations__user=user, user_participations__access__isnull=False)
    ).distinct()
