from typing import Optional
from django.db import transaction
from django.contrib.auth import get_user_model

from users.models import Group
from .models import Page, UserParticipation, GroupParticipation, Comment

User = get_user_model()


class PageService:
    """Page mutations. Each one is recorded in the page history."""

    @staticmethod
    @transaction.atomic
    def create_page(
        actor: User,
        title: str,
        body: str = '',
        is_public: bool = False,
        watch: bool = True,
    ) -> Page:
        page = Page(
            title=title,
            body=body,
            is_public=is_public,
            created_by=actor,
            updated_by=actor,
        )
        page.history_actor = actor
        page.save()

        if watch and actor is not None:
            ParticipationService.set_watch(page, actor, True, actor=actor)
        return page

    @staticmethod
    @transaction.atomic
    def update_page(page: Page, actor: User, **fields) -> Page:
        allowed = {'title', 'body', 'is_public'}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update page fields: {', '.join(sorted(unknown))}")

        for name, value in fields.items():
            setattr(page, name, value)
        page.updated_by = actor
        page.history_actor = actor
        page.save()
        return page

    @staticmethod
    def make_public(page: Page, actor: User) -> Page:
        return PageService.update_page(page, actor, is_public=True)

    @staticmethod
    def make_private(page: Page, actor: User) -> Page:
        return PageService.update_page(page, actor, is_public=False)

    @staticmethod
    @transaction.atomic
    def delete_page(page: Page, actor: User) -> Page:
        if page.is_deleted:
            raise ValueError("Page is already deleted")
        page.is_deleted = True
        page.updated_by = actor
        page.history_actor = actor
        page.save()
        return page


class ParticipationService:
    """Watching, starring and access grants on pages"""

    @staticmethod
    def _user_participation(page: Page, user: User) -> UserParticipation:
        participation = UserParticipation.objects.filter(page=page, user=user).first()
        return participation or UserParticipation(page=page, user=user)

    @staticmethod
    @transaction.atomic
    def set_watch(page: Page, user: User, watch: bool, actor: Optional[User] = None) -> UserParticipation:
        participation = ParticipationService._user_participation(page, user)
        participation.watch = watch
        participation.history_actor = actor or user
        participation.save()
        return participation

    @staticmethod
    @transaction.atomic
    def set_star(page: Page, user: User, star: bool, actor: Optional[User] = None) -> UserParticipation:
        participation = ParticipationService._user_participation(page, user)
        participation.star = star
        participation.history_actor = actor or user
        participation.save()
        return participation

    @staticmethod
    @transaction.atomic
    def grant_user_access(page: Page, user: User, access: str, actor: User) -> UserParticipation:
        participation = ParticipationService._user_participation(page, user)
        participation.access = access
        participation.history_actor = actor
        participation.save()
        return participation

    @staticmethod
    @transaction.atomic
    def grant_group_access(page: Page, group: Group, access: str, actor: User) -> GroupParticipation:
        participation = (
            GroupParticipation.objects.filter(page=page, group=group).first()
            or GroupParticipation(page=page, group=group)
        )
        participation.access = access
        participation.history_actor = actor
        participation.save()
        return participation

    @staticmethod
    @transaction.atomic
    def revoke_user_access(page: Page, user: User, actor: User) -> bool:
        participation = UserParticipation.objects.filter(page=page, user=user).first()
        if participation is None:
            return False
        participation.history_actor = actor
        participation.delete()
        return True

    @staticmethod
    @transaction.atomic
    def revoke_group_access(page: Page, group: Group, actor: User) -> bool:
        participation = GroupParticipation.objects.filter(page=page, group=group).first()
        if participation is None:
            return False
        participation.history_actor = actor
        participation.delete()
        return True


class CommentService:

    @staticmethod
    @transaction.atomic
    def add_comment(page: Page, user: User, body: str) -> Comment:
        if not body or not body.strip():
            raise ValueError("Comment body cannot be empty")
        comment = Comment(page=page, user=user, body=body)
        comment.history_actor = user
        comment.save()
        return comment

    @staticmethod
    @transaction.atomic
    def update_comment(comment: Comment, body: str, actor: User) -> Comment:
        if not body or not body.strip():
            raise ValueError("Comment body cannot be empty")
        comment.body = body
        comment.history_actor = actor
        comment.save()
        return comment

    @staticmethod
    @transaction.atomic
    def destroy_comment(comment: Comment, actor: User) -> None:
        comment.history_actor = actor
        comment.delete()
