from django.test import TestCase
from django.contrib.auth import get_user_model

from users.models import Group
from .models import Page, UserParticipation, GroupParticipation, Comment
from .services import PageService, ParticipationService, CommentService

User = get_user_model()


class PageServiceTests(TestCase):
    def setUp(self):
        self.author = User.objects.create_user(
            username='author',
            email='author@example.com',
            password='testpass123'
        )

    def test_create_page_watches_it_for_the_author(self):
        page = PageService.create_page(self.author, 'Onboarding', body='Welcome')

        self.assertEqual(page.created_by, self.author)
        self.assertEqual(page.visibility, 'private')
        participation = UserParticipation.objects.get(page=page, user=self.author)
        self.assertTrue(participation.watch)
        self.assertFalse(participation.star)

    def test_create_page_without_watching(self):
        page = PageService.create_page(self.author, 'Scratch', watch=False)
        self.assertFalse(UserParticipation.objects.filter(page=page).exists())

    def test_update_page_rejects_unknown_fields(self):
        page = PageService.create_page(self.author, 'Onboarding')
        with self.assertRaises(ValueError):
            PageService.update_page(page, self.author, created_by=None)

    def test_make_public_and_private(self):
        page = PageService.create_page(self.author, 'Onboarding')

        PageService.make_public(page, self.author)
        self.assertTrue(Page.objects.get(pk=page.pk).is_public)

        PageService.make_private(page, self.author)
        self.assertFalse(Page.objects.get(pk=page.pk).is_public)

    def test_delete_page_is_soft_and_only_once(self):
        page = PageService.create_page(self.author, 'Onboarding')

        PageService.delete_page(page, self.author)
        page.refresh_from_db()
        self.assertTrue(page.is_deleted)

        with self.assertRaises(ValueError):
            PageService.delete_page(page, self.author)


class ChangeTrackingTests(TestCase):
    def setUp(self):
        self.page = Page.objects.create(title='Draft', body='v1')

    def test_changes_against_stored_values(self):
        page = Page.objects.get(pk=self.page.pk)
        page.title = 'Final'
        page.body = 'v1'
        page._previous_values = {'title': 'Draft', 'body': 'v1', 'is_public': False, 'is_deleted': False}

        self.assertEqual(page.get_changes(), {'title': ('Draft', 'Final')})

    def test_new_instance_compares_against_nothing(self):
        participation = UserParticipation(page=self.page, watch=True)
        participation._previous_values = {}

        # access stays None, so it is not a change
        self.assertEqual(
            participation.get_changes(),
            {'star': (None, False), 'watch': (None, True)},
        )

    def test_pre_save_snapshot(self):
        self.page.title = 'Renamed'
        self.page.save()

        self.assertEqual(self.page._previous_values['title'], 'Draft')
        self.assertEqual(self.page.get_changes(), {'title': ('Draft', 'Renamed')})


class ParticipationServiceTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(
            username='owner',
            email='owner@example.com',
            password='testpass123'
        )
        self.member = User.objects.create_user(
            username='member',
            email='member@example.com',
            password='testpass123'
        )
        self.group = Group.objects.create(name='support', full_name='Support Team')
        self.page = PageService.create_page(self.owner, 'Runbook')

    def test_watch_and_star_share_one_participation(self):
        ParticipationService.set_watch(self.page, self.member, True)
        ParticipationService.set_star(self.page, self.member, True)

        participation = UserParticipation.objects.get(page=self.page, user=self.member)
        self.assertTrue(participation.watch)
        self.assertTrue(participation.star)

    def test_grant_and_revoke_user_access(self):
        ParticipationService.grant_user_access(self.page, self.member, 'edit', actor=self.owner)
        self.assertEqual(
            UserParticipation.objects.get(page=self.page, user=self.member).access, 'edit'
        )

        self.assertTrue(ParticipationService.revoke_user_access(self.page, self.member, actor=self.owner))
        self.assertFalse(ParticipationService.revoke_user_access(self.page, self.member, actor=self.owner))

    def test_grant_and_revoke_group_access(self):
        ParticipationService.grant_group_access(self.page, self.group, 'view', actor=self.owner)
        ParticipationService.grant_group_access(self.page, self.group, 'admin', actor=self.owner)

        participation = GroupParticipation.objects.get(page=self.page, group=self.group)
        self.assertEqual(participation.access, 'admin')
        self.assertEqual(participation.subject, self.group)

        self.assertTrue(ParticipationService.revoke_group_access(self.page, self.group, actor=self.owner))
        self.assertFalse(GroupParticipation.objects.filter(page=self.page).exists())


class CommentServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(
            username='commenter',
            email='commenter@example.com',
            password='testpass123'
        )
        self.page = PageService.create_page(self.user, 'FAQ')

    def test_empty_comments_are_rejected(self):
        with self.assertRaises(ValueError):
            CommentService.add_comment(self.page, self.user, '   ')

        comment = CommentService.add_comment(self.page, self.user, 'Question')
        with self.assertRaises(ValueError):
            CommentService.update_comment(comment, '', actor=self.user)

    def test_comment_lifecycle(self):
        comment = CommentService.add_comment(self.page, self.user, 'Question')
        CommentService.update_comment(comment, 'Better question', actor=self.user)
        self.assertEqual(Comment.objects.get(pk=comment.pk).body, 'Better question')

        CommentService.destroy_comment(comment, actor=self.user)
        self.assertFalse(Comment.objects.filter(page=self.page).exists())
