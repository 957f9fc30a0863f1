import importlib
import os
import smtplib
from datetime import timedelta
from io import StringIO
from unittest.mock import Mock, patch

from celery.signals import worker_shutting_down
from django.contrib.auth import get_user_model
from django.core import mail
from django.core.mail import EmailMessage
from django.core.cache import cache
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from pages.models import Page, UserParticipation, GroupParticipation, Comment
from pages.services import PageService, ParticipationService, CommentService
from users.models import Group
from . import mailer
from .classifier import (
    MutationContext, PARTICIPATION, UPDATE, access_from_participation, classify,
)
from .digest import DailyDigest
from .exceptions import ImmutableEventType, MailTransportError, UnmappedAccessLevel
from .models import EventType, PageHistory
from .recipients import resolve_recipients
from .services import dispatch_single_notifications
from .tasks import digest_stop, send_daily_digest, send_single_notifications

User = get_user_model()


def make_user(username, receive_notifications='single'):
    return User.objects.create_user(
        username=username,
        email=f'{username}@example.com',
        password='testpass123',
        receive_notifications=receive_notifications,
    )


class ClassifierTests(TestCase):
    def setUp(self):
        self.owner = make_user('owner')
        self.other = make_user('other')
        self.page = PageService.create_page(self.owner, 'Meeting notes', body='Agenda', watch=False)

    def events(self, **filters):
        return list(
            PageHistory.objects.filter(page=self.page, **filters)
            .order_by('created_at', 'pk')
            .values_list('event_type', flat=True)
        )

    def test_page_created(self):
        record = PageHistory.objects.get(page=self.page)
        self.assertEqual(record.event_type, EventType.PAGE_CREATED)
        self.assertEqual(record.user, self.owner)
        self.assertEqual(record.details, {})

    def test_watch_flag_transitions(self):
        ParticipationService.set_watch(self.page, self.other, True)
        self.assertEqual(self.events(user=self.other), [EventType.START_WATCHING])

        ParticipationService.set_watch(self.page, self.other, False)
        self.assertEqual(
            self.events(user=self.other),
            [EventType.START_WATCHING, EventType.STOP_WATCHING],
        )

        # saving without a tracked change records nothing
        participation = UserParticipation.objects.get(page=self.page, user=self.other)
        participation.save()
        self.assertEqual(len(self.events(user=self.other)), 2)

    def test_star_flag_transitions(self):
        ParticipationService.set_star(self.page, self.other, True)
        ParticipationService.set_star(self.page, self.other, False)
        self.assertEqual(
            self.events(user=self.other),
            [EventType.ADD_STAR, EventType.REMOVE_STAR],
        )

    def test_grant_user_access_then_revoke(self):
        ParticipationService.grant_user_access(self.page, self.other, 'edit', actor=self.owner)

        grant = PageHistory.objects.get(page=self.page, event_type=EventType.GRANT_USER_ACCESS)
        self.assertEqual(grant.details['access'], 'write')
        self.assertEqual(grant.user, self.owner)
        self.assertEqual(grant.item, self.other)

        ParticipationService.revoke_user_access(self.page, self.other, actor=self.owner)

        revoke = PageHistory.objects.get(page=self.page, event_type=EventType.REVOKED_USER_ACCESS)
        self.assertEqual(revoke.item, self.other)
        self.assertFalse(UserParticipation.objects.filter(page=self.page, user=self.other).exists())

    def test_grant_group_access_then_revoke(self):
        group = Group.objects.create(name='editors', full_name='Editorial Team')

        ParticipationService.grant_group_access(self.page, group, 'admin', actor=self.owner)
        ParticipationService.grant_group_access(self.page, group, 'view', actor=self.owner)
        ParticipationService.revoke_group_access(self.page, group, actor=self.owner)

        grants = PageHistory.objects.filter(
            page=self.page, event_type=EventType.GRANT_GROUP_ACCESS
        ).order_by('pk')
        self.assertEqual([g.details['access'] for g in grants], ['full', 'read'])
        self.assertEqual(grants[0].item, group)

        revoke = PageHistory.objects.get(page=self.page, event_type=EventType.REVOKED_GROUP_ACCESS)
        self.assertEqual(revoke.item, group)

    def test_unmapped_access_rejects_the_mutation(self):
        with self.assertRaises(UnmappedAccessLevel):
            ParticipationService.grant_user_access(self.page, self.other, 'owner', actor=self.owner)

        self.assertFalse(UserParticipation.objects.filter(page=self.page, user=self.other).exists())
        self.assertFalse(
            PageHistory.objects.filter(event_type=EventType.GRANT_USER_ACCESS).exists()
        )

    def test_unmapped_access_keeps_previous_access(self):
        ParticipationService.grant_user_access(self.page, self.other, 'view', actor=self.owner)

        with self.assertRaises(UnmappedAccessLevel):
            ParticipationService.grant_user_access(self.page, self.other, 'superuser', actor=self.owner)

        participation = UserParticipation.objects.get(page=self.page, user=self.other)
        self.assertEqual(participation.access, 'view')
        self.assertEqual(
            PageHistory.objects.filter(event_type=EventType.GRANT_USER_ACCESS).count(), 1
        )

    def test_access_translation(self):
        self.assertEqual(access_from_participation('view'), 'read')
        self.assertEqual(access_from_participation('edit'), 'write')
        self.assertEqual(access_from_participation('admin'), 'full')
        for symbol in ('read', 'owner', '', None):
            with self.assertRaises(UnmappedAccessLevel):
                access_from_participation(symbol)

    def test_first_matching_variant_wins(self):
        UserParticipation.objects.create(
            user=self.other, page=self.page, star=True, watch=True, access='edit'
        )
        self.assertEqual(
            self.events(event_type__in=[
                EventType.ADD_STAR, EventType.START_WATCHING, EventType.GRANT_USER_ACCESS,
            ]),
            [EventType.ADD_STAR],
        )

    def test_classify_without_match_returns_none(self):
        participation = UserParticipation(user=self.other, page=self.page)
        context = MutationContext(
            kind=PARTICIPATION,
            action=UPDATE,
            entity=participation,
            page=self.page,
            changes={'updated_at': (None, timezone.now())},
        )
        self.assertIsNone(classify(context))

    def test_classify_unknown_kind(self):
        context = MutationContext(kind='attachment', action=UPDATE, entity=None, page=self.page)
        with self.assertRaises(ValueError):
            classify(context)

    def test_page_title_change_captures_old_and_new(self):
        PageService.update_page(self.page, self.owner, title='Board meeting notes', body='New agenda')

        record = PageHistory.objects.get(page=self.page, event_type=EventType.CHANGE_TITLE)
        self.assertEqual(record.details, {'from': 'Meeting notes', 'to': 'Board meeting notes'})
        # title wins over the simultaneous body change
        self.assertFalse(
            PageHistory.objects.filter(page=self.page, event_type=EventType.UPDATED_CONTENT).exists()
        )

    def test_page_lifecycle(self):
        PageService.update_page(self.page, self.owner, body='Minutes')
        PageService.make_public(self.page, self.owner)
        PageService.make_private(self.page, self.owner)
        PageService.delete_page(self.page, self.owner)

        self.assertEqual(
            self.events(),
            [
                EventType.PAGE_CREATED,
                EventType.UPDATED_CONTENT,
                EventType.MAKE_PUBLIC,
                EventType.MAKE_PRIVATE,
                EventType.DELETED,
            ],
        )

    def test_page_touching_variants_move_updated_at(self):
        old = timezone.now() - timedelta(days=3)
        Page.objects.filter(pk=self.page.pk).update(updated_at=old)

        ParticipationService.set_star(self.page, self.other, True)
        self.page.refresh_from_db()
        self.assertEqual(self.page.updated_at, old)

        CommentService.add_comment(self.page, self.other, 'Looks good')
        record = PageHistory.objects.get(page=self.page, event_type=EventType.ADD_COMMENT)
        self.page.refresh_from_db()
        self.assertEqual(self.page.updated_at, record.created_at)

    def test_comment_lifecycle(self):
        comment = CommentService.add_comment(self.page, self.other, 'First draft')
        CommentService.update_comment(comment, 'First draft', actor=self.other)
        CommentService.update_comment(comment, 'Second draft', actor=self.other)
        comment_id = comment.pk
        CommentService.destroy_comment(comment, actor=self.owner)

        records = PageHistory.objects.filter(
            page=self.page, event_type__in=[
                EventType.ADD_COMMENT, EventType.UPDATE_COMMENT, EventType.DESTROY_COMMENT,
            ],
        ).order_by('pk')
        self.assertEqual(
            [r.event_type for r in records],
            [EventType.ADD_COMMENT, EventType.UPDATE_COMMENT, EventType.DESTROY_COMMENT],
        )
        self.assertTrue(all(r.item_id == comment_id for r in records))
        self.assertEqual(records[2].user, self.owner)
        self.assertFalse(Comment.objects.filter(pk=comment_id).exists())

    def test_hard_page_delete_leaves_pageless_records_only(self):
        ParticipationService.grant_user_access(self.page, self.other, 'edit', actor=self.owner)
        CommentService.add_comment(self.page, self.other, 'Hello')
        GroupParticipation.objects.create(
            group=Group.objects.create(name='team'), page=self.page, access='view'
        )
        count = PageHistory.objects.count()

        self.page.delete()

        self.assertEqual(PageHistory.objects.count(), count)
        self.assertEqual(PageHistory.objects.filter(page__isnull=True).count(), count)
        self.assertFalse(
            PageHistory.objects.filter(event_type__in=[
                EventType.REVOKED_USER_ACCESS,
                EventType.REVOKED_GROUP_ACCESS,
                EventType.DESTROY_COMMENT,
            ]).exists()
        )


class PageHistoryModelTests(TestCase):
    def setUp(self):
        self.owner = make_user('owner')
        self.page = Page.objects.create(title='Roadmap')

    def test_event_type_is_immutable(self):
        record = PageHistory.objects.create(
            user=self.owner, page=self.page, event_type=EventType.UPDATED_CONTENT
        )
        record.event_type = EventType.DELETED
        with self.assertRaises(ImmutableEventType):
            record.save()

        loaded = PageHistory.objects.get(pk=record.pk)
        loaded.event_type = EventType.MAKE_PUBLIC
        with self.assertRaises(ImmutableEventType):
            loaded.save()
        self.assertEqual(
            PageHistory.objects.get(pk=record.pk).event_type, EventType.UPDATED_CONTENT
        )

    def test_single_stamp_is_set_once(self):
        record = PageHistory.objects.create(
            user=self.owner, page=self.page, event_type=EventType.UPDATED_CONTENT
        )
        first = timezone.now()

        self.assertTrue(record.mark_single_sent(first))
        self.assertFalse(record.mark_single_sent(first + timedelta(hours=1)))

        record.refresh_from_db()
        self.assertEqual(record.single_sent_at, first)

    def test_description_keys(self):
        other = make_user('other')
        cases = [
            (EventType.PAGE_CREATED, {}, 'page_history_user_created_page'),
            (EventType.DELETED, {}, 'page_history_deleted_page'),
            (EventType.ADD_STAR, {}, 'page_history_add_star'),
            (EventType.ADD_COMMENT, {}, 'page_history_added_comment'),
            (EventType.DESTROY_COMMENT, {}, 'page_history_destroyed_comment'),
            (EventType.GRANT_USER_ACCESS, {'access': 'write'}, 'page_history_granted_user_write_access'),
            (EventType.GRANT_GROUP_ACCESS, {'access': 'full'}, 'page_history_granted_group_full_access'),
            (EventType.GRANT_USER_ACCESS, {}, 'page_history_granted_user_access'),
        ]
        for event_type, details, key in cases:
            record = PageHistory(user=self.owner, page=self.page, event_type=event_type, details=details)
            self.assertEqual(record.description_key, key)

        record = PageHistory(
            user=self.owner, page=self.page, event_type=EventType.GRANT_USER_ACCESS, item=other
        )
        self.assertEqual(record.description_params, {'user_name': 'owner', 'item_name': 'other'})

    def test_missing_actor_and_details_are_unknown(self):
        record = PageHistory.objects.create(
            user=None, page=self.page, event_type=EventType.CHANGE_TITLE, details={}
        )
        self.assertEqual(record.user_name, 'Unknown/Deleted')
        self.assertEqual(record.item_name, 'Unknown/Deleted')
        self.assertIsNone(record.access)
        self.assertEqual(record.details_key, 'page_history_details_change_title')
        self.assertIn('Unknown/Deleted', mailer.describe(record))


class RecipientResolverTests(TestCase):
    def setUp(self):
        self.actor = make_user('actor')
        self.single_user = make_user('single_user')
        self.digest_user = make_user('digest_user', 'digest')
        self.quiet_user = make_user('quiet_user', 'none')
        self.bystander = make_user('bystander')
        self.page = Page.objects.create(title='Handbook')

        for user in (self.actor, self.single_user, self.digest_user, self.quiet_user):
            UserParticipation.objects.create(user=user, page=self.page, watch=True)
        UserParticipation.objects.create(user=self.bystander, page=self.page, star=True)

    def test_partition_by_preference(self):
        record = PageHistory.objects.create(
            user=self.actor, page=self.page, event_type=EventType.UPDATED_CONTENT
        )
        recipients = resolve_recipients(record)

        self.assertEqual(recipients.single, {self.single_user})
        self.assertEqual(recipients.digest, {self.digest_user})
        self.assertNotIn(self.actor, recipients.single | recipients.digest)
        self.assertNotIn(self.quiet_user, recipients.single | recipients.digest)
        self.assertNotIn(self.bystander, recipients.single | recipients.digest)

    def test_subject_does_not_change_recipients(self):
        group = Group.objects.create(name='legal')
        record = PageHistory.objects.create(
            user=self.actor,
            page=self.page,
            event_type=EventType.GRANT_GROUP_ACCESS,
            item=group,
            details={'access': 'read'},
        )
        user_record = PageHistory.objects.create(
            user=self.actor,
            page=self.page,
            event_type=EventType.REVOKED_USER_ACCESS,
            item=self.bystander,
        )
        self.assertEqual(resolve_recipients(record).single, {self.single_user})
        self.assertEqual(resolve_recipients(user_record).single, {self.single_user})

    def test_actor_without_account_notifies_all_watchers(self):
        record = PageHistory.objects.create(
            user=None, page=self.page, event_type=EventType.MAKE_PUBLIC
        )
        self.assertEqual(resolve_recipients(record).single, {self.actor, self.single_user})

    def test_record_without_page_has_no_recipients(self):
        record = PageHistory.objects.create(
            user=self.actor, page=None, event_type=EventType.DELETED
        )
        self.assertFalse(resolve_recipients(record))


class SingleDispatchTests(TestCase):
    def setUp(self):
        self.actor = make_user('actor')
        self.reader = make_user('reader')
        self.digest_user = make_user('digest_user', 'digest')
        self.page = Page.objects.create(title='Quarterly plan')
        for user in (self.actor, self.reader, self.digest_user):
            UserParticipation.objects.create(user=user, page=self.page, watch=True)
        self.record = PageHistory.objects.create(
            user=self.actor,
            page=self.page,
            event_type=EventType.CHANGE_TITLE,
            details={'from': 'Plan', 'to': 'Quarterly plan'},
        )

    def test_sends_to_single_recipients_and_stamps(self):
        result = dispatch_single_notifications(self.record.pk)

        self.assertEqual(result.status, 'sent')
        self.assertEqual(result.sent, 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['reader@example.com'])
        self.assertIn('Quarterly plan', mail.outbox[0].subject)
        self.assertIn('/pages/%s/' % self.page.pk, mail.outbox[0].body)

        self.record.refresh_from_db()
        self.assertIsNotNone(self.record.single_sent_at)
        self.assertIsNone(self.record.digest_sent_at)

    def test_second_dispatch_is_a_noop(self):
        dispatch_single_notifications(self.record.pk)
        self.record.refresh_from_db()
        stamped_at = self.record.single_sent_at

        result = dispatch_single_notifications(self.record.pk)

        self.assertEqual(result.status, 'already_sent')
        self.assertEqual(len(mail.outbox), 1)
        self.record.refresh_from_db()
        self.assertEqual(self.record.single_sent_at, stamped_at)

    def test_record_without_page_is_discarded(self):
        self.page.delete()

        result = dispatch_single_notifications(self.record.pk)

        self.assertEqual(result.status, 'discarded')
        self.assertFalse(PageHistory.objects.filter(pk=self.record.pk).exists())
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_record(self):
        self.assertEqual(dispatch_single_notifications(999999).status, 'missing')

    def test_no_single_recipients_still_stamps(self):
        self.reader.receive_notifications = 'none'
        self.reader.save()

        result = dispatch_single_notifications(self.record.pk)

        self.assertEqual(result.sent, 0)
        self.assertEqual(len(mail.outbox), 0)
        self.record.refresh_from_db()
        self.assertIsNotNone(self.record.single_sent_at)

    def test_recipient_refusal_does_not_block_the_batch(self):
        second = make_user('second_reader')
        UserParticipation.objects.create(user=second, page=self.page, watch=True)

        with patch('page_history.mailer.deliver', side_effect=[False, True]) as deliver:
            result = dispatch_single_notifications(self.record.pk)

        self.assertEqual(deliver.call_count, 2)
        self.assertEqual((result.sent, result.failed), (1, 1))
        self.record.refresh_from_db()
        self.assertIsNotNone(self.record.single_sent_at)

    def test_transport_failure_leaves_record_unstamped(self):
        with patch('page_history.mailer.open_connection', side_effect=MailTransportError('down')):
            with self.assertRaises(MailTransportError):
                dispatch_single_notifications(self.record.pk)

        self.record.refresh_from_db()
        self.assertIsNone(self.record.single_sent_at)

        # the retry goes through once the transport is back
        self.assertEqual(dispatch_single_notifications(self.record.pk).status, 'sent')
        self.assertEqual(len(mail.outbox), 1)

    @override_settings(PAGE_HISTORY_PARANOID_EMAILS=True)
    def test_paranoid_emails_leave_out_page_content(self):
        dispatch_single_notifications(self.record.pk)

        message = mail.outbox[0]
        self.assertNotIn('Quarterly plan', message.subject)
        self.assertNotIn('Quarterly plan', message.body)
        self.assertNotIn('actor', message.body)
        self.assertIn('/pages/%s/' % self.page.pk, message.body)

    def test_multiline_title_is_flattened_in_the_subject(self):
        PageService.update_page(self.page, self.actor, title='Plan\nQ3')

        result = dispatch_single_notifications(self.record.pk)

        self.assertEqual((result.sent, result.failed), (1, 0))
        self.assertEqual(mail.outbox[0].subject, 'Plan Q3: Changed title')
        self.record.refresh_from_db()
        self.assertIsNotNone(self.record.single_sent_at)

    def test_task_runs_the_dispatcher(self):
        result = send_single_notifications(self.record.pk)

        self.assertEqual(result['status'], 'sent')
        self.assertEqual(result['record_id'], self.record.pk)
        self.assertEqual(len(mail.outbox), 1)


class MailerTests(TestCase):
    def test_deliver_reports_recipient_refusal(self):
        message = Mock(to=['someone@example.com'])
        message.send.side_effect = smtplib.SMTPRecipientsRefused({'someone@example.com': (550, b'no')})

        self.assertFalse(mailer.deliver(message, connection=Mock()))

    def test_deliver_raises_on_transport_failure(self):
        message = Mock(to=['someone@example.com'])
        message.send.side_effect = smtplib.SMTPServerDisconnected('gone')

        with self.assertRaises(MailTransportError):
            mailer.deliver(message, connection=Mock())

    def test_deliver_reports_unbuildable_message(self):
        message = EmailMessage(
            subject='Broken\nsubject',
            body='Body',
            from_email='notifications@example.com',
            to=['someone@example.com'],
        )
        connection = mailer.open_connection()
        try:
            self.assertFalse(mailer.deliver(message, connection))
        finally:
            connection.close()
        self.assertEqual(len(mail.outbox), 0)

    def test_open_connection_failure_is_a_transport_error(self):
        connection = Mock()
        connection.open.side_effect = ConnectionRefusedError('refused')

        with patch('page_history.mailer.get_connection', return_value=connection):
            with self.assertRaises(MailTransportError):
                mailer.open_connection()


class DispatchQueueTests(TestCase):
    def setUp(self):
        self.owner = make_user('owner')
        self.other = make_user('other')
        self.page = PageService.create_page(self.owner, 'Launch checklist', watch=False)

    def test_new_record_is_queued_after_commit(self):
        with patch('page_history.signals.send_single_notifications') as task:
            with self.captureOnCommitCallbacks(execute=True):
                PageService.update_page(self.page, self.owner, body='Step one')

        record = PageHistory.objects.get(event_type=EventType.UPDATED_CONTENT)
        task.delay.assert_called_once_with(record.pk)

    def test_rolled_back_mutation_queues_nothing(self):
        with patch('page_history.signals.send_single_notifications') as task:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                with self.assertRaises(UnmappedAccessLevel):
                    ParticipationService.grant_user_access(
                        self.page, self.other, 'root', actor=self.owner
                    )

        self.assertEqual(len(callbacks), 0)
        task.delay.assert_not_called()

    def test_stamp_update_does_not_requeue(self):
        record = PageHistory.objects.get(page=self.page)
        with patch('page_history.signals.send_single_notifications') as task:
            with self.captureOnCommitCallbacks(execute=True):
                record.mark_single_sent()
                record.save()

        task.delay.assert_not_called()


class DailyDigestTests(TestCase):
    def setUp(self):
        self.now = timezone.now()
        self.yesterday = self.now - timedelta(hours=5)
        self.author = make_user('author')
        self.readers = [make_user(f'reader{i}', 'digest') for i in range(3)]
        self.pages = [Page.objects.create(title=f'Page {i}') for i in range(3)]
        for reader, page in zip(self.readers, self.pages):
            UserParticipation.objects.create(user=reader, page=page, watch=True)

        # setup noise (page created, started watching) belongs to an older day
        PageHistory.objects.update(created_at=self.now - timedelta(days=3))

        self.records = [self.history(page) for page in self.pages]
        self.sleep = Mock()

    def tearDown(self):
        cache.clear()

    def history(self, page, created_at=None, user=None, event_type=EventType.UPDATED_CONTENT):
        return PageHistory.objects.create(
            user=user or self.author,
            page=page,
            event_type=event_type,
            created_at=created_at or self.yesterday,
        )

    def digest(self, **kwargs):
        kwargs.setdefault('throttle', 0)
        kwargs.setdefault('sleep', self.sleep)
        return DailyDigest(**kwargs)

    def test_one_digest_per_recipient_then_nothing(self):
        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.sent, 3)
        self.assertEqual(len(mail.outbox), 3)
        self.assertEqual(
            sorted(m.to[0] for m in mail.outbox),
            ['reader0@example.com', 'reader1@example.com', 'reader2@example.com'],
        )
        for record in self.records:
            record.refresh_from_db()
            self.assertEqual(record.digest_sent_at, self.now)
            self.assertIsNone(record.single_sent_at)

        second = self.digest().deliver_all(now=self.now)
        self.assertEqual(second.sent, 0)
        self.assertEqual(len(mail.outbox), 3)

    def test_fixed_pause_between_recipients(self):
        self.digest(throttle=1.5).deliver_all(now=self.now)

        self.assertEqual(self.sleep.call_count, 2)
        self.sleep.assert_called_with(1.5)

    def test_every_selected_record_is_stamped(self):
        unwatched = Page.objects.create(title='Nobody watches this')
        PageHistory.objects.filter(page=unwatched).update(created_at=self.now - timedelta(days=3))
        orphan = self.history(unwatched)
        idle = make_user('idle', 'digest')

        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.stamped, 4)
        orphan.refresh_from_db()
        self.assertEqual(orphan.digest_sent_at, self.now)
        self.assertNotIn(idle.email, [m.to[0] for m in mail.outbox])

    def test_window_is_the_trailing_day(self):
        old = self.history(self.pages[0], created_at=self.now - timedelta(days=1, minutes=1))
        future = self.history(self.pages[0], created_at=self.now + timedelta(minutes=1))

        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.considered, 3)
        for record in (old, future):
            record.refresh_from_db()
            self.assertIsNone(record.digest_sent_at)

    def test_histories_grouped_by_page_in_time_order(self):
        reader = self.readers[0]
        UserParticipation.objects.create(user=reader, page=self.pages[1], watch=True)
        PageHistory.objects.filter(event_type=EventType.START_WATCHING).update(
            created_at=self.now - timedelta(days=3)
        )
        late = self.history(self.pages[0], created_at=self.now - timedelta(hours=1))
        early = self.history(self.pages[1], created_at=self.now - timedelta(hours=10))

        with patch('page_history.mailer.digest_notification', wraps=mailer.digest_notification) as build:
            self.digest().deliver_all(now=self.now)

        histories = next(c.args[1] for c in build.call_args_list if c.args[0] == reader)
        self.assertEqual(
            [h.pk for h in histories],
            [self.records[0].pk, late.pk, early.pk, self.records[1].pk],
        )

    def test_own_changes_are_left_out(self):
        reader = self.readers[0]
        PageHistory.objects.filter(pk=self.records[0].pk).delete()
        self.history(self.pages[0], user=reader)

        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.sent, 2)
        self.assertNotIn(reader.email, [m.to[0] for m in mail.outbox])

    def test_preferences_other_than_digest_get_nothing(self):
        self.readers[0].receive_notifications = 'single'
        self.readers[0].save()
        self.readers[1].receive_notifications = 'none'
        self.readers[1].save()

        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.sent, 1)
        self.assertEqual(mail.outbox[0].to, ['reader2@example.com'])

    def test_pageless_records_are_discarded(self):
        orphan = PageHistory.objects.create(
            user=self.author, page=None, event_type=EventType.DELETED, created_at=self.yesterday
        )

        self.digest().deliver_all(now=self.now)

        self.assertFalse(PageHistory.objects.filter(pk=orphan.pk).exists())

    def test_overlapping_run_is_refused(self):
        cache.add(DailyDigest.LOCK_KEY, 'another-run', 60)

        result = self.digest().deliver_all(now=self.now)

        self.assertEqual(result.status, 'locked')
        self.assertEqual(len(mail.outbox), 0)
        self.assertFalse(PageHistory.objects.filter(digest_sent_at__isnull=False).exists())

    def test_lock_is_released_after_the_run(self):
        self.digest().deliver_all(now=self.now)
        self.assertIsNone(cache.get(DailyDigest.LOCK_KEY))

    def test_graceful_stop_between_recipients(self):
        should_stop = Mock(side_effect=[False, True])

        result = self.digest().deliver_all(now=self.now, should_stop=should_stop)

        self.assertEqual(result.status, 'interrupted')
        self.assertEqual(result.sent, 1)
        self.assertEqual(result.unprocessed, 2)
        self.assertEqual(len(mail.outbox), 1)
        # only what went out is marked; the rest stays pending
        self.assertEqual(
            list(PageHistory.objects.filter(digest_sent_at=self.now).values_list('pk', flat=True)),
            [self.records[0].pk],
        )

    def test_run_time_bound(self):
        clock = Mock(side_effect=[0, 5, 11, 11])

        result = self.digest(max_runtime=10, clock=clock).deliver_all(now=self.now)

        self.assertEqual(result.status, 'timed_out')
        self.assertEqual(result.sent, 1)

    def test_refused_recipient_does_not_stop_the_run(self):
        with patch.object(DailyDigest, '_send', side_effect=[True, False, True]):
            result = self.digest().deliver_all(now=self.now)

        self.assertEqual((result.sent, result.failed), (2, 1))
        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.stamped, 3)

    def test_transport_failure_aborts_after_marking_what_went_out(self):
        with patch.object(DailyDigest, '_send', side_effect=[True, MailTransportError('down')]):
            with self.assertRaises(MailTransportError):
                self.digest().deliver_all(now=self.now)

        stamped = PageHistory.objects.filter(digest_sent_at__isnull=False)
        self.assertEqual(list(stamped.values_list('pk', flat=True)), [self.records[0].pk])
        self.assertIsNone(cache.get(DailyDigest.LOCK_KEY))

    def test_dry_run_changes_nothing(self):
        result = self.digest().deliver_all(now=self.now, dry_run=True)

        self.assertEqual(len(result.planned), 3)
        self.assertEqual(len(mail.outbox), 0)
        self.assertFalse(PageHistory.objects.filter(digest_sent_at__isnull=False).exists())

    @override_settings(PAGE_HISTORY_DIGEST_THROTTLE_SECONDS=0)
    def test_task_runs_the_digest(self):
        result = send_daily_digest()

        self.assertEqual(result['status'], 'completed')
        self.assertEqual(result['sent'], 3)
        self.assertIn('processed_at', result)

    @override_settings(PAGE_HISTORY_DIGEST_THROTTLE_SECONDS=0)
    def test_warm_worker_shutdown_stops_the_task(self):
        worker_shutting_down.send(sender='celery@worker', sig='SIGTERM', how='Warm', exitcode=0)
        try:
            result = send_daily_digest()
        finally:
            digest_stop.clear()

        self.assertEqual(result['status'], 'interrupted')
        self.assertEqual(result['sent'], 0)
        self.assertEqual(len(mail.outbox), 0)
        self.assertFalse(PageHistory.objects.filter(digest_sent_at__isnull=False).exists())

    def test_command(self):
        out = StringIO()
        call_command('send_daily_digest', '--throttle', '0', stdout=out)

        self.assertIn('Successfully processed daily digest', out.getvalue())
        self.assertEqual(len(mail.outbox), 3)

    def test_command_dry_run(self):
        out = StringIO()
        call_command('send_daily_digest', '--dry-run', '--throttle', '0', stdout=out)

        self.assertIn('[DRY RUN]', out.getvalue())
        self.assertIn('would have sent 3 digests', out.getvalue())
        self.assertEqual(len(mail.outbox), 0)

    def test_command_when_locked(self):
        cache.add(DailyDigest.LOCK_KEY, 'another-run', 60)
        out, err = StringIO(), StringIO()

        call_command('send_daily_digest', '--throttle', '0', stdout=out, stderr=err)

        self.assertIn('holds the lock', err.getvalue())
        self.assertEqual(len(mail.outbox), 0)


class RunLockCacheSettingsTests(SimpleTestCase):
    def test_default_cache_is_shared_between_processes(self):
        env = {
            key: value for key, value in os.environ.items()
            if key not in ('CACHE_BACKEND', 'CACHE_LOCATION', 'REDIS_URL')
        }
        with patch.dict(os.environ, env, clear=True):
            project_settings = importlib.reload(importlib.import_module('pagetrail.settings'))

        default = project_settings.CACHES['default']
        self.assertEqual(default['BACKEND'], 'django.core.cache.backends.redis.RedisCache')
        self.assertEqual(default['LOCATION'], 'redis://localhost:6379/2')


class PageHistoryAPITests(APITestCase):
    def setUp(self):
        self.owner = make_user('owner')
        self.page = PageService.create_page(self.owner, 'Style guide', watch=False)
        self.editor = make_user('editor')
        ParticipationService.grant_user_access(self.page, self.editor, 'edit', actor=self.owner)
        self.outsider = make_user('outsider')
        self.url = reverse('page-history-list', args=[self.page.pk])

    def test_list_history(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = response.data['results']
        self.assertEqual(len(results), 2)
        self.assertEqual(results[0]['event_type'], EventType.GRANT_USER_ACCESS)
        self.assertEqual(results[0]['description_key'], 'page_history_granted_user_write_access')
        self.assertEqual(
            results[0]['description_params'], {'user_name': 'owner', 'item_name': 'editor'}
        )
        self.assertEqual(results[1]['event_type'], EventType.PAGE_CREATED)

    def test_access_holder_can_read(self):
        self.client.force_authenticate(user=self.editor)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_private_page_is_hidden_from_others(self):
        self.client.force_authenticate(user=self.outsider)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_watching_without_access_is_not_enough(self):
        ParticipationService.set_watch(self.page, self.outsider, True)

        self.client.force_authenticate(user=self.outsider)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_public_page_until_deleted(self):
        PageService.make_public(self.page, self.owner)
        self.client.force_authenticate(user=self.outsider)
        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_200_OK)

        PageService.delete_page(self.page, self.owner)
        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_404_NOT_FOUND)
        # the editor still sees the history of the deleted page
        self.client.force_authenticate(user=self.editor)
        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_200_OK)

    def test_unknown_page(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse('page-history-list', args=[999999]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_requires_authentication(self):
        response = self.client.get(self.url)
        self.assertIn(
            response.status_code,
            [status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN],
        )
