import signal
import threading

from django.core.management.base import BaseCommand, CommandError

from page_history.digest import DailyDigest
from page_history.exceptions import MailTransportError


class Command(BaseCommand):
    help = 'Send the daily digest of page updates to users who prefer digests'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show who would get a digest without sending or marking anything',
        )
        parser.add_argument(
            '--throttle',
            type=float,
            default=None,
            help='Seconds to pause between recipients (defaults to the setting)',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        stop = threading.Event()

        def request_stop(signum, frame):
            self.stderr.write("Stop requested, finishing after the current recipient")
            stop.set()

        previous = {
            signum: signal.signal(signum, request_stop)
            for signum in (signal.SIGTERM, signal.SIGINT)
        }
        try:
            result = DailyDigest(throttle=options['throttle']).deliver_all(
                should_stop=stop.is_set,
                dry_run=dry_run,
            )
        except MailTransportError as e:
            raise CommandError(f"Daily digest aborted: {e}")
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        if result.status == 'locked':
            self.stderr.write("Another daily digest run holds the lock, nothing done")
            return

        if dry_run:
            for user_id, count in sorted(result.planned.items()):
                self.stdout.write(f"  [DRY RUN] Would send {count} updates to user {user_id}")
            self.stdout.write(
                self.style.SUCCESS(
                    f"[DRY RUN] {result.considered} pending updates, "
                    f"would have sent {len(result.planned)} digests"
                )
            )
            return

        summary = (
            f"{result.considered} pending updates, sent {result.sent} digests "
            f"({result.failed} refused, {result.skipped} without updates), "
            f"marked {result.stamped} updates as sent"
        )
        if result.status == 'completed':
            self.stdout.write(self.style.SUCCESS(f"Successfully processed daily digest: {summary}"))
        else:
            self.stdout.write(
                self.style.WARNING(
                    f"Daily digest {result.status} with {result.unprocessed} recipients left: {summary}"
                )
            )
