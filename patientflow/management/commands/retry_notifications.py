from datetime import timedelta

from django.core.management.base import BaseCommand

from patientflow import conf
from patientflow.services.notifications import NotificationDispatcher


class Command(BaseCommand):
    help = "Push notifications whose realtime delivery failed earlier."

    def add_arguments(self, parser):
        parser.add_argument('--older-than', type=int, default=None,
                            help='only retry rows at least this many seconds old')
        parser.add_argument('--max-attempts', type=int, default=None)

    def handle(self, *args, **options):
        older = options['older_than']
        older_than = conf.notification_retry_after() if older is None else timedelta(seconds=older)
        handle = NotificationDispatcher().redeliver_pending(older_than=older_than,
                                                           max_attempts=options['max_attempts'])
        pending = len(handle.notification_ids)
        msg = f"Redelivered {handle.delivered}/{pending} notifications"
        if handle.failed:
            self.stdout.write(self.style.WARNING(msg))
        else:
            self.stdout.write(self.style.SUCCESS(msg))
