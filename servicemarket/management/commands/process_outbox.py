from django.core.management.base import BaseCommand

from servicemarket import outbox


class Command(BaseCommand):
    help = 'Process due outbox messages such as queued refunds.'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=100)

    def handle(self, *args, **options):
        stats = outbox.process_pending(limit=options['limit'])
        self.stdout.write(self.style.SUCCESS(f"Processed {stats['processed']}, failed {stats['failed']}."))
