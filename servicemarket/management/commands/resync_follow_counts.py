from django.core.management.base import BaseCommand

from servicemarket.social import resync_follow_counts


class Command(BaseCommand):
    help = 'Recompute follower/following counters from follow edges.'

    def handle(self, *args, **options):
        repaired = resync_follow_counts()
        self.stdout.write(self.style.SUCCESS(f'Repaired {repaired} profiles'))
