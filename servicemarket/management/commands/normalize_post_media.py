from django.core.management.base import BaseCommand

from servicemarket.posts import normalize_legacy_posts


class Command(BaseCommand):
    help = 'Convert legacy free-form post image values into tagged media content.'

    def handle(self, *args, **options):
        migrated = normalize_legacy_posts()
        self.stdout.write(self.style.SUCCESS(f'Normalized {migrated} posts'))
