from django.core.management.base import BaseCommand

from servicemarket.models import Profile


class Command(BaseCommand):
    help = 'Recalculate provider rating aggregates based on reviews.'

    def handle(self, *args, **options):
        for profile in Profile.objects.filter(user_role=Profile.ROLE_BUSINESS):
            profile.recalc_ratings()
            self.stdout.write(self.style.SUCCESS(f'Updated {profile.username}'))
