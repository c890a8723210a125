from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.utils import timezone

from servicemarket.models import PayoutAccount, Profile, Service


def make_profile(username, role=Profile.ROLE_CUSTOMER, **extra):
    user = User.objects.create_user(username=username, password='pass12345')
    return Profile.objects.create(user=user, username=username, user_role=role, **extra)


def make_provider(username='provider', verified=True):
    profile = make_profile(username, role=Profile.ROLE_BUSINESS)
    PayoutAccount.objects.create(provider=profile, external_account_id=f'acct_{username}', is_verified=verified)
    return profile


def make_service(provider, price='100.00', title='Deep clean'):
    return Service.objects.create(provider=provider, title=title, category='cleaning', price=Decimal(price))


def future(hours=24):
    return (timezone.now() + timedelta(hours=hours)).replace(microsecond=0)
