from unittest import mock

from django.db import DatabaseError, IntegrityError, transaction
from django.test import TestCase

from servicemarket import usernames
from servicemarket.exceptions import ValidationError
from servicemarket.models import Profile

from .helpers import make_profile


class UsernameTests(TestCase):
    def setUp(self):
        self.profile = make_profile('abc')

    def test_validity_rules(self):
        self.assertTrue(usernames.is_valid_username('jo_99'))
        self.assertFalse(usernames.is_valid_username('ab'))
        self.assertFalse(usernames.is_valid_username('x' * 31))
        self.assertFalse(usernames.is_valid_username('has space'))
        self.assertFalse(usernames.is_valid_username('dash-name'))
        self.assertFalse(usernames.is_valid_username('abc\n'))
        self.assertFalse(usernames.is_valid_username(''))
        self.assertFalse(usernames.is_valid_username(None))

    def test_validate_raises_for_bad_names(self):
        with self.assertRaises(ValidationError):
            usernames.validate_username('no!')

    def test_taken_is_case_insensitive(self):
        self.assertEqual(usernames.check_availability('ABC'), usernames.TAKEN)
        self.assertEqual(usernames.check_availability('abc'), usernames.TAKEN)

    def test_free_name_is_available(self):
        self.assertEqual(usernames.check_availability('brand_new'), usernames.AVAILABLE)

    def test_own_name_counts_as_available(self):
        self.assertEqual(
            usernames.check_availability('ABC', excluding_user_id=self.profile.user_id),
            usernames.AVAILABLE,
        )

    def test_lookup_failure_reports_error(self):
        with mock.patch.object(Profile.objects, 'filter', side_effect=DatabaseError('down')):
            self.assertEqual(usernames.check_availability('someone'), usernames.ERROR)

    def test_database_rejects_case_variant_duplicates(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            make_profile('ABC')
