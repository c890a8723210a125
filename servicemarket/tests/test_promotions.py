from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from servicemarket import posts, promotions
from servicemarket.exceptions import AuthorizationError, StateConflictError, ValidationError
from servicemarket.models import PromotedPost

from .helpers import make_profile


class PromotePostTests(TestCase):
    def setUp(self):
        self.author = make_profile('author')
        self.reader = make_profile('reader')
        self.post = posts.create_post(self.author, caption='Spring deep-clean offer')

    def test_defaults_to_a_week_at_list_price(self):
        promotion = promotions.promote_post(self.post, self.author, PromotedPost.LEVEL_PREMIUM)
        self.assertEqual(promotion.owner, self.author)
        self.assertEqual(promotion.budget, Decimal('15.00'))
        self.assertEqual(promotion.ends_at - promotion.starts_at, timedelta(days=7))
        self.assertTrue(promotion.is_active_at(timezone.now()))

    def test_only_author_promotes(self):
        with self.assertRaises(AuthorizationError):
            promotions.promote_post(self.post, self.reader, PromotedPost.LEVEL_BASIC)

    def test_rejects_bad_level_window_and_budget(self):
        now = timezone.now()
        with self.assertRaises(ValidationError):
            promotions.promote_post(self.post, self.author, 'gold')
        with self.assertRaises(ValidationError):
            promotions.promote_post(
                self.post, self.author, PromotedPost.LEVEL_BASIC, starts_at=now, ends_at=now - timedelta(hours=1)
            )
        with self.assertRaises(ValidationError):
            promotions.promote_post(
                self.post,
                self.author,
                PromotedPost.LEVEL_BASIC,
                starts_at=now - timedelta(days=3),
                ends_at=now - timedelta(days=1),
            )
        with self.assertRaises(ValidationError):
            promotions.promote_post(self.post, self.author, PromotedPost.LEVEL_BASIC, budget=Decimal('4.99'))
        self.assertFalse(PromotedPost.objects.exists())

    def test_deleted_post_cannot_be_promoted(self):
        posts.soft_delete_post(self.post, self.author)
        with self.assertRaises(ValidationError):
            promotions.promote_post(self.post, self.author, PromotedPost.LEVEL_BASIC)

    def test_windows_of_one_post_do_not_overlap(self):
        now = timezone.now()
        promotions.promote_post(self.post, self.author, PromotedPost.LEVEL_BASIC, starts_at=now)
        with self.assertRaises(StateConflictError):
            promotions.promote_post(
                self.post, self.author, PromotedPost.LEVEL_FEATURED, starts_at=now + timedelta(days=3)
            )
        later = promotions.promote_post(
            self.post, self.author, PromotedPost.LEVEL_FEATURED, starts_at=now + timedelta(days=8)
        )
        self.assertEqual(later.budget, Decimal('30.00'))

    def test_end_promotion(self):
        promotion = promotions.promote_post(self.post, self.author, PromotedPost.LEVEL_BASIC)
        with self.assertRaises(AuthorizationError):
            promotions.end_promotion(promotion, self.reader)

        promotions.end_promotion(promotion, self.author)

        promotion.refresh_from_db()
        self.assertFalse(promotion.is_active_at(timezone.now() + timedelta(seconds=1)))
        with self.assertRaises(StateConflictError):
            promotions.end_promotion(promotion, self.author)
