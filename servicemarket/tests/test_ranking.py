import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from types import SimpleNamespace

from django.test import SimpleTestCase

from servicemarket import ranking
from servicemarket.models import PromotedPost

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=dt_timezone.utc)


def post(hours_old=1, caption='', image_urls=(), author=None):
    author = author or SimpleNamespace(pk=uuid.uuid4(), user_role='customer', kyc_verified=False,
                                       reviews_rating=0, followers_count=0)
    return SimpleNamespace(
        id=uuid.uuid4(),
        created_at=NOW - timedelta(hours=hours_old),
        caption=caption,
        image_urls=list(image_urls),
        author=author,
        author_id=author.pk,
    )


def promotion(target, level, starts=-1, ends=1):
    return PromotedPost(
        post_id=target.id,
        promotion_level=level,
        starts_at=NOW + timedelta(hours=starts),
        ends_at=NOW + timedelta(hours=ends),
    )


class ScoreComponentTests(SimpleTestCase):
    def test_recency_decays_and_never_goes_negative(self):
        self.assertEqual(ranking.recency_score(NOW, NOW), 100)
        self.assertGreater(ranking.recency_score(NOW - timedelta(hours=1), NOW),
                           ranking.recency_score(NOW - timedelta(hours=48), NOW))
        self.assertEqual(ranking.recency_score(NOW - timedelta(days=365 * 100), NOW), 0)

    def test_quality_rewards_images_and_caption_length(self):
        self.assertEqual(ranking.quality_score(post()), 0)
        self.assertEqual(ranking.quality_score(post(image_urls=['https://x/1.jpg'])), 20)
        self.assertEqual(ranking.quality_score(post(caption='a' * 1000)), 15)

    def test_interaction_score_caps_at_fifty(self):
        author_id = uuid.uuid4()
        many = [ranking.Interaction(author_id, uuid.uuid4(), 'comment', NOW) for _ in range(10)]
        self.assertEqual(ranking.interaction_score(author_id, many), 50)
        self.assertEqual(ranking.interaction_score(uuid.uuid4(), many), 0)

    def test_profile_score_caps_at_forty(self):
        star = SimpleNamespace(user_role='business', kyc_verified=True, reviews_rating=5, followers_count=10 ** 9)
        self.assertEqual(ranking.profile_score(star), 40)
        self.assertEqual(ranking.profile_score(None), 0)

    def test_more_likes_never_lowers_score(self):
        target = post(hours_old=5, caption='Fresh paint job')
        scores = [ranking.base_score(target, likes, 0, [], NOW) for likes in range(0, 40, 3)]
        self.assertEqual(scores, sorted(scores))

    def test_base_score_is_non_negative_and_rounded(self):
        score = ranking.base_score(post(hours_old=10 ** 6), 0, 0, [], NOW)
        self.assertGreaterEqual(score, 0)
        self.assertEqual(score, round(score, 2))


class OrderingTests(SimpleTestCase):
    def test_promoted_tiers_come_first(self):
        p1, p2, p3 = post(), post(), post()
        ranked = ranking.sort_ranked([
            ranking.RankedPost(p3, 40),
            ranking.RankedPost(p2, 50, promotion(p2, 'premium'), 75),
            ranking.RankedPost(p1, 10, promotion(p1, 'featured'), 100),
        ])
        self.assertEqual([r.post for r in ranked], [p1, p2, p3])
        self.assertEqual(ranked[0].score, 110)
        self.assertEqual(ranked[0].promotion_level, 'featured')
        self.assertFalse(ranked[2].is_promoted)

    def test_unpromoted_ordered_by_base_score(self):
        a, b = post(), post()
        ranked = ranking.sort_ranked([ranking.RankedPost(a, 12.5), ranking.RankedPost(b, 30)])
        self.assertEqual([r.post for r in ranked], [b, a])

    def test_rank_applies_boost_from_active_promotion(self):
        fresh, old = post(hours_old=1), post(hours_old=200)
        ranked = ranking.rank(
            [ranking.Candidate(fresh), ranking.Candidate(old)],
            NOW,
            promotions=[promotion(old, 'basic')],
        )
        self.assertIs(ranked[0].post, old)
        self.assertEqual(ranked[0].boost, 50)
        self.assertEqual(ranked[1].boost, 0)

    def test_select_active_prefers_highest_tier_then_latest_start(self):
        target = post()
        basic = promotion(target, 'basic', starts=-2)
        premium_old = promotion(target, 'premium', starts=-5)
        premium_new = promotion(target, 'premium', starts=-1)
        expired = promotion(target, 'featured', starts=-10, ends=-5)
        chosen = ranking.select_active_promotions([basic, premium_old, expired, premium_new], NOW)
        self.assertIs(chosen[target.id], premium_new)

    def test_future_promotion_is_inactive(self):
        target = post()
        chosen = ranking.select_active_promotions([promotion(target, 'featured', starts=1, ends=5)], NOW)
        self.assertEqual(chosen, {})
