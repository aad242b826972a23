import dataclasses
import math
from datetime import timedelta

import pytest

from vibefeed.feed.schemas import EngagementCounts
from vibefeed.feed.scoring import (
    DEFAULT_FEED_CONFIG,
    freshness_bonus,
    hours_since,
    score_content,
    score_engagement_only,
    score_gig,
    time_decay,
    weighted_engagement,
)
from tests.fakes import NOW


def test_example_ten_likes_brand_new() -> None:
    counts = EngagementCounts(likes=10)
    assert weighted_engagement(counts) == 10.0
    assert freshness_bonus(0) == 10.0
    assert score_content(counts, 0) == pytest.approx(20.0 / 2**1.8)
    assert score_content(counts, 0) == pytest.approx(5.74, abs=0.01)


def test_engagement_weights() -> None:
    counts = EngagementCounts(likes=1, comments=1, reposts=1, bookmarks=1, quotes=1)
    assert weighted_engagement(counts) == 1.0 + 10.0 + 5.0 + 4.0 + 8.0


@pytest.mark.parametrize("age_hours", [0, 0.5, 3, 6, 24, 24 * 7, 24 * 365])
@pytest.mark.parametrize(
    "counts",
    [
        EngagementCounts(),
        EngagementCounts(likes=3, comments=1),
        EngagementCounts(likes=10**6, comments=10**5, reposts=10**5, bookmarks=10**5, quotes=10**4),
    ],
)
def test_score_is_finite_and_non_negative(counts: EngagementCounts, age_hours: float) -> None:
    score = score_content(counts, age_hours)
    assert math.isfinite(score)
    assert score >= 0


def test_freshness_bonus_expires_after_six_hours() -> None:
    assert freshness_bonus(3) == pytest.approx(5.0)
    assert freshness_bonus(6) == 0.0
    assert freshness_bonus(48) == 0.0
    assert score_content(EngagementCounts(), 10) == 0.0


def test_time_decay_starts_at_one_and_strictly_decreases() -> None:
    assert time_decay(0) == 1.0
    ages = [0, 0.1, 1, 2, 6, 24, 100, 1000]
    decays = [time_decay(age) for age in ages]
    assert all(a > b for a, b in zip(decays, decays[1:]))


def test_score_relates_to_time_decay() -> None:
    counts = EngagementCounts(likes=4, comments=2)
    for age in (0, 2, 5, 30):
        numerator = weighted_engagement(counts) + freshness_bonus(age)
        expected = numerator * time_decay(age) / 2**1.8
        assert score_content(counts, age) == pytest.approx(expected)


def test_gig_score_is_dampened() -> None:
    assert score_gig(bids=2, views=10, age_hours=0) == pytest.approx(35.0 * 0.5 / 2**1.8)
    assert score_gig(0, 0, 0) == 0.0


def test_gravity_is_configurable() -> None:
    steep = dataclasses.replace(DEFAULT_FEED_CONFIG, gravity=3.0)
    counts = EngagementCounts(likes=50)
    assert score_content(counts, 12, steep) < score_content(counts, 12)


def test_self_engagement_fully_discounted_by_default() -> None:
    counts = EngagementCounts(likes=5, reposts=1)
    own = EngagementCounts(likes=1, reposts=1)
    # Only the four likes from other users remain.
    assert score_engagement_only(counts, self_engagement=own) == 4.0


def test_self_engagement_discount_is_tunable() -> None:
    counts = EngagementCounts(likes=5)
    own = EngagementCounts(likes=1)
    counted = dataclasses.replace(DEFAULT_FEED_CONFIG, self_engagement_discount=1.0)
    half = dataclasses.replace(DEFAULT_FEED_CONFIG, self_engagement_discount=0.5)
    assert score_engagement_only(counts, counted, own) == 5.0
    assert score_engagement_only(counts, half, own) == 4.5


def test_self_engagement_never_goes_negative() -> None:
    assert score_engagement_only(EngagementCounts(), self_engagement=EngagementCounts(likes=3)) == 0.0


def test_hours_since_handles_naive_and_future_moments() -> None:
    assert hours_since(NOW - timedelta(hours=5), NOW) == pytest.approx(5.0)
    assert hours_since((NOW - timedelta(minutes=30)).replace(tzinfo=None), NOW) == pytest.approx(0.5)
    assert hours_since(NOW + timedelta(hours=1), NOW) == 0.0
