import math
from datetime import timedelta

import pytest

from discovery_service.schemas import ContentItem, Interaction
from discovery_service.services.scoring import (
    ScoringWeights,
    TrendingWeights,
    content_age_days,
    normalize_score,
    popularity_score,
    quality_score,
    trending_score,
)
from fakes import NOW


def _content(age_days=0.0, quality=None):
    return ContentItem(
        id="c1",
        creator_id="u1",
        quality_score=quality,
        created_at=NOW - timedelta(days=age_days),
    )


def _interactions(*types, hours_ago=1.0):
    return [
        Interaction(user_id=f"u{n}", content_id="c1", type=t, created_at=NOW - timedelta(hours=hours_ago))
        for n, t in enumerate(types)
    ]


# ── popularity ────────────────────────────────────────────────────────────

def test_popularity_log_compresses_weighted_counts():
    score = popularity_score(_content(), _interactions("like", "like", "share"), now=NOW)
    assert score == pytest.approx(math.log10(1 + 5) * 10)


def test_popularity_decays_with_age():
    interactions = _interactions("comment", "save")
    fresh = popularity_score(_content(age_days=0), interactions, now=NOW)
    month_old = popularity_score(_content(age_days=30), interactions, now=NOW)
    assert month_old == pytest.approx(fresh / 1.8)


def test_popularity_ignore_age_skips_decay():
    interactions = _interactions("comment")
    assert popularity_score(
        _content(age_days=365), interactions, ignore_age=True, now=NOW
    ) == pytest.approx(popularity_score(_content(), interactions, now=NOW))


def test_popularity_boosted_by_stored_quality():
    interactions = _interactions("like")
    base = popularity_score(_content(), interactions, now=NOW)
    boosted = popularity_score(_content(quality=0.5), interactions, now=NOW)
    assert boosted == pytest.approx(base * 1.75)


def test_popularity_is_clamped_to_100():
    interactions = _interactions(*["share"] * 50)
    assert popularity_score(_content(quality=100), interactions, now=NOW) == 100.0


def test_popularity_ignores_unknown_interaction_types():
    assert popularity_score(_content(), _interactions("bookmark", "poke"), now=NOW) == 0.0


@pytest.mark.parametrize("content,interactions", [(None, []), (_content(), None), (_content(), [])])
def test_popularity_of_missing_input_is_zero(content, interactions):
    assert popularity_score(content, interactions, now=NOW) == 0.0


def test_popularity_respects_custom_weights():
    weights = ScoringWeights(like=9.0)
    score = popularity_score(_content(), _interactions("like"), now=NOW, weights=weights)
    assert score == pytest.approx(10.0)


@pytest.mark.parametrize("added", ["like", "comment", "share", "save"])
@pytest.mark.parametrize("base", [0, 1, 10, 1000])
@pytest.mark.parametrize("age_days", [0, 7, 30, 365])
def test_popularity_never_drops_when_engagement_grows(added, base, age_days):
    content = _content(age_days=age_days)
    interactions = _interactions(*["like", "comment", "share", "save"] * base)

    before = popularity_score(content, interactions, now=NOW)
    after = popularity_score(content, interactions + _interactions(added), now=NOW)

    assert after >= before
    assert 0.0 <= before <= 100.0
    assert 0.0 <= after <= 100.0


def test_same_engagement_scores_higher_on_fresh_content():
    interactions = _interactions(*["like"] * 10, "comment", "comment")
    fresh = popularity_score(_content(age_days=0), interactions, now=NOW)
    month_old = popularity_score(_content(age_days=30), interactions, now=NOW)
    assert fresh > month_old > 0
    assert fresh == pytest.approx(math.log10(1 + 14) * 10)


def test_content_age_is_never_negative():
    future = _content(age_days=-2)
    assert content_age_days(future, NOW) == 0.0


# ── quality ───────────────────────────────────────────────────────────────

def test_quality_uses_engagement_per_view():
    score = quality_score(_content(), _interactions("view", "like"))
    assert score == pytest.approx(math.log10(51) / 2)


def test_quality_is_capped_at_one():
    assert quality_score(_content(), _interactions(*["share"] * 10)) == 1.0


def test_quality_without_interactions_is_zero():
    assert quality_score(_content(), []) == 0.0


# ── trending ──────────────────────────────────────────────────────────────

def test_trending_weights_by_type_and_recency():
    interactions = _interactions("like", hours_ago=1) + _interactions("share", hours_ago=12)
    assert trending_score(interactions, now=NOW) == pytest.approx(23 / 24 + 1.5)


def test_trending_ignores_interactions_outside_window():
    assert trending_score(_interactions("share", hours_ago=30), now=NOW) == 0.0


def test_trending_gives_unlisted_types_the_default_weight():
    score = trending_score(_interactions("view", hours_ago=0), now=NOW)
    assert score == pytest.approx(0.5)


def test_trending_strictly_decreases_as_time_passes():
    interactions = _interactions("like", "comment", hours_ago=2)
    scores = [trending_score(interactions, now=NOW + timedelta(hours=h)) for h in (0, 4, 8, 16)]
    assert scores == sorted(scores, reverse=True)
    assert len(set(scores)) == len(scores)
    assert trending_score(interactions, now=NOW + timedelta(hours=22)) == 0.0


def test_trending_treats_future_interactions_as_now():
    assert trending_score(_interactions("like", hours_ago=-3), now=NOW) == pytest.approx(1.0)


def test_trending_window_is_configurable():
    weights = TrendingWeights(window_hours=48)
    assert trending_score(_interactions("like", hours_ago=24), now=NOW, weights=weights) == pytest.approx(0.5)


def test_trending_of_nothing_is_zero():
    assert trending_score([], now=NOW) == 0.0
    assert trending_score(None, now=NOW) == 0.0


def test_normalize_score_clamps():
    assert normalize_score(-5) == 0.0
    assert normalize_score(150) == 100.0
    assert normalize_score(0.7, 0, 1) == 0.7
