"""
Scoring engine — pure functions, no I/O.

Popularity (long horizon, normalised to [0, 100]):

  raw        = Σ weight[type] × count[type]
  compressed = log10(1 + raw) × 10                 (tames viral outliers)
  quality    = compressed × (1 + quality_score × w_quality)   if known
  popularity = quality × 1 / (1 + w_age × age_days / 30)      unless ignore_age

Quality (engagement ratio, [0, 1]):

  ratios     = like/comment/share/save counts ÷ max(1, views)
  composite  = 50·like + 100·comment + 150·share + 125·save
  quality    = min(1, log10(1 + composite) / 2)

Trending (short horizon, trailing 24h window):

  trending   = Σ weight[type] × max(0, 1 − hours_ago / 24)

Every function takes an explicit `now` so callers (and tests) control time.
"""
import math
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel

from discovery_service.schemas import ContentItem, Interaction, InteractionType


class ScoringWeights(BaseModel, frozen=True):
    like: float = 1.0
    comment: float = 2.0
    share: float = 3.0
    save: float = 2.5
    view: float = 0.1
    age: float = 0.8        # higher means older content decays faster
    quality: float = 1.5

    def for_type(self, interaction_type: str) -> float:
        return {
            InteractionType.LIKE.value: self.like,
            InteractionType.COMMENT.value: self.comment,
            InteractionType.SHARE.value: self.share,
            InteractionType.SAVE.value: self.save,
            InteractionType.VIEW.value: self.view,
        }.get(interaction_type, 0.0)


class TrendingWeights(BaseModel, frozen=True):
    like: float = 1.0
    comment: float = 2.0
    share: float = 3.0
    save: float = 2.5
    other: float = 0.5
    window_hours: float = 24.0

    def for_type(self, interaction_type: str) -> float:
        return {
            InteractionType.LIKE.value: self.like,
            InteractionType.COMMENT.value: self.comment,
            InteractionType.SHARE.value: self.share,
            InteractionType.SAVE.value: self.save,
        }.get(interaction_type, self.other)


class QualityWeights(BaseModel, frozen=True):
    like: float = 50.0
    comment: float = 100.0
    share: float = 150.0
    save: float = 125.0


DEFAULT_WEIGHTS = ScoringWeights()
DEFAULT_TRENDING_WEIGHTS = TrendingWeights()
DEFAULT_QUALITY_WEIGHTS = QualityWeights()

POPULARITY_MIN = 0.0
POPULARITY_MAX = 100.0


def _utc(ts: datetime) -> datetime:
    # Rows from TiDB come back naive; they are stored in UTC.
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def _now(now: Optional[datetime]) -> datetime:
    return _utc(now) if now is not None else datetime.now(timezone.utc)


def _count_by_type(interactions: Iterable[Interaction]) -> Counter:
    return Counter(i.type for i in interactions)


def content_age_days(content: ContentItem, now: Optional[datetime] = None) -> float:
    age = (_now(now) - _utc(content.created_at)).total_seconds() / 86400
    return max(0.0, age)


def normalize_score(
    score: float, lo: float = POPULARITY_MIN, hi: float = POPULARITY_MAX
) -> float:
    return min(hi, max(lo, score))


def popularity_score(
    content: Optional[ContentItem],
    interactions: Optional[list[Interaction]],
    *,
    ignore_age: bool = False,
    now: Optional[datetime] = None,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    if content is None or interactions is None:
        return 0.0

    counts = _count_by_type(interactions)
    raw = sum(weights.for_type(t) * n for t, n in counts.items())
    score = math.log10(1 + raw) * 10 if raw > 0 else 0.0

    if content.quality_score:
        score *= 1 + content.quality_score * weights.quality

    if not ignore_age:
        age_days = content_age_days(content, now)
        score *= 1 / (1 + weights.age * age_days / 30)

    return normalize_score(score)


def quality_score(
    content: Optional[ContentItem],
    interactions: Optional[list[Interaction]],
    *,
    weights: QualityWeights = DEFAULT_QUALITY_WEIGHTS,
) -> float:
    if content is None or not interactions:
        return 0.0

    counts = _count_by_type(interactions)
    views = max(1, counts[InteractionType.VIEW.value])
    composite = (
        counts[InteractionType.LIKE.value] / views * weights.like
        + counts[InteractionType.COMMENT.value] / views * weights.comment
        + counts[InteractionType.SHARE.value] / views * weights.share
        + counts[InteractionType.SAVE.value] / views * weights.save
    )
    return min(1.0, math.log10(1 + composite) / 2)


def trending_score(
    interactions: Optional[list[Interaction]],
    *,
    now: Optional[datetime] = None,
    weights: TrendingWeights = DEFAULT_TRENDING_WEIGHTS,
) -> float:
    if not interactions:
        return 0.0

    now = _now(now)
    score = 0.0
    for interaction in interactions:
        hours_ago = max(0.0, (now - _utc(interaction.created_at)).total_seconds() / 3600)
        recency = max(0.0, 1 - hours_ago / weights.window_hours)
        score += weights.for_type(interaction.type) * recency
    return score
