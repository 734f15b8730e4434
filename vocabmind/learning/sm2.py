"""
Deterministic SM-2 baseline.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from .types import ReviewCard

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
FIRST_INTERVAL = 1
SECOND_INTERVAL = 6
PASSING_QUALITY = 3


@dataclass(frozen=True)
class Sm2Outcome:
    ease_factor: float
    interval_days: int
    repetition_count: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def next_ease_factor(ease_factor: float, quality: int) -> float:
    miss = 5 - quality
    return max(MIN_EASE_FACTOR, ease_factor + (0.1 - miss * (0.08 + miss * 0.02)))


def sm2_step(ease_factor: float, interval_days: int, repetition_count: int, quality: int) -> Sm2Outcome:
    """
    One SM-2 review.

    A failed review (quality < 3) restarts the repetition count with a one-day
    interval. Otherwise the intervals run 1, 6, then previous interval times
    the pre-review ease factor.
    """
    if quality < PASSING_QUALITY:
        repetitions = 0
        interval = FIRST_INTERVAL
    else:
        repetitions = repetition_count + 1
        if repetitions == 1:
            interval = FIRST_INTERVAL
        elif repetitions == 2:
            interval = SECOND_INTERVAL
        else:
            interval = round_half_up(interval_days * ease_factor)

    return Sm2Outcome(
        ease_factor=next_ease_factor(ease_factor, quality),
        interval_days=interval,
        repetition_count=repetitions,
    )


def apply_review(card: ReviewCard, quality: int, now: datetime) -> ReviewCard:
    outcome = sm2_step(card.ease_factor, card.interval_days, card.repetition_count, quality)
    return replace(
        card,
        ease_factor=outcome.ease_factor,
        interval_days=outcome.interval_days,
        repetition_count=outcome.repetition_count,
        last_review_at=now,
        next_review_at=now + timedelta(days=outcome.interval_days),
        confidence=0.5,
    )


def review_priority(card: ReviewCard) -> float:
    """Ease factor mapped onto [0, 1] (1.3 -> 0, 2.5 -> 1)."""
    return (card.ease_factor - MIN_EASE_FACTOR) / 1.2
