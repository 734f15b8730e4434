"""
Record types for spaced-repetition scheduling and learning predictions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReviewCard:
    """Per-user scheduling state for one item. Mutated only by the scheduler."""

    id: str
    item_id: str
    user_id: str
    next_review_at: datetime
    ease_factor: float = 2.5
    interval_days: int = 0
    repetition_count: int = 0
    last_review_at: Optional[datetime] = None
    confidence: float = 0.5
    retired: bool = False

    def __post_init__(self):
        if self.ease_factor < 1.3:
            raise ValueError(f"ease_factor must be >= 1.3 (got {self.ease_factor})")
        if self.interval_days < 0 or self.repetition_count < 0:
            raise ValueError("interval_days and repetition_count must be >= 0")


@dataclass(frozen=True)
class PredictionResult:
    """Advisory output of a learning predictor; never applied to a card directly."""

    item_id: str
    predicted_success_rate: float
    recommended_interval_days: float
    confidence: float

    def __post_init__(self):
        if not 0.0 <= self.predicted_success_rate <= 1.0:
            raise ValueError(f"predicted_success_rate out of range: {self.predicted_success_rate}")
        if self.recommended_interval_days < 0:
            raise ValueError(f"recommended_interval_days must be >= 0: {self.recommended_interval_days}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")


@dataclass(frozen=True)
class LearningInteraction:
    """One review outcome, queued for the predictor's background update."""

    user_id: str
    item_id: str
    success: bool
    quality: int
    response_time_ms: Optional[float] = None
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass
class ScheduleEntry:
    card: ReviewCard
    scheduled_date: datetime
    priority: float
    confidence: float
    related_item_ids: List[str] = field(default_factory=list)
