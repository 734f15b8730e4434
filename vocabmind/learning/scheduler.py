"""
Spaced-repetition scheduling.
SM-2 is the deterministic baseline; a healthy, confident predictor may pull the
interval of a successful review towards its own recommendation.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .predictor import GuardedPredictor, difficulty_label
from .repository import CardRepository
from .sm2 import PASSING_QUALITY, apply_review, review_priority, round_half_up
from .sync import InteractionSyncQueue
from .types import LearningInteraction, ReviewCard, ScheduleEntry, utcnow
from ..core.config import GraphConfig, SchedulerConfig
from ..core.errors import InvalidQuery
from ..graph.store import GraphStore
from ..util.logging import logger

BASELINE_CONFIDENCE = 0.5
MAX_SCHEDULE_LIMIT = 100


def validate_quality(quality) -> int:
    if isinstance(quality, bool) or not isinstance(quality, int) or not 0 <= quality <= 5:
        raise InvalidQuery("quality", "must be an integer between 0 and 5")
    return quality


class SpacedRepetitionScheduler:
    """
    Review-state machine for learners' cards.

    Only the components handed in are used: without a predictor the scheduler
    is pure SM-2, without a graph schedule entries carry no related items.
    """

    def __init__(self, config: SchedulerConfig, repository: Optional[CardRepository] = None,
                 predictor: Optional[GuardedPredictor] = None, graph: Optional[GraphStore] = None,
                 graph_config: Optional[GraphConfig] = None,
                 sync_queue: Optional[InteractionSyncQueue] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.config = config
        self.repository = repository or CardRepository()
        self.predictor = predictor
        self.graph = graph
        self.graph_config = graph_config or GraphConfig()
        self.sync_queue = sync_queue
        self._clock = clock

    async def update_card(self, card: ReviewCard, quality: int, user_id: str,
                          now: Optional[datetime] = None) -> ReviewCard:
        """
        Apply one review to a card and return the updated copy.

        The predictor is consulted only for successful reviews while its circuit
        admits calls; any predictor problem leaves the SM-2 result untouched.
        """
        validate_quality(quality)
        now = now or self._clock()
        updated = apply_review(card, quality, now)
        baseline_interval = updated.interval_days
        status = "baseline"
        details = {}

        if quality >= PASSING_QUALITY and self.predictor is not None and self.predictor.healthy:
            prediction = await self.predictor.predict(user_id, card.item_id)
            if prediction is not None and prediction.confidence >= self.config.confidence_threshold:
                weight = self.config.blend_weight
                blended = weight * baseline_interval + (1 - weight) * prediction.recommended_interval_days
                interval = max(1, min(self.config.max_interval_days, round_half_up(blended)))
                updated = replace(
                    updated,
                    interval_days=interval,
                    next_review_at=now + timedelta(days=interval),
                    confidence=max(BASELINE_CONFIDENCE, prediction.confidence),
                )
                status = "blended"
                details = {
                    "baseline_interval": baseline_interval,
                    "predicted_interval": round(prediction.recommended_interval_days, 2),
                    "confidence": round(prediction.confidence, 3),
                    "difficulty": difficulty_label(prediction.predicted_success_rate),
                }

        logger.log_review(user_id, card.item_id, quality, updated.interval_days, status, details)
        return updated

    async def record_review(self, user_id: str, item_id: str, quality: int,
                            response_time_ms: Optional[float] = None) -> ReviewCard:
        """Review an item for a user, creating the card on first exposure."""
        validate_quality(quality)
        if not user_id or not item_id:
            raise InvalidQuery("user_id", "user_id and item_id are required")

        now = self._clock()
        card = self.repository.get(user_id, item_id)
        if card is None:
            card = self.repository.create(user_id, item_id, now)
        elif card.retired:
            raise InvalidQuery("item_id", f"card for '{item_id}' is retired")

        updated = await self.update_card(card, quality, user_id, now=now)
        self.repository.save(updated)

        if self.sync_queue is not None:
            self.sync_queue.enqueue(LearningInteraction(
                user_id=user_id,
                item_id=item_id,
                success=quality >= PASSING_QUALITY,
                quality=quality,
                response_time_ms=response_time_ms,
                occurred_at=now,
            ))
        return updated

    def get_schedule(self, user_id: str, cards: Optional[List[ReviewCard]] = None,
                     limit: Optional[int] = None, now: Optional[datetime] = None) -> List[ScheduleEntry]:
        """
        Due cards, earliest first; among equally due cards the higher priority wins.

        Args:
            user_id: Learner whose cards to schedule
            cards: Explicit card set; defaults to the learner's stored cards
            limit: Max entries (1-100)
            now: Reference time
        """
        limit = self.config.default_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_SCHEDULE_LIMIT:
            raise InvalidQuery("limit", f"must be between 1 and {MAX_SCHEDULE_LIMIT}")

        now = now or self._clock()
        if cards is None:
            cards = self.repository.list_for_user(user_id)

        due = [c for c in cards if not c.retired and c.next_review_at <= now]
        due.sort(key=lambda c: (c.next_review_at, -review_priority(c), c.item_id))

        return [
            ScheduleEntry(
                card=card,
                scheduled_date=card.next_review_at,
                priority=review_priority(card),
                confidence=card.confidence,
                related_item_ids=self._related_ids(card.item_id),
            )
            for card in due[:limit]
        ]

    def _related_ids(self, item_id: str) -> List[str]:
        if self.graph is None or not self.graph.has_node(item_id):
            return []
        related = self.graph.related_to(item_id, limit=self.graph_config.max_related)
        return [r.node.id for r in related]

    def retire_card(self, user_id: str, item_id: str) -> bool:
        retired = self.repository.retire(user_id, item_id)
        if retired is None:
            return False
        logger.log_operation("review.retire", "success", {"user_id": user_id, "item_id": item_id})
        return True
