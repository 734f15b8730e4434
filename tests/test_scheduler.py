"""
Spaced-repetition scheduler tests: baseline, predictor blending, fallbacks and schedules.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from vocabmind.core.config import ResilienceConfig, SchedulerConfig
from vocabmind.core.errors import InvalidQuery
from vocabmind.core.resilience import ResilienceLayer
from vocabmind.graph import EdgeKind, GraphStore
from vocabmind.learning import (
    CardRepository,
    GuardedPredictor,
    ILearningPredictor,
    PredictionResult,
    ReviewCard,
    SpacedRepetitionScheduler,
)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
NO_RETRIES = ResilienceConfig(failure_threshold=3, retry_attempts=0, retry_base_delay=0.0, retry_max_delay=0.0)


class FixedPredictor(ILearningPredictor):
    def __init__(self, interval=10.0, confidence=0.9, success_rate=0.7, error=None):
        self.interval = interval
        self.confidence = confidence
        self.success_rate = success_rate
        self.error = error
        self.calls = []

    async def predict(self, user_id, item_id):
        self.calls.append((user_id, item_id))
        if self.error is not None:
            raise self.error
        return PredictionResult(item_id=item_id, predicted_success_rate=self.success_rate,
                                recommended_interval_days=self.interval, confidence=self.confidence)

    async def train_or_update(self, user_id, interactions):
        return True


def guarded(predictor):
    return GuardedPredictor(predictor, ResilienceLayer("predictor", NO_RETRIES, timeout=1.0))


def card(item_id="apple", user_id="u1", **kwargs):
    kwargs.setdefault("next_review_at", NOW)
    return ReviewCard(id=f"sr_{item_id}_{user_id}", item_id=item_id, user_id=user_id, **kwargs)


def mature_card():
    return card(ease_factor=2.5, interval_days=6, repetition_count=2)


def make_scheduler(predictor=None, **kwargs):
    config = SchedulerConfig(**kwargs)
    return SpacedRepetitionScheduler(config, predictor=guarded(predictor) if predictor else None,
                                     clock=lambda: NOW)


class TestUpdateCard:
    def test_baseline_without_predictor(self):
        scheduler = make_scheduler()

        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))

        assert updated.interval_days == 15
        assert updated.repetition_count == 3
        assert updated.next_review_at == NOW + timedelta(days=15)
        assert updated.confidence == 0.5

    def test_confident_prediction_is_blended(self):
        predictor = FixedPredictor(interval=10.0, confidence=0.9)
        scheduler = make_scheduler(predictor)

        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))

        # 0.5 * 15 + 0.5 * 10 = 12.5
        assert updated.interval_days == 13
        assert updated.next_review_at == NOW + timedelta(days=13)
        assert updated.confidence == pytest.approx(0.9)
        assert predictor.calls == [("u1", "apple")]

    def test_blend_weight_is_configurable(self):
        scheduler = make_scheduler(FixedPredictor(interval=5.0), blend_weight=1.0)

        assert asyncio.run(scheduler.update_card(mature_card(), 5, "u1")).interval_days == 15

    def test_low_confidence_prediction_is_ignored(self):
        scheduler = make_scheduler(FixedPredictor(interval=40.0, confidence=0.3))

        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))

        assert updated.interval_days == 15
        assert updated.confidence == 0.5

    def test_failed_review_never_consults_predictor(self):
        predictor = FixedPredictor(interval=40.0)
        scheduler = make_scheduler(predictor)

        updated = asyncio.run(scheduler.update_card(mature_card(), 2, "u1"))

        assert updated.interval_days == 1
        assert updated.repetition_count == 0
        assert predictor.calls == []

    def test_predictor_failure_falls_back_to_baseline(self):
        scheduler = make_scheduler(FixedPredictor(error=RuntimeError("model down")))

        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))

        assert updated.interval_days == 15

    def test_open_predictor_circuit_skips_prediction(self):
        predictor = FixedPredictor()
        scheduler = make_scheduler(predictor)
        for _ in range(3):
            scheduler.predictor.resilience.breaker.record_failure()

        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))

        assert updated.interval_days == 15
        assert predictor.calls == []

    def test_hung_predictor_with_retries_stays_within_one_budget(self):
        class HungPredictor(FixedPredictor):
            async def predict(self, user_id, item_id):
                self.calls.append((user_id, item_id))
                await asyncio.sleep(30)

        config = ResilienceConfig(retry_attempts=2, retry_base_delay=0.0, retry_max_delay=0.0)
        predictor = HungPredictor()
        scheduler = SpacedRepetitionScheduler(
            SchedulerConfig(),
            predictor=GuardedPredictor(predictor, ResilienceLayer("predictor", config, timeout=0.2)),
            clock=lambda: NOW,
        )

        started = time.perf_counter()
        updated = asyncio.run(scheduler.update_card(mature_card(), 5, "u1"))
        elapsed = time.perf_counter() - started

        assert updated.interval_days == 15
        assert elapsed < 0.45

    def test_blended_interval_is_clamped(self):
        scheduler = make_scheduler(FixedPredictor(interval=2000.0), max_interval_days=365)

        assert asyncio.run(scheduler.update_card(mature_card(), 5, "u1")).interval_days == 365

    @pytest.mark.parametrize("quality", [-1, 6, 2.5, True, "5"])
    def test_invalid_quality_rejected(self, quality):
        scheduler = make_scheduler()
        with pytest.raises(InvalidQuery):
            asyncio.run(scheduler.update_card(mature_card(), quality, "u1"))


class TestRecordReview:
    def test_first_exposure_creates_card(self):
        scheduler = make_scheduler()

        updated = asyncio.run(scheduler.record_review("u1", "apple", 5, response_time_ms=1200))

        assert updated.id == "sr_apple_u1"
        assert updated.repetition_count == 1
        assert updated.interval_days == 1
        assert updated.ease_factor == pytest.approx(2.6)
        assert scheduler.repository.get("u1", "apple") == updated

    def test_review_enqueues_interaction(self):
        scheduler = make_scheduler()
        scheduler.sync_queue = MagicMock()

        asyncio.run(scheduler.record_review("u1", "apple", 2, response_time_ms=800))

        interaction = scheduler.sync_queue.enqueue.call_args[0][0]
        assert interaction.user_id == "u1"
        assert interaction.item_id == "apple"
        assert interaction.success is False
        assert interaction.response_time_ms == 800

    def test_retired_card_rejects_reviews(self):
        scheduler = make_scheduler()
        asyncio.run(scheduler.record_review("u1", "apple", 5))

        assert scheduler.retire_card("u1", "apple") is True
        with pytest.raises(InvalidQuery):
            asyncio.run(scheduler.record_review("u1", "apple", 5))
        assert scheduler.retire_card("u1", "missing") is False


class TestGetSchedule:
    def test_orders_by_due_time_then_priority(self):
        scheduler = make_scheduler()
        cards = [
            card("late", next_review_at=NOW - timedelta(hours=1), ease_factor=2.5),
            card("early_hard", next_review_at=NOW - timedelta(days=2), ease_factor=1.3),
            card("early_easy", next_review_at=NOW - timedelta(days=2), ease_factor=2.5),
            card("future", next_review_at=NOW + timedelta(days=1)),
            card("retired", next_review_at=NOW - timedelta(days=5), retired=True),
        ]

        entries = scheduler.get_schedule("u1", cards=cards, now=NOW)

        assert [e.card.item_id for e in entries] == ["early_easy", "early_hard", "late"]
        assert entries[0].priority == pytest.approx(1.0)
        assert entries[1].priority == pytest.approx(0.0)
        assert entries[0].scheduled_date == NOW - timedelta(days=2)

    def test_uses_repository_and_limit(self):
        repository = CardRepository()
        for i in range(5):
            repository.save(card(f"w{i}", next_review_at=NOW - timedelta(minutes=i)))
        scheduler = SpacedRepetitionScheduler(SchedulerConfig(), repository=repository, clock=lambda: NOW)

        entries = scheduler.get_schedule("u1", limit=2)

        assert [e.card.item_id for e in entries] == ["w4", "w3"]

    def test_limit_bounds(self):
        scheduler = make_scheduler()
        with pytest.raises(InvalidQuery):
            scheduler.get_schedule("u1", cards=[], limit=0)
        with pytest.raises(InvalidQuery):
            scheduler.get_schedule("u1", cards=[], limit=101)

    def test_entries_carry_related_items(self):
        graph = GraphStore()
        for node_id in ("apple", "pomme", "manzana", "pear"):
            graph.add_node(node_id)
        graph.add_edge("apple", "pomme", EdgeKind.TRANSLATION, 0.9)
        graph.add_edge("apple", "manzana", EdgeKind.TRANSLATION, 0.8)
        graph.add_edge("pomme", "pear", EdgeKind.RELATED, 0.5)
        scheduler = SpacedRepetitionScheduler(SchedulerConfig(), graph=graph, clock=lambda: NOW)

        entries = scheduler.get_schedule("u1", cards=[card("apple"), card("kiwi")], now=NOW)

        related = {e.card.item_id: e.related_item_ids for e in entries}
        assert related["apple"] == ["pomme", "manzana", "pear"]
        assert related["kiwi"] == []
