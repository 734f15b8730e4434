"""
Learning predictors.
A predictor turns a learner's history with an item (and with items related to it
in the knowledge graph) into a success-rate / interval / confidence estimate.
The scheduler only ever talks to a predictor through GuardedPredictor.
"""

import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .types import LearningInteraction, PredictionResult, utcnow
from ..core.errors import InvalidQuery, ProviderError, ProviderUnavailable
from ..core.resilience import ResilienceLayer
from ..graph.store import EdgeKind, GraphStore
from ..util.logging import logger

SPACED_REPETITION_BASE = 1.5
MIN_INTERVAL_DAYS = 1.0
MAX_INTERVAL_DAYS = 180.0
SUCCESS_RATE_ALPHA = 0.3
MAX_NEIGHBORS = 10

# Edges whose endpoints tend to be learned together
LEARNING_EDGE_KINDS = (EdgeKind.SYNONYM, EdgeKind.TRANSLATION, EdgeKind.RELATED, EdgeKind.SIMILAR)


class ILearningPredictor(ABC):
    """Abstract interface for learning predictors."""

    @abstractmethod
    async def predict(self, user_id: str, item_id: str) -> PredictionResult:
        pass

    @abstractmethod
    async def train_or_update(self, user_id: str, interactions: Sequence[LearningInteraction]) -> bool:
        """Fold interactions into the model. Returns True when accepted."""
        pass


@dataclass
class LearningPattern:
    user_id: str
    item_id: str
    success_rate: float = 0.5
    average_response_time_ms: float = 5000.0
    optimal_interval_days: float = 1.0
    interactions: int = 0
    last_updated: datetime = field(default_factory=utcnow)


def difficulty_label(success_rate: float) -> str:
    if success_rate >= 0.8:
        return "easy"
    if success_rate >= 0.5:
        return "medium"
    return "hard"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class RuleBasedPredictor(ILearningPredictor):
    """
    Heuristic predictor over per-(user, item) learning patterns.

    Success rate is an exponential moving average of review outcomes; the
    optimal interval grows by SPACED_REPETITION_BASE on success and shrinks
    by it on failure. Predictions blend the item's own success rate with that
    of graph neighbours the learner has seen (0.6 / 0.4), decayed by the time
    since the last update. Confidence rises with recency and neighbour evidence.
    """

    def __init__(self, graph: Optional[GraphStore] = None, clock: Callable[[], datetime] = utcnow):
        self.graph = graph
        self._clock = clock
        self._patterns: Dict[Tuple[str, str], LearningPattern] = {}
        self._lock = threading.Lock()

    def pattern(self, user_id: str, item_id: str) -> Optional[LearningPattern]:
        with self._lock:
            return self._patterns.get((user_id, item_id))

    def _neighbor_patterns(self, user_id: str, item_id: str) -> List[LearningPattern]:
        if self.graph is None:
            return []
        found = []
        for edge in self.graph.neighbors(item_id, LEARNING_EDGE_KINDS):
            pattern = self._patterns.get((user_id, edge.target_id))
            if pattern is not None:
                found.append(pattern)
            if len(found) >= MAX_NEIGHBORS:
                break
        return found

    async def predict(self, user_id: str, item_id: str) -> PredictionResult:
        now = self._clock()
        with self._lock:
            own = self._patterns.get((user_id, item_id))
            neighbors = self._neighbor_patterns(user_id, item_id)

        if own is None:
            # Nothing learned yet: an estimate the scheduler will not act on
            return PredictionResult(item_id=item_id, predicted_success_rate=0.5,
                                    recommended_interval_days=MIN_INTERVAL_DAYS, confidence=0.0)

        days_since = max(0.0, (now - own.last_updated).total_seconds() / 86400)

        predicted = own.success_rate
        if neighbors:
            neighbor_rate = sum(p.success_rate for p in neighbors) / len(neighbors)
            predicted = 0.6 * predicted + 0.4 * neighbor_rate
        predicted = _clamp(predicted * math.exp(-days_since / 30), 0.0, 1.0)

        combined = (own.success_rate + predicted) / 2
        interval = _clamp(own.optimal_interval_days * (0.5 + combined * 2), MIN_INTERVAL_DAYS, MAX_INTERVAL_DAYS)

        recency = math.exp(-days_since / 7)
        neighbor_evidence = min(len(neighbors) / 10, 1.0)
        confidence = _clamp(0.5 + recency * 0.3 + neighbor_evidence * 0.2, 0.0, 1.0)

        return PredictionResult(
            item_id=item_id,
            predicted_success_rate=predicted,
            recommended_interval_days=interval,
            confidence=confidence,
        )

    async def train_or_update(self, user_id: str, interactions: Sequence[LearningInteraction]) -> bool:
        ordered = sorted(interactions, key=lambda i: i.occurred_at)
        with self._lock:
            for interaction in ordered:
                if interaction.user_id != user_id:
                    continue
                key = (user_id, interaction.item_id)
                pattern = self._patterns.get(key)
                if pattern is None:
                    pattern = LearningPattern(user_id=user_id, item_id=interaction.item_id)
                    self._patterns[key] = pattern

                outcome = 1.0 if interaction.success else 0.0
                pattern.success_rate = SUCCESS_RATE_ALPHA * outcome + (1 - SUCCESS_RATE_ALPHA) * pattern.success_rate
                if interaction.response_time_ms is not None:
                    pattern.average_response_time_ms = (
                        0.7 * pattern.average_response_time_ms + 0.3 * interaction.response_time_ms
                    )
                if interaction.success:
                    pattern.optimal_interval_days *= SPACED_REPETITION_BASE
                else:
                    pattern.optimal_interval_days /= SPACED_REPETITION_BASE
                pattern.optimal_interval_days = _clamp(
                    pattern.optimal_interval_days, MIN_INTERVAL_DAYS, MAX_INTERVAL_DAYS
                )
                pattern.interactions += 1
                pattern.last_updated = interaction.occurred_at
        return True


class GuardedPredictor:
    """
    Predictor access through the resilience layer.

    Never raises: an unavailable, slow or misbehaving predictor yields None
    from predict() and False from train_or_update(). A prediction, retries
    included, never takes longer than `budget` (the layer's budget, else its
    per-attempt timeout).
    """

    def __init__(self, predictor: ILearningPredictor, resilience: ResilienceLayer,
                 budget: Optional[float] = None):
        self.predictor = predictor
        self.resilience = resilience
        if budget is None:
            budget = resilience.budget if resilience.budget is not None else resilience.timeout
        self.budget = budget

    @property
    def healthy(self) -> bool:
        return self.resilience.healthy

    async def predict(self, user_id: str, item_id: str) -> Optional[PredictionResult]:
        try:
            return await self.resilience.execute(
                lambda: self.predictor.predict(user_id, item_id),
                fallback=lambda error: None,
                budget=self.budget,
            )
        except (InvalidQuery, ProviderError, ProviderUnavailable) as e:
            logger.log_provider_failure("predictor", e)
            return None

    async def train_or_update(self, user_id: str, interactions: Sequence[LearningInteraction]) -> bool:
        try:
            accepted = await self.resilience.execute(
                lambda: self.predictor.train_or_update(user_id, interactions),
                fallback=lambda error: False,
            )
        except (InvalidQuery, ProviderError, ProviderUnavailable) as e:
            logger.log_provider_failure("predictor", e)
            return False
        return bool(accepted)
