"""
Learning layer: SM-2 baseline, predictors, review scheduling and interaction sync.
"""

from .types import ReviewCard, PredictionResult, ScheduleEntry, LearningInteraction
from .predictor import ILearningPredictor, RuleBasedPredictor, GuardedPredictor
from .repository import CardRepository
from .scheduler import SpacedRepetitionScheduler
from .sync import InteractionSyncQueue

__all__ = [
    'ReviewCard',
    'PredictionResult',
    'ScheduleEntry',
    'LearningInteraction',
    'ILearningPredictor',
    'RuleBasedPredictor',
    'GuardedPredictor',
    'CardRepository',
    'SpacedRepetitionScheduler',
    'InteractionSyncQueue',
]
