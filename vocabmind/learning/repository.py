"""
Per-user review card storage. Cards are soft-retired, never deleted.
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from .types import ReviewCard


def card_id(user_id: str, item_id: str) -> str:
    return f"sr_{item_id}_{user_id}"


class CardRepository:
    """In-memory card store keyed by (user_id, item_id)."""

    def __init__(self):
        self._cards: Dict[str, Dict[str, ReviewCard]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, item_id: str) -> Optional[ReviewCard]:
        with self._lock:
            return self._cards.get(user_id, {}).get(item_id)

    def create(self, user_id: str, item_id: str, now: datetime) -> ReviewCard:
        """New card for a first exposure: default ease, zero interval, due immediately."""
        card = ReviewCard(id=card_id(user_id, item_id), item_id=item_id, user_id=user_id, next_review_at=now)
        self.save(card)
        return card

    def save(self, card: ReviewCard) -> None:
        with self._lock:
            self._cards.setdefault(card.user_id, {})[card.item_id] = card

    def list_for_user(self, user_id: str, include_retired: bool = False) -> List[ReviewCard]:
        with self._lock:
            cards = list(self._cards.get(user_id, {}).values())
        if include_retired:
            return cards
        return [c for c in cards if not c.retired]

    def retire(self, user_id: str, item_id: str) -> Optional[ReviewCard]:
        with self._lock:
            card = self._cards.get(user_id, {}).get(item_id)
            if card is None:
                return None
            retired = replace(card, retired=True)
            self._cards[user_id][item_id] = retired
            return retired

    def count(self, user_id: Optional[str] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._cards.get(user_id, {}))
            return sum(len(cards) for cards in self._cards.values())
