"""
Background sync of learning interactions to the predictor.
Reviews enqueue without waiting; a periodic task drains the queue and hands
each learner's batch to the predictor.
"""

import asyncio
import threading
from collections import OrderedDict, deque
from typing import Deque, Dict, List, Optional

from .types import LearningInteraction
from ..util.logging import logger


class InteractionSyncQueue:
    """
    Bounded interaction queue with a periodic drain.

    When full, the oldest interaction is dropped. Only one flush runs at a
    time; a flush requested while another is in progress is skipped.
    """

    def __init__(self, predictor, flush_interval: float = 30.0, max_size: int = 1000):
        if flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0: {flush_interval}")
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1: {max_size}")
        self.predictor = predictor
        self.flush_interval = flush_interval
        self.max_size = max_size
        self._queue: Deque[LearningInteraction] = deque(maxlen=max_size)
        self._queue_lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    def enqueue(self, interaction: LearningInteraction) -> None:
        with self._queue_lock:
            if len(self._queue) >= self.max_size:
                self.dropped += 1
                logger.log_operation("sync.enqueue", "dropped_oldest", {"queue_size": self.max_size})
            self._queue.append(interaction)

    def pending(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _drain(self) -> List[LearningInteraction]:
        with self._queue_lock:
            batch = list(self._queue)
            self._queue.clear()
        return batch

    async def flush(self) -> int:
        """Drain the queue into the predictor. Returns the number of interactions drained."""
        if self._flush_lock.locked():
            return 0

        async with self._flush_lock:
            batch = self._drain()
            if not batch:
                return 0

            by_user: Dict[str, List[LearningInteraction]] = OrderedDict()
            for interaction in batch:
                by_user.setdefault(interaction.user_id, []).append(interaction)

            failed_users = []
            for user_id, interactions in by_user.items():
                accepted = await self.predictor.train_or_update(user_id, interactions)
                if not accepted:
                    failed_users.append(user_id)

            logger.log_sync_flush(len(batch), len(by_user), failed_users)
            return len(batch)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                # Error isolation - log and keep the loop alive
                logger.log_operation("sync.flush", "failed", {"error": str(e)[:100]})

    def start(self) -> None:
        """Start the periodic drain on the running event loop."""
        if self.running:
            raise RuntimeError("Sync queue already running")
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.log_operation("sync.start", "success", {"flush_interval": self.flush_interval})

    async def stop(self) -> int:
        """Cancel the periodic drain and flush what is left."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        drained = await self.flush()
        logger.log_operation("sync.stop", "success", {"drained": drained})
        return drained
