"""
Tests for the background learning-interaction sync queue.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from vocabmind.learning import InteractionSyncQueue, LearningInteraction

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def interaction(user_id, item_id, success=True):
    return LearningInteraction(user_id=user_id, item_id=item_id, success=success,
                               quality=4 if success else 1, occurred_at=NOW)


@pytest.fixture
def predictor():
    mock = AsyncMock()
    mock.train_or_update.return_value = True
    return mock


def test_flush_groups_interactions_by_user(predictor):
    queue = InteractionSyncQueue(predictor, flush_interval=30.0, max_size=10)
    queue.enqueue(interaction("u1", "apple"))
    queue.enqueue(interaction("u2", "pear"))
    queue.enqueue(interaction("u1", "plum"))

    drained = asyncio.run(queue.flush())

    assert drained == 3
    assert queue.pending() == 0
    calls = {c.args[0]: [i.item_id for i in c.args[1]] for c in predictor.train_or_update.call_args_list}
    assert calls == {"u1": ["apple", "plum"], "u2": ["pear"]}


def test_empty_flush_is_noop(predictor):
    queue = InteractionSyncQueue(predictor)

    assert asyncio.run(queue.flush()) == 0
    predictor.train_or_update.assert_not_called()


def test_full_queue_drops_oldest(predictor):
    queue = InteractionSyncQueue(predictor, max_size=2)
    for item_id in ("a", "b", "c"):
        queue.enqueue(interaction("u1", item_id))

    assert queue.pending() == 2
    assert queue.dropped == 1

    asyncio.run(queue.flush())
    items = [i.item_id for i in predictor.train_or_update.call_args.args[1]]
    assert items == ["b", "c"]


def test_rejected_batches_do_not_raise(predictor):
    predictor.train_or_update.return_value = False
    queue = InteractionSyncQueue(predictor)
    queue.enqueue(interaction("u1", "apple"))

    assert asyncio.run(queue.flush()) == 1


def test_concurrent_flush_is_skipped_and_producers_never_block():
    release = None
    entered = None

    async def slow_train(user_id, interactions):
        entered.set()
        await release.wait()
        return True

    predictor = AsyncMock()
    predictor.train_or_update.side_effect = slow_train
    queue = InteractionSyncQueue(predictor)

    async def scenario():
        nonlocal release, entered
        release = asyncio.Event()
        entered = asyncio.Event()
        queue.enqueue(interaction("u1", "apple"))

        first = asyncio.create_task(queue.flush())
        await entered.wait()

        # a second flush while the first holds the lock does nothing
        assert await queue.flush() == 0
        # producers can still enqueue during a flush
        queue.enqueue(interaction("u1", "pear"))
        assert queue.pending() == 1

        release.set()
        assert await first == 1
        return await queue.flush()

    assert asyncio.run(scenario()) == 1


def test_start_and_stop_flush_remaining(predictor):
    queue = InteractionSyncQueue(predictor, flush_interval=60.0)

    async def scenario():
        queue.start()
        assert queue.running
        with pytest.raises(RuntimeError):
            queue.start()
        queue.enqueue(interaction("u1", "apple"))
        return await queue.stop()

    assert asyncio.run(scenario()) == 1
    assert not queue.running
    predictor.train_or_update.assert_awaited_once()


def test_periodic_drain_runs_on_interval(predictor):
    queue = InteractionSyncQueue(predictor, flush_interval=0.01)

    async def scenario():
        queue.enqueue(interaction("u1", "apple"))
        queue.start()
        await asyncio.sleep(0.1)
        await queue.stop()

    asyncio.run(scenario())
    predictor.train_or_update.assert_awaited()
    assert queue.pending() == 0


def test_invalid_settings_rejected(predictor):
    with pytest.raises(ValueError):
        InteractionSyncQueue(predictor, flush_interval=0)
    with pytest.raises(ValueError):
        InteractionSyncQueue(predictor, max_size=0)
