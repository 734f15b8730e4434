"""
Tests for the index rebuild utility.
"""

import asyncio
import importlib.util
import json
from pathlib import Path

import pytest

from vocabmind.core.config import load_config
from vocabmind.core.container import ServiceContainer
from vocabmind.vector.types import IndexDocument

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "rebuild_index.py"


@pytest.fixture(scope="module")
def rebuild_index():
    spec = importlib.util.spec_from_file_location("rebuild_index", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def container():
    config = load_config(preset="development", overrides={
        "index": {"provider": "memory", "dimensions": 32},
        "search": {"similarity_threshold": 0.0},
    }, use_env=False)
    return ServiceContainer.build(config)


def write_items(tmp_path, payload):
    path = tmp_path / "items.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_load_items_reads_documents(rebuild_index, tmp_path):
    path = write_items(tmp_path, [
        {"id": "apple", "text": "apple red fruit", "metadata": {"level": 1}},
        {"id": 7, "text": "seven"},
    ])

    items = rebuild_index.load_items(path)

    assert items[0] == IndexDocument(id="apple", text="apple red fruit", metadata={"level": 1})
    assert items[1].id == "7"
    assert items[1].metadata == {}


@pytest.mark.parametrize("payload", [
    {"id": "apple", "text": "apple"},
    [{"id": "apple"}],
    [{"id": "", "text": "apple"}],
    ["apple"],
])
def test_load_items_rejects_malformed_files(rebuild_index, tmp_path, payload):
    with pytest.raises(ValueError):
        rebuild_index.load_items(write_items(tmp_path, payload))


def test_rebuild_clears_and_indexes_in_batches(rebuild_index, container, capsys):
    store = container.engine.store_for("vocabulary")
    store.upsert("stale", [1.0] + [0.0] * 31)
    items = [IndexDocument(id=f"w{i}", text=f"word number {i}") for i in range(5)]

    indexed = asyncio.run(rebuild_index.rebuild(container, "vocabulary", items, batch_size=2))

    assert indexed == 5
    assert store.count() == 5
    assert store.get("stale") is None
    output = capsys.readouterr().out
    assert "✓ Successfully rebuilt 'vocabulary' with 5 vectors" in output
    assert "Verification search returned" in output


def test_rebuild_keep_preserves_existing(rebuild_index, container):
    store = container.engine.store_for("vocabulary")
    store.upsert("stale", [1.0] + [0.0] * 31)

    asyncio.run(rebuild_index.rebuild(container, "vocabulary", [IndexDocument(id="w1", text="word")], clear=False))

    assert store.count() == 2


def test_main_missing_file_returns_error(rebuild_index, tmp_path, capsys):
    assert rebuild_index.main([str(tmp_path / "missing.json")]) == 1
    assert "ERROR: Item file not found" in capsys.readouterr().out


def test_main_invalid_file_returns_error(rebuild_index, tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    assert rebuild_index.main([str(path)]) == 1


def test_main_empty_file_exits_cleanly(rebuild_index, tmp_path, capsys):
    assert rebuild_index.main([str(write_items(tmp_path, []))]) == 0
    assert "No entries to rebuild" in capsys.readouterr().out


def test_main_rebuilds_with_memory_index(rebuild_index, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("VOCABMIND_INDEX_PROVIDER", "memory")
    monkeypatch.setenv("VOCABMIND_EMBEDDING_PROVIDER", "hash")
    path = write_items(tmp_path, [{"id": "apple", "text": "apple red fruit"}])

    assert rebuild_index.main([str(path), "--preset", "development"]) == 0
    assert "Index rebuild complete!" in capsys.readouterr().out
