#!/usr/bin/env python3
"""
Index Rebuild Utility
(Re)indexes vocabulary items from a JSON file into one collection.

The file holds a list of objects: {"id": ..., "text": ..., "metadata": {...}}.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List

from vocabmind.core.config import COLLECTIONS, load_config
from vocabmind.core.container import ServiceContainer
from vocabmind.core.errors import VocabMindError
from vocabmind.vector.types import IndexDocument


def load_items(path: Path) -> List[IndexDocument]:
    """Read and validate the item file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, list):
        raise ValueError("Item file must contain a JSON list")

    items = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("text"):
            raise ValueError(f"Entry {position} needs non-empty 'id' and 'text'")
        items.append(IndexDocument(id=str(entry["id"]), text=str(entry["text"]),
                                   metadata=dict(entry.get("metadata") or {})))
    return items


async def rebuild(container: ServiceContainer, collection: str, items: List[IndexDocument],
                  batch_size: int = 100, clear: bool = True) -> int:
    store = container.engine.store_for(collection)

    if clear:
        store.clear()
        print(f"✓ Cleared existing '{collection}' index")

    indexed = 0
    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        try:
            indexed += await container.engine.index_items(collection, batch)
        except VocabMindError as e:
            print(f"ERROR: Failed to index batch starting at {start}: {e}")
            continue
        print(f"  ... indexed {indexed}/{len(items)} items")

    print(f"✓ Successfully rebuilt '{collection}' with {indexed} vectors")

    # Quick smoke test - search for the first item's text
    if indexed:
        response = await container.engine.search(items[0].text, collection, k=min(3, indexed))
        print(f"✓ Verification search returned {response.total_results} results ({response.source.value})")

    return indexed


def main(argv=None):
    parser = argparse.ArgumentParser(description="Rebuild a vocabulary vector index from a JSON file")
    parser.add_argument("items_file", type=Path, help="JSON list of {id, text, metadata} objects")
    parser.add_argument("--collection", default="vocabulary", choices=list(COLLECTIONS))
    parser.add_argument("--preset", default=None, help="Configuration preset (default: VOCABMIND_ENVIRONMENT)")
    parser.add_argument("--batch-size", type=int, default=100)
    parser.add_argument("--keep", action="store_true", help="Do not clear the collection first")
    args = parser.parse_args(argv)

    if not args.items_file.exists():
        print(f"ERROR: Item file not found: {args.items_file}")
        return 1

    try:
        items = load_items(args.items_file)
    except (ValueError, json.JSONDecodeError) as e:
        print(f"ERROR: {e}")
        return 1

    print(f"Found {len(items)} items in {args.items_file}")
    if not items:
        print("No entries to rebuild. Exiting.")
        return 0

    container = ServiceContainer.build(load_config(preset=args.preset))
    asyncio.run(rebuild(container, args.collection, items, batch_size=args.batch_size, clear=not args.keep))
    print("Index rebuild complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
