"""
Merge helpers for overlapping fetches.
The card source is queried once per sync-state partition and the same
transaction can come back from more than one partition.
"""

from typing import Any, Callable, Iterable, Optional, TypeVar

from ..models.records import ExternalRecord

T = TypeVar("T")
K = TypeVar("K")


def merge_preferring_non_null(
    items: Iterable[T],
    key: Callable[[T], K],
    attribute: Callable[[T], Optional[Any]],
) -> list[T]:
    """
    Collapse items sharing a key, keeping first-seen order.

    The first item seen for a key is kept unless a later one carries a
    non-null ``attribute`` where the kept one has null.

    Args:
        items: Items to merge
        key: Identity of an item
        attribute: Value that should win when present

    Returns:
        One item per key
    """
    merged: dict[K, T] = {}
    for item in items:
        item_key = key(item)
        current = merged.get(item_key)
        if current is None:
            merged[item_key] = item
        elif attribute(current) is None and attribute(item) is not None:
            merged[item_key] = item
    return list(merged.values())


def dedupe_partitions(partitions: Iterable[list[ExternalRecord]]) -> list[ExternalRecord]:
    """Flatten per-partition fetches into one record per source id."""
    flattened = [record for partition in partitions for record in partition]
    return merge_preferring_non_null(
        flattened,
        key=lambda r: r.source_id,
        attribute=lambda r: r.known_sync_state,
    )
