"""Entity-level merge of a remote dataset into the local one."""

from dataclasses import replace
from typing import Iterable, Mapping

from ..models import COLLECTIONS, FAVORITES, Dataset


def merge_datasets(
    local: Dataset,
    remote: Dataset,
    tombstones: Mapping[str, Iterable[str]] | None = None,
) -> Dataset:
    """Union of both datasets by id, local winning on collisions.

    Remote entities whose ids are tombstoned are left out, so a stale remote
    copy cannot bring back something deleted locally. Records are never
    merged field by field.

    Args:
        local: The local dataset (authoritative).
        remote: The dataset read from the remote document.
        tombstones: Per-collection ids deleted locally.

    Returns:
        The merged dataset, or ``local`` itself if the remote adds nothing.
    """
    dead = {kind: set(ids) for kind, ids in (tombstones or {}).items()}
    changes: dict[str, dict] = {}

    for kind in COLLECTIONS:
        local_entities = local.collection(kind)
        excluded = dead.get(kind, set())
        additions = {
            entity_id: entity
            for entity_id, entity in remote.collection(kind).items()
            if entity_id not in local_entities and entity_id not in excluded
        }
        if additions:
            changes[kind] = {**local_entities, **additions}

    item_ids = set(changes.get("activity_items", local.activity_items))
    item_ids |= set(changes.get("food_items", local.food_items))
    unfavorited = dead.get(FAVORITES, set())
    favorites = list(local.favorite_items)
    for item_id in remote.favorite_items:
        if item_id not in favorites and item_id not in unfavorited:
            favorites.append(item_id)
    favorites = [item_id for item_id in favorites if item_id in item_ids]

    initialized = local.dashboard_initialized or remote.dashboard_initialized
    if (
        not changes
        and tuple(favorites) == local.favorite_items
        and initialized == local.dashboard_initialized
    ):
        return local

    return replace(
        local,
        favorite_items=tuple(favorites),
        dashboard_initialized=initialized,
        **changes,
    )
