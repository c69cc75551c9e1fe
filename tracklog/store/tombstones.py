"""Ledger of ids deleted locally but not yet confirmed deleted remotely."""

import logging
from typing import Any, Iterable, Mapping

from ..models import LEDGER_KINDS

logger = logging.getLogger(__name__)


class TombstoneLedger:
    """One set of deleted ids per collection, plus one for un-favorited items.

    The ledger does not check that a tombstoned id is absent from the live
    collection; the DataStore keeps that true.
    """

    def __init__(self, initial: Mapping[str, Iterable[str]] | None = None):
        self._sets: dict[str, set[str]] = {kind: set() for kind in LEDGER_KINDS}
        for kind, ids in (initial or {}).items():
            if kind in self._sets:
                self._sets[kind].update(ids)
            else:
                logger.warning(f"Dropping tombstones for unknown collection {kind!r}")

    def _set_for(self, kind: str) -> set[str]:
        try:
            return self._sets[kind]
        except KeyError:
            raise KeyError(f"Unknown collection: {kind}") from None

    def mark_deleted(self, kind: str, entity_id: str) -> None:
        self._set_for(kind).add(entity_id)

    def clear(self, kind: str, ids: Iterable[str]) -> int:
        """Remove exactly the given ids from one collection's set.

        Returns:
            Number of ids actually removed.
        """
        tombstones = self._set_for(kind)
        removed = 0
        for entity_id in ids:
            if entity_id in tombstones:
                tombstones.discard(entity_id)
                removed += 1
        return removed

    def clear_confirmed(self, confirmed: Mapping[str, Iterable[str]]) -> int:
        """Clear every id in a snapshot previously taken with snapshot()."""
        return sum(self.clear(kind, ids) for kind, ids in confirmed.items())

    def contains(self, kind: str, entity_id: str) -> bool:
        return entity_id in self._set_for(kind)

    def snapshot(self) -> dict[str, frozenset[str]]:
        """Read-only copy of all sets."""
        return {kind: frozenset(ids) for kind, ids in self._sets.items()}

    def is_empty(self) -> bool:
        return not any(self._sets.values())

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._sets.values())

    def to_dict(self) -> dict[str, list[str]]:
        return {kind: sorted(ids) for kind, ids in self._sets.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "TombstoneLedger":
        """Rebuild from persisted data; anything malformed yields an empty ledger."""
        if not isinstance(data, dict):
            return cls()
        initial: dict[str, list[str]] = {}
        for kind, ids in data.items():
            if isinstance(ids, list) and all(isinstance(i, str) for i in ids):
                initial[kind] = ids
        return cls(initial)
