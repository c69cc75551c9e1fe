"""In-memory dataset with durable local persistence and change notification."""

import json
import logging
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping

from ..errors import ImportDataError, ValidationError
from ..models import (
    COLLECTIONS,
    FAVORITES,
    Category,
    CategorySentiment,
    DashboardCard,
    Dataset,
    Entry,
    EntryType,
    Item,
    categories_key,
    generate_id,
    items_key,
)
from ..schemas import validate_dataset
from .local_db import DATA_KEY, TOMBSTONES_KEY, LocalDatabase
from .merge import merge_datasets
from .migration import prepare_dataset
from .tombstones import TombstoneLedger

logger = logging.getLogger(__name__)

Listener = Callable[[Dataset], None]

_ENTRY_FIELDS = {"date", "time", "notes", "category_overrides"}


def _entry_type(value: EntryType | str) -> EntryType:
    try:
        return EntryType(value)
    except ValueError:
        raise ValidationError(f"Unknown entry type: {value!r}") from None


def _sentiment(value: CategorySentiment | str) -> CategorySentiment:
    try:
        return CategorySentiment(value)
    except ValueError:
        raise ValidationError(f"Unknown sentiment: {value!r}") from None


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name must be a non-empty string")
    return name.strip()


def _required(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label} must be a non-empty string")
    return value


def _id_list(values: Iterable[str] | None, label: str) -> tuple[str, ...] | None:
    if values is None:
        return None
    if isinstance(values, str):
        raise ValidationError(f"{label} must be a list of ids")
    ids = tuple(values)
    if not all(isinstance(i, str) for i in ids):
        raise ValidationError(f"{label} must be a list of ids")
    return ids


def parse_dataset(payload: str | bytes) -> Dataset:
    """Decode and validate a serialized dataset.

    Raises:
        ImportDataError: If the payload is not JSON or has the wrong shape.
    """
    try:
        raw = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise ImportDataError(f"Payload is not valid JSON: {e}") from e

    valid, error = validate_dataset(raw, "import payload")
    if not valid:
        raise ImportDataError(error)

    return prepare_dataset(Dataset.from_dict(raw))


class DataStore:
    """Single source of truth for the tracker dataset.

    Every mutation builds a new Dataset, persists it together with the
    tombstone ledger, swaps it in and then notifies subscribers. A mutation
    that fails validation leaves everything untouched. ``snapshot()``
    returns the same object until the next committed mutation.
    """

    def __init__(self, db: LocalDatabase):
        """Initialize the store from local storage.

        Args:
            db: Local database holding the persisted dataset and tombstones.
        """
        self._db = db
        self._listeners: list[Listener] = []
        self._data, self._tombstones = self._load()

    def _load(self) -> tuple[Dataset, TombstoneLedger]:
        raw = self._db.get_json(DATA_KEY)
        data = Dataset()
        if raw is not None:
            valid, error = validate_dataset(raw, "local dataset")
            if valid:
                data = Dataset.from_dict(raw)
            else:
                logger.warning(f"Discarding unreadable local data: {error}")

        tombstones = TombstoneLedger.from_dict(self._db.get_json(TOMBSTONES_KEY))
        data = prepare_dataset(data)
        logger.info(
            f"Loaded {len(data.entries)} entries, {len(tombstones)} pending deletions"
        )
        return data, tombstones

    # ------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------

    def snapshot(self) -> Dataset:
        """Current dataset. Stable between mutations."""
        return self._data

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the new snapshot after each change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def tombstones(self) -> dict[str, frozenset[str]]:
        """Read-only copy of the pending deletions."""
        return self._tombstones.snapshot()

    def _notify(self) -> None:
        data = self._data
        for listener in list(self._listeners):
            try:
                listener(data)
            except Exception as e:
                logger.error(f"Store listener failed: {e}", exc_info=True)

    def _commit(
        self,
        data: Dataset,
        deleted: Mapping[str, Iterable[str]] | None = None,
        revived: Mapping[str, Iterable[str]] | None = None,
        reset_tombstones: bool = False,
    ) -> None:
        staged = TombstoneLedger() if reset_tombstones else TombstoneLedger(
            self._tombstones.snapshot()
        )
        for kind, ids in (deleted or {}).items():
            for entity_id in ids:
                staged.mark_deleted(kind, entity_id)
        # Ids that are live again must not be stripped from the next push
        for kind, ids in (revived or {}).items():
            staged.clear(kind, ids)

        self._db.put_json({DATA_KEY: data.to_dict(), TOMBSTONES_KEY: staged.to_dict()})
        self._data = data
        self._tombstones = staged
        self._notify()

    # ------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------

    def add_entry(
        self,
        entry_type: EntryType | str,
        item_id: str,
        date: str,
        time: str | None = None,
        notes: str | None = None,
        category_overrides: Iterable[str] | None = None,
    ) -> Entry:
        entry = Entry(
            id=generate_id(),
            type=_entry_type(entry_type),
            item_id=_required(item_id, "Item id"),
            date=_required(date, "Date"),
            time=time,
            notes=notes,
            category_overrides=_id_list(category_overrides, "Category overrides"),
        )
        self._commit(
            self._data.with_collection("entries", {**self._data.entries, entry.id: entry})
        )
        return entry

    def update_entry(self, entry_id: str, **updates: Any) -> Entry | None:
        """Edit date, time, notes or category overrides of an entry.

        Returns:
            The updated entry, or None if no entry has that id.
        """
        unknown = set(updates) - _ENTRY_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update entry fields: {', '.join(sorted(unknown))}")
        if "date" in updates:
            _required(updates["date"], "Date")
        if "category_overrides" in updates:
            updates["category_overrides"] = _id_list(
                updates["category_overrides"], "Category overrides"
            )

        current = self._data.entries.get(entry_id)
        if current is None:
            return None

        entry = replace(current, **updates)
        self._commit(
            self._data.with_collection("entries", {**self._data.entries, entry_id: entry})
        )
        return entry

    def delete_entry(self, entry_id: str) -> bool:
        return self._delete("entries", entry_id)

    def _delete(self, kind: str, entity_id: str) -> bool:
        current = self._data.collection(kind)
        if entity_id not in current:
            logger.debug(f"Delete of missing {kind} id {entity_id} ignored")
            return False

        remaining = {k: v for k, v in current.items() if k != entity_id}
        self._commit(
            self._data.with_collection(kind, remaining), deleted={kind: [entity_id]}
        )
        return True

    # ------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------

    def add_category(
        self,
        entry_type: EntryType | str,
        name: str,
        sentiment: CategorySentiment | str = CategorySentiment.NEUTRAL,
    ) -> Category:
        key = categories_key(_entry_type(entry_type))
        category = Category(
            id=generate_id(), name=_clean_name(name), sentiment=_sentiment(sentiment)
        )
        self._commit(
            self._data.with_collection(
                key, {**self._data.collection(key), category.id: category}
            )
        )
        return category

    def update_category(
        self,
        entry_type: EntryType | str,
        category_id: str,
        name: str,
        sentiment: CategorySentiment | str | None = None,
    ) -> Category | None:
        key = categories_key(_entry_type(entry_type))
        clean = _clean_name(name)
        new_sentiment = _sentiment(sentiment) if sentiment is not None else None

        current = self._data.collection(key).get(category_id)
        if current is None:
            return None

        category = replace(current, name=clean, sentiment=new_sentiment or current.sentiment)
        self._commit(
            self._data.with_collection(
                key, {**self._data.collection(key), category_id: category}
            )
        )
        return category

    def delete_category(self, entry_type: EntryType | str, category_id: str) -> bool:
        """Delete a category and drop it from items and entry overrides of that type."""
        entry_type = _entry_type(entry_type)
        cat_key = categories_key(entry_type)
        item_key = items_key(entry_type)

        categories = self._data.collection(cat_key)
        if category_id not in categories:
            return False

        items = {
            item_id: (
                replace(item, categories=tuple(c for c in item.categories if c != category_id))
                if category_id in item.categories
                else item
            )
            for item_id, item in self._data.collection(item_key).items()
        }
        entries = {
            entry_id: (
                replace(
                    entry,
                    category_overrides=tuple(
                        c for c in entry.category_overrides if c != category_id
                    ),
                )
                if entry.type is entry_type
                and entry.category_overrides
                and category_id in entry.category_overrides
                else entry
            )
            for entry_id, entry in self._data.entries.items()
        }

        data = replace(
            self._data,
            **{
                cat_key: {k: v for k, v in categories.items() if k != category_id},
                item_key: items,
                "entries": entries,
            },
        )
        self._commit(data, deleted={cat_key: [category_id]})
        return True

    # ------------------------------------------------------------
    # Items
    # ------------------------------------------------------------

    def add_item(
        self,
        entry_type: EntryType | str,
        name: str,
        category_ids: Iterable[str] = (),
    ) -> Item:
        key = items_key(_entry_type(entry_type))
        item = Item(
            id=generate_id(),
            name=_clean_name(name),
            categories=_id_list(category_ids, "Category ids") or (),
        )
        self._commit(
            self._data.with_collection(key, {**self._data.collection(key), item.id: item})
        )
        return item

    def update_item(
        self,
        entry_type: EntryType | str,
        item_id: str,
        name: str,
        category_ids: Iterable[str],
    ) -> Item | None:
        key = items_key(_entry_type(entry_type))
        clean = _clean_name(name)
        categories = _id_list(category_ids, "Category ids") or ()

        current = self._data.collection(key).get(item_id)
        if current is None:
            return None

        item = replace(current, name=clean, categories=categories)
        self._commit(
            self._data.with_collection(key, {**self._data.collection(key), item_id: item})
        )
        return item

    def delete_item(self, entry_type: EntryType | str, item_id: str) -> bool:
        """Delete an item together with every entry that logs it."""
        entry_type = _entry_type(entry_type)
        key = items_key(entry_type)

        items = self._data.collection(key)
        if item_id not in items:
            return False

        doomed = [
            entry_id
            for entry_id, entry in self._data.entries.items()
            if entry.type is entry_type and entry.item_id == item_id
        ]
        data = replace(
            self._data,
            **{
                key: {k: v for k, v in items.items() if k != item_id},
                "entries": {
                    k: v for k, v in self._data.entries.items() if k not in set(doomed)
                },
                "favorite_items": tuple(
                    f for f in self._data.favorite_items if f != item_id
                ),
            },
        )
        deleted = {key: [item_id], "entries": doomed}
        if item_id in self._data.favorite_items:
            deleted[FAVORITES] = [item_id]
        self._commit(data, deleted=deleted)
        return True

    # ------------------------------------------------------------
    # Dashboard cards and favorites
    # ------------------------------------------------------------

    def add_dashboard_card(self, category_id: str) -> DashboardCard:
        _required(category_id, "Category id")
        existing = self._data.dashboard_cards.get(category_id)
        if existing is not None:
            return existing

        card = DashboardCard(category_id=category_id)
        self._commit(
            self._data.with_collection(
                "dashboard_cards", {**self._data.dashboard_cards, category_id: card}
            ),
            revived={"dashboard_cards": [category_id]},
        )
        return card

    def remove_dashboard_card(self, category_id: str) -> bool:
        return self._delete("dashboard_cards", category_id)

    def toggle_favorite(self, item_id: str) -> bool:
        """Flip the favorite flag of an item.

        Returns:
            True if the item is a favorite afterwards.
        """
        _required(item_id, "Item id")
        favorites = self._data.favorite_items
        if item_id in favorites:
            self._commit(
                replace(self._data, favorite_items=tuple(f for f in favorites if f != item_id)),
                deleted={FAVORITES: [item_id]},
            )
            return False

        self._commit(
            replace(self._data, favorite_items=favorites + (item_id,)),
            revived={FAVORITES: [item_id]},
        )
        return True

    def is_favorite(self, item_id: str) -> bool:
        return item_id in self._data.favorite_items

    # ------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------

    def get_item(self, entry_type: EntryType | str, item_id: str) -> Item | None:
        return self._data.collection(items_key(entry_type)).get(item_id)

    def get_category(self, entry_type: EntryType | str, category_id: str) -> Category | None:
        return self._data.collection(categories_key(entry_type)).get(category_id)

    def get_category_names(
        self, entry_type: EntryType | str, category_ids: Iterable[str]
    ) -> list[str]:
        """Names for the given ids, skipping ids that no longer exist."""
        categories = self._data.collection(categories_key(entry_type))
        return [categories[c].name for c in category_ids if c in categories]

    # ------------------------------------------------------------
    # Whole-dataset operations
    # ------------------------------------------------------------

    def export_data(self) -> str:
        return json.dumps(self._data.to_dict(), indent=2)

    def import_data(self, payload: str | bytes) -> Dataset:
        """Replace the whole dataset with a serialized one.

        Pending deletions are discarded: the import supersedes them.

        Raises:
            ImportDataError: If the payload is malformed. Nothing changes.
        """
        data = parse_dataset(payload)
        self._commit(data, reset_tombstones=True)
        logger.info(f"Imported dataset with {len(data.entries)} entries")
        return data

    def replace_data(self, data: Dataset) -> None:
        """Adopt a dataset wholesale (remote load, backup restore)."""
        self._commit(prepare_dataset(data), reset_tombstones=True)

    def reset(self) -> None:
        """Drop all local data and pending deletions."""
        self._commit(prepare_dataset(Dataset()), reset_tombstones=True)
        logger.info("Local dataset reset")

    def merge_remote(
        self, remote: Dataset, tombstones: Mapping[str, Iterable[str]] | None = None
    ) -> int:
        """Fold remote-only entities into the local dataset.

        Ids in the current ledger or in ``tombstones`` are never added back.

        Returns:
            Number of entities added.
        """
        excluded = {kind: set(ids) for kind, ids in self._tombstones.snapshot().items()}
        for kind, ids in (tombstones or {}).items():
            excluded.setdefault(kind, set()).update(ids)

        merged = merge_datasets(self._data, remote, excluded)
        if merged is self._data:
            return 0
        added = sum(
            len(merged.collection(kind)) - len(self._data.collection(kind))
            for kind in COLLECTIONS
        )
        self._commit(merged)
        return added

    def confirm_deletions(self, confirmed: Mapping[str, Iterable[str]]) -> int:
        """Clear tombstones whose removal the remote document now reflects.

        Ids deleted after ``confirmed`` was captured stay pending.

        Returns:
            Number of tombstones cleared.
        """
        staged = TombstoneLedger(self._tombstones.snapshot())
        cleared = staged.clear_confirmed(confirmed)
        if cleared:
            self._db.put_json({TOMBSTONES_KEY: staged.to_dict()})
            self._tombstones = staged
            logger.debug(f"Cleared {cleared} confirmed tombstones")
        return cleared

    def storage_stats(self) -> dict[str, Any]:
        return self._db.get_stats()

    def close(self) -> None:
        self._db.close()
