"""Domain types for the tracker dataset.

Entities are frozen dataclasses and collections are read-only mappings keyed
by id, so a Dataset handed out by the store cannot be mutated in place.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

SCHEMA_VERSION = 1

DEFAULT_BASELINE = "rolling_4_week_avg"
DEFAULT_COMPARISON = "last_week"

# Python attribute name -> JSON key
COLLECTION_KEYS: dict[str, str] = {
    "activity_items": "activityItems",
    "food_items": "foodItems",
    "activity_categories": "activityCategories",
    "food_categories": "foodCategories",
    "entries": "entries",
    "dashboard_cards": "dashboardCards",
}
COLLECTIONS: tuple[str, ...] = tuple(COLLECTION_KEYS)

# Favorites are an id list, not a collection, but un-favorites are tombstoned too
FAVORITES = "favorite_items"
LEDGER_KINDS: tuple[str, ...] = COLLECTIONS + (FAVORITES,)


class EntryType(str, Enum):
    """Kind of a log entry (and of the item/category it refers to)."""

    ACTIVITY = "activity"
    FOOD = "food"


class CategorySentiment(str, Enum):
    """How a category counts towards the daily balance."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    LIMIT = "limit"


def generate_id() -> str:
    """Generate a fresh entity id."""
    return uuid.uuid4().hex


def items_key(entry_type: EntryType | str) -> str:
    return "activity_items" if EntryType(entry_type) is EntryType.ACTIVITY else "food_items"


def categories_key(entry_type: EntryType | str) -> str:
    return (
        "activity_categories"
        if EntryType(entry_type) is EntryType.ACTIVITY
        else "food_categories"
    )


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    sentiment: CategorySentiment = CategorySentiment.NEUTRAL

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "sentiment": self.sentiment.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Category":
        return cls(
            id=data["id"],
            name=data["name"],
            sentiment=CategorySentiment(data.get("sentiment") or "neutral"),
        )


@dataclass(frozen=True)
class Item:
    id: str
    name: str
    categories: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "categories": list(self.categories)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            id=data["id"],
            name=data["name"],
            categories=tuple(data.get("categories", [])),
        )


@dataclass(frozen=True)
class Entry:
    """A single logged food or activity occurrence.

    Date and time are stored exactly as given (``YYYY-MM-DD`` / ``HH:MM``);
    the item and category references are ids that may dangle.
    """

    id: str
    type: EntryType
    item_id: str
    date: str
    time: str | None = None
    notes: str | None = None
    category_overrides: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "itemId": self.item_id,
            "date": self.date,
            "time": self.time,
            "notes": self.notes,
            "categoryOverrides": (
                list(self.category_overrides)
                if self.category_overrides is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entry":
        overrides = data.get("categoryOverrides")
        return cls(
            id=data["id"],
            type=EntryType(data["type"]),
            item_id=data["itemId"],
            date=data["date"],
            time=data.get("time"),
            notes=data.get("notes"),
            category_overrides=tuple(overrides) if overrides is not None else None,
        )


@dataclass(frozen=True)
class DashboardCard:
    """A dashboard tile tracking one category. Keyed by ``category_id``."""

    category_id: str
    baseline: str = DEFAULT_BASELINE
    comparison: str = DEFAULT_COMPARISON

    @property
    def id(self) -> str:
        return self.category_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "baseline": self.baseline,
            "comparison": self.comparison,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DashboardCard":
        return cls(
            category_id=data["categoryId"],
            baseline=data.get("baseline", DEFAULT_BASELINE),
            comparison=data.get("comparison", DEFAULT_COMPARISON),
        )


_ENTITY_TYPES: dict[str, type] = {
    "activity_items": Item,
    "food_items": Item,
    "activity_categories": Category,
    "food_categories": Category,
    "entries": Entry,
    "dashboard_cards": DashboardCard,
}


def _empty() -> Mapping[str, Any]:
    return MappingProxyType({})


@dataclass(frozen=True)
class Dataset:
    """The full exportable unit: six collections plus bookkeeping fields."""

    activity_items: Mapping[str, Item] = field(default_factory=_empty)
    food_items: Mapping[str, Item] = field(default_factory=_empty)
    activity_categories: Mapping[str, Category] = field(default_factory=_empty)
    food_categories: Mapping[str, Category] = field(default_factory=_empty)
    entries: Mapping[str, Entry] = field(default_factory=_empty)
    dashboard_cards: Mapping[str, DashboardCard] = field(default_factory=_empty)
    favorite_items: tuple[str, ...] = ()
    dashboard_initialized: bool = False
    version: int = SCHEMA_VERSION

    def __post_init__(self) -> None:
        for name in COLLECTIONS:
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, MappingProxyType(dict(value)))
        if not isinstance(self.favorite_items, tuple):
            object.__setattr__(self, "favorite_items", tuple(self.favorite_items))

    def collection(self, kind: str) -> Mapping[str, Any]:
        if kind not in COLLECTION_KEYS:
            raise KeyError(f"Unknown collection: {kind}")
        return getattr(self, kind)

    def with_collection(self, kind: str, values: Mapping[str, Any]) -> "Dataset":
        """Return a copy with one collection replaced."""
        if kind not in COLLECTION_KEYS:
            raise KeyError(f"Unknown collection: {kind}")
        return replace(self, **{kind: values})

    def without(self, tombstones: Mapping[str, Iterable[str]]) -> "Dataset":
        """Return a copy with every tombstoned id dropped from its collection."""
        changes: dict[str, Any] = {}
        for kind, ids in tombstones.items():
            dead = set(ids)
            if kind == FAVORITES:
                if dead.intersection(self.favorite_items):
                    changes[kind] = tuple(f for f in self.favorite_items if f not in dead)
                continue
            current = self.collection(kind)
            if current.keys() & dead:
                changes[kind] = {k: v for k, v in current.items() if k not in dead}
        return replace(self, **changes) if changes else self

    def count(self) -> dict[str, int]:
        return {kind: len(self.collection(kind)) for kind in COLLECTIONS}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON document layout (camelCase, arrays)."""
        data: dict[str, Any] = {}
        for kind, key in COLLECTION_KEYS.items():
            data[key] = [entity.to_dict() for entity in self.collection(kind).values()]
        data["dashboardInitialized"] = self.dashboard_initialized
        data["favoriteItems"] = list(self.favorite_items)
        data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Dataset":
        """Build a Dataset from an already-validated document."""
        kwargs: dict[str, Any] = {}
        for kind, key in COLLECTION_KEYS.items():
            entity_type = _ENTITY_TYPES[kind]
            entities = [entity_type.from_dict(raw) for raw in data.get(key) or []]
            kwargs[kind] = {entity.id: entity for entity in entities}
        return cls(
            favorite_items=tuple(data.get("favoriteItems") or ()),
            dashboard_initialized=bool(data.get("dashboardInitialized", False)),
            version=int(data.get("version", 0)),
            **kwargs,
        )
