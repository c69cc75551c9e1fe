"""Tests for the local data store."""

import json
import random
import pytest

from tracklog.errors import ImportDataError, ValidationError
from tracklog.models import Dataset
from tracklog.store import DataStore, LocalDatabase, TombstoneLedger
from tracklog.store.local_db import DATA_KEY, TOMBSTONES_KEY


@pytest.fixture
def db():
    """Create an in-memory local database."""
    db = LocalDatabase(":memory:")
    db.connect()
    yield db
    db.close()


@pytest.fixture
def store(db):
    """Create an empty store."""
    return DataStore(db)


def valid_payload(**overrides):
    payload = {
        "activityItems": [],
        "foodItems": [{"id": "f1", "name": "Apple", "categories": ["c1"]}],
        "activityCategories": [],
        "foodCategories": [{"id": "c1", "name": "Fruit", "sentiment": "positive"}],
        "entries": [
            {"id": "e1", "type": "food", "itemId": "f1", "date": "2024-01-15", "time": "08:30"}
        ],
        "dashboardInitialized": True,
        "version": 1,
    }
    payload.update(overrides)
    return json.dumps(payload)


class TestLocalDatabase:
    """Tests for the SQLite key-value store."""

    def test_connect_creates_table(self):
        """Test that connect() creates the kv table."""
        db = LocalDatabase(":memory:")
        db.connect()

        tables = db._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "kv_store" in [t[0] for t in tables]
        db.close()

    def test_put_and_get_json(self, db):
        """Test storing and reading JSON values."""
        db.put_json({"a": {"x": 1}, "b": [1, 2]})

        assert db.get_json("a") == {"x": 1}
        assert db.get_json("b") == [1, 2]
        assert db.get_json("missing") is None

    def test_corrupt_value_reads_as_none(self, db):
        """Test undecodable values are treated as absent."""
        db.put_raw("a", "{not json")
        assert db.get_json("a") is None

    def test_get_stats(self, db):
        """Test statistics list stored keys."""
        db.put_json({"a": 1})
        stats = db.get_stats()
        assert "a" in stats["keys"]


class TestStoreEntries:
    """Tests for entry operations."""

    def test_add_and_delete_scenario(self, store):
        """Test adding then deleting an entry leaves a tombstone."""
        entry = store.add_entry("food", "f1", "2024-01-15", "08:30", None, None)

        snapshot = store.snapshot()
        assert len(snapshot.entries) == 1
        assert snapshot.entries[entry.id].item_id == "f1"
        assert snapshot.entries[entry.id].date == "2024-01-15"

        store.delete_entry(entry.id)

        assert len(store.snapshot().entries) == 0
        assert entry.id in store.tombstones()["entries"]

    def test_add_entry_generates_unique_ids(self, store):
        """Test each entry gets a fresh id."""
        e1 = store.add_entry("food", "f1", "2024-01-15")
        e2 = store.add_entry("food", "f1", "2024-01-15")
        assert e1.id != e2.id

    def test_date_and_time_stored_as_given(self, store):
        """Test date/time strings are not interpreted."""
        entry = store.add_entry("activity", "a1", "2024-13-45", "25:99")
        assert store.snapshot().entries[entry.id].date == "2024-13-45"
        assert store.snapshot().entries[entry.id].time == "25:99"

    def test_add_entry_invalid_type(self, store):
        """Test unknown entry types are rejected without changes."""
        before = store.snapshot()

        with pytest.raises(ValidationError):
            store.add_entry("drink", "f1", "2024-01-15")

        assert store.snapshot() is before

    def test_add_entry_requires_item(self, store):
        """Test an empty item id is rejected."""
        with pytest.raises(ValidationError):
            store.add_entry("food", "", "2024-01-15")

    def test_delete_missing_is_noop(self, store):
        """Test deleting an unknown id changes nothing and raises nothing."""
        store.add_entry("food", "f1", "2024-01-15")
        before = store.snapshot()
        calls = []
        store.subscribe(calls.append)

        assert store.delete_entry("nope") is False

        assert store.snapshot() is before
        assert store.tombstones()["entries"] == frozenset()
        assert calls == []

    def test_duplicate_delete_is_silent(self, store):
        """Test deleting the same id twice is tolerated."""
        entry = store.add_entry("food", "f1", "2024-01-15")

        assert store.delete_entry(entry.id) is True
        assert store.delete_entry(entry.id) is False
        assert entry.id in store.tombstones()["entries"]

    def test_update_entry(self, store):
        """Test editing entry fields."""
        entry = store.add_entry("food", "f1", "2024-01-15", "08:30")

        updated = store.update_entry(entry.id, notes="tasty", time="09:00")

        assert updated.notes == "tasty"
        assert store.snapshot().entries[entry.id].time == "09:00"
        assert store.snapshot().entries[entry.id].item_id == "f1"

    def test_update_entry_rejects_identity_fields(self, store):
        """Test that id, type and item cannot be edited."""
        entry = store.add_entry("food", "f1", "2024-01-15")
        with pytest.raises(ValidationError):
            store.update_entry(entry.id, item_id="f2")

    def test_update_missing_entry(self, store):
        """Test updating an unknown entry returns None."""
        assert store.update_entry("nope", notes="x") is None

    def test_random_add_delete_sequences(self, store):
        """Test entries equal added minus deleted for random sequences."""
        rng = random.Random(42)
        added: list[str] = []
        deleted: set[str] = set()

        for _ in range(200):
            if added and rng.random() < 0.4:
                victim = rng.choice(added)
                store.delete_entry(victim)
                deleted.add(victim)
            else:
                added.append(store.add_entry("food", "f1", "2024-01-15").id)

        assert set(store.snapshot().entries) == set(added) - deleted
        assert deleted <= store.tombstones()["entries"]


class TestStoreCategoriesAndItems:
    """Tests for category and item operations."""

    def test_add_category_trims_name(self, store):
        """Test category names are trimmed."""
        category = store.add_category("food", "  Fruit  ", "positive")

        assert category.name == "Fruit"
        assert store.get_category("food", category.id) == category

    def test_add_category_empty_name(self, store):
        """Test empty names are rejected with the store untouched."""
        before = store.snapshot()

        with pytest.raises(ValidationError):
            store.add_category("food", "   ")

        assert store.snapshot() is before

    def test_add_category_bad_sentiment(self, store):
        """Test unknown sentiments are rejected."""
        with pytest.raises(ValidationError):
            store.add_category("food", "Fruit", "great")

    def test_update_category(self, store):
        """Test renaming a category keeps its sentiment unless given."""
        category = store.add_category("activity", "Cardio", "positive")

        updated = store.update_category("activity", category.id, "Endurance")

        assert updated.name == "Endurance"
        assert updated.sentiment.value == "positive"

    def test_update_category_empty_name(self, store):
        """Test renaming to an empty name is rejected."""
        category = store.add_category("food", "Fruit")
        with pytest.raises(ValidationError):
            store.update_category("food", category.id, "")

    def test_delete_category_cascades(self, store):
        """Test a deleted category disappears from items and overrides."""
        fruit = store.add_category("food", "Fruit")
        sweet = store.add_category("food", "Sweet")
        apple = store.add_item("food", "Apple", [fruit.id, sweet.id])
        entry = store.add_entry("food", apple.id, "2024-01-15", category_overrides=[fruit.id])

        assert store.delete_category("food", fruit.id) is True

        data = store.snapshot()
        assert fruit.id not in data.food_categories
        assert data.food_items[apple.id].categories == (sweet.id,)
        assert data.entries[entry.id].category_overrides == ()
        assert fruit.id in store.tombstones()["food_categories"]

    def test_add_item_empty_name(self, store):
        """Test items need a name."""
        with pytest.raises(ValidationError):
            store.add_item("food", "", [])

    def test_update_item(self, store):
        """Test editing an item."""
        item = store.add_item("food", "Aple", [])
        updated = store.update_item("food", item.id, "Apple", ["c1"])

        assert updated.name == "Apple"
        assert store.get_item("food", item.id).categories == ("c1",)

    def test_delete_item_cascades_to_entries(self, store):
        """Test deleting an item deletes and tombstones its entries."""
        apple = store.add_item("food", "Apple", [])
        run = store.add_item("activity", "Run", [])
        e1 = store.add_entry("food", apple.id, "2024-01-15")
        e2 = store.add_entry("activity", run.id, "2024-01-15")
        store.toggle_favorite(apple.id)

        store.delete_item("food", apple.id)

        data = store.snapshot()
        assert apple.id not in data.food_items
        assert set(data.entries) == {e2.id}
        assert apple.id not in data.favorite_items
        tombstones = store.tombstones()
        assert apple.id in tombstones["food_items"]
        assert e1.id in tombstones["entries"]

    def test_get_category_names_skips_dangling(self, store):
        """Test dangling category references are filtered out."""
        fruit = store.add_category("food", "Fruit")
        assert store.get_category_names("food", [fruit.id, "gone"]) == ["Fruit"]


class TestStoreDashboardAndFavorites:
    """Tests for dashboard cards and favorites."""

    def test_add_and_remove_card(self, store):
        """Test dashboard cards are tombstoned on removal."""
        card = store.add_dashboard_card("c1")
        assert store.snapshot().dashboard_cards["c1"] == card

        store.remove_dashboard_card("c1")

        assert "c1" not in store.snapshot().dashboard_cards
        assert "c1" in store.tombstones()["dashboard_cards"]

    def test_add_card_twice(self, store):
        """Test adding a card for the same category is idempotent."""
        first = store.add_dashboard_card("c1")
        before = store.snapshot()

        assert store.add_dashboard_card("c1") == first
        assert store.snapshot() is before

    def test_toggle_favorite(self, store):
        """Test toggling favorites on and off."""
        assert store.toggle_favorite("f1") is True
        assert store.is_favorite("f1")
        assert store.toggle_favorite("f1") is False
        assert not store.is_favorite("f1")

    def test_unfavorite_is_tombstoned(self, store):
        """Test un-favoriting records a deletion and favoriting again clears it."""
        store.toggle_favorite("f1")
        store.toggle_favorite("f1")
        assert "f1" in store.tombstones()["favorite_items"]

        store.toggle_favorite("f1")

        assert store.tombstones()["favorite_items"] == frozenset()

    def test_readd_card_clears_tombstone(self, store):
        """Test a re-added card is no longer pending deletion."""
        store.add_dashboard_card("c1")
        store.remove_dashboard_card("c1")

        store.add_dashboard_card("c1")

        assert "c1" in store.snapshot().dashboard_cards
        assert store.tombstones()["dashboard_cards"] == frozenset()

    def test_delete_item_tombstones_favorite(self, store):
        """Test deleting a favorite item also records the un-favorite."""
        apple = store.add_item("food", "Apple")
        store.toggle_favorite(apple.id)

        store.delete_item("food", apple.id)

        assert apple.id in store.tombstones()["favorite_items"]


class TestStoreSubscription:
    """Tests for change notification and snapshot stability."""

    def test_snapshot_stable_between_mutations(self, store):
        """Test repeated snapshots return the same object."""
        assert store.snapshot() is store.snapshot()
        before = store.snapshot()
        store.add_entry("food", "f1", "2024-01-15")
        assert store.snapshot() is not before
        assert store.snapshot() is store.snapshot()

    def test_listeners_called_in_order(self, store):
        """Test listeners run after each commit, in registration order."""
        calls = []
        store.subscribe(lambda data: calls.append(("a", len(data.entries))))
        store.subscribe(lambda data: calls.append(("b", len(data.entries))))

        store.add_entry("food", "f1", "2024-01-15")

        assert calls == [("a", 1), ("b", 1)]

    def test_unsubscribe(self, store):
        """Test unsubscribed listeners are not called."""
        calls = []
        unsubscribe = store.subscribe(calls.append)
        unsubscribe()
        unsubscribe()

        store.add_entry("food", "f1", "2024-01-15")

        assert calls == []

    def test_failing_listener_does_not_block_others(self, store):
        """Test a raising listener does not stop later listeners."""
        calls = []

        def broken(_data):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(calls.append)

        store.add_entry("food", "f1", "2024-01-15")

        assert len(calls) == 1

    def test_validation_failure_does_not_notify(self, store):
        """Test rejected mutations do not notify."""
        calls = []
        store.subscribe(calls.append)

        with pytest.raises(ValidationError):
            store.add_item("food", "")

        assert calls == []


class TestStoreImportExport:
    """Tests for import and export."""

    def test_import_replaces_and_clears_tombstones(self, store):
        """Test a valid import replaces data and drops pending deletions."""
        entry = store.add_entry("food", "x", "2024-01-01")
        store.delete_entry(entry.id)

        data = store.import_data(valid_payload())

        assert set(store.snapshot().entries) == {"e1"}
        assert store.snapshot() is data
        assert all(not ids for ids in store.tombstones().values())

    @pytest.mark.parametrize(
        "payload",
        [
            "not json at all",
            json.dumps([1, 2, 3]),
            json.dumps({"entries": []}),
            valid_payload(entries=[{"id": "e1", "type": "drink", "itemId": "f1", "date": "x"}]),
            valid_payload(foodItems=[
                {"id": "f1", "name": "A", "categories": []},
                {"id": "f1", "name": "B", "categories": []},
            ]),
        ],
    )
    def test_invalid_import_leaves_state(self, store, payload):
        """Test malformed payloads raise ImportDataError and change nothing."""
        store.add_entry("food", "f1", "2024-01-15")
        before = store.snapshot()
        tombstones = store.tombstones()

        with pytest.raises(ImportDataError):
            store.import_data(payload)

        assert store.snapshot() is before
        assert store.tombstones() == tombstones

    def test_import_migrates_legacy_data(self, store):
        """Test categories without sentiment and unversioned data import."""
        payload = json.loads(valid_payload())
        payload["foodCategories"] = [{"id": "c1", "name": "Fruit"}]
        del payload["version"]
        payload["dashboardInitialized"] = False

        data = store.import_data(json.dumps(payload))

        assert data.food_categories["c1"].sentiment.value == "neutral"
        assert data.version == 1
        assert "c1" in data.dashboard_cards

    def test_export_round_trips_through_import(self, store):
        """Test an export can be imported into a fresh store."""
        store.add_category("food", "Fruit")
        store.add_entry("food", "f1", "2024-01-15", notes="hi")
        exported = store.export_data()

        other = DataStore(LocalDatabase(":memory:"))
        other.import_data(exported)

        assert other.snapshot() == store.snapshot()


class TestStorePersistence:
    """Tests for durable local persistence."""

    def test_mutations_survive_restart(self, tmp_path):
        """Test data and tombstones are reloaded from disk."""
        path = tmp_path / "tracker.db"
        store = DataStore(LocalDatabase(path))
        keep = store.add_entry("food", "f1", "2024-01-15")
        gone = store.add_entry("food", "f2", "2024-01-15")
        store.delete_entry(gone.id)
        store.close()

        reopened = DataStore(LocalDatabase(path))

        assert set(reopened.snapshot().entries) == {keep.id}
        assert gone.id in reopened.tombstones()["entries"]
        reopened.close()

    def test_corrupt_local_data_starts_empty(self, db):
        """Test unparsable local state is treated as no prior data."""
        db.put_raw(DATA_KEY, "{broken")
        db.put_raw(TOMBSTONES_KEY, "[also broken")

        store = DataStore(db)

        assert len(store.snapshot().entries) == 0
        assert all(not ids for ids in store.tombstones().values())

    def test_corrupt_database_file_starts_empty(self, tmp_path):
        """Test an unreadable database file is moved aside, not fatal."""
        path = tmp_path / "tracker.db"
        path.write_bytes(b"this is not a sqlite database " * 100)

        store = DataStore(LocalDatabase(path))

        assert store.snapshot().entries == {}
        assert (tmp_path / "tracker.db.corrupt").exists()
        entry = store.add_entry("food", "f1", "2024-01-15")
        store.close()

        reopened = DataStore(LocalDatabase(path))
        assert set(reopened.snapshot().entries) == {entry.id}
        reopened.close()

    def test_wrong_shape_local_data_starts_empty(self, db):
        """Test structurally invalid local data is discarded."""
        db.put_json({DATA_KEY: {"entries": "nope"}})

        store = DataStore(db)

        assert store.snapshot().entries == {}

    def test_confirm_deletions_persists(self, tmp_path):
        """Test cleared tombstones stay cleared after restart."""
        path = tmp_path / "tracker.db"
        store = DataStore(LocalDatabase(path))
        entry = store.add_entry("food", "f1", "2024-01-15")
        store.delete_entry(entry.id)

        cleared = store.confirm_deletions(store.tombstones())
        store.close()

        assert cleared == 1
        reopened = DataStore(LocalDatabase(path))
        assert reopened.tombstones()["entries"] == frozenset()
        reopened.close()

    def test_reset(self, store):
        """Test reset drops data and tombstones."""
        entry = store.add_entry("food", "f1", "2024-01-15")
        store.add_entry("food", "f1", "2024-01-16")
        store.delete_entry(entry.id)

        store.reset()

        assert store.snapshot().entries == {}
        assert store.tombstones()["entries"] == frozenset()


class TestStoreMergeRemote:
    """Tests for folding remote data into the store."""

    def test_merge_adds_remote_only_entities(self, store):
        """Test remote-only entities are added and local ones kept."""
        local = store.add_entry("food", "f1", "2024-01-15")
        remote = Dataset.from_dict(json.loads(valid_payload()))

        added = store.merge_remote(remote)

        assert added == 3
        assert {local.id, "e1"} == set(store.snapshot().entries)

    def test_merge_skips_tombstoned(self, store):
        """Test a locally deleted entity is not resurrected."""
        store.import_data(valid_payload())
        store.delete_entry("e1")
        remote = Dataset.from_dict(json.loads(valid_payload()))

        store.merge_remote(remote)

        assert "e1" not in store.snapshot().entries

    def test_merge_skips_unfavorited(self, store):
        """Test a stale remote favorite does not come back after un-favoriting."""
        store.import_data(valid_payload(favoriteItems=["f1"]))
        store.toggle_favorite("f1")
        remote = Dataset.from_dict(json.loads(valid_payload(favoriteItems=["f1"])))

        store.merge_remote(remote)

        assert store.snapshot().favorite_items == ()

    def test_merge_nothing_new(self, store):
        """Test merging an identical dataset is a no-op."""
        store.import_data(valid_payload())
        before = store.snapshot()

        assert store.merge_remote(Dataset.from_dict(json.loads(valid_payload()))) == 0
        assert store.snapshot() is before


class TestTombstoneLedger:
    """Tests for the tombstone ledger."""

    def test_mark_and_snapshot(self):
        """Test marked ids appear in the snapshot."""
        ledger = TombstoneLedger()
        ledger.mark_deleted("entries", "e1")

        snapshot = ledger.snapshot()

        assert snapshot["entries"] == frozenset({"e1"})
        assert snapshot["food_items"] == frozenset()
        assert len(ledger) == 1

    def test_snapshot_is_a_copy(self):
        """Test later marks do not show up in an earlier snapshot."""
        ledger = TombstoneLedger()
        snapshot = ledger.snapshot()
        ledger.mark_deleted("entries", "e1")
        assert snapshot["entries"] == frozenset()

    def test_clear_removes_exactly_given_ids(self):
        """Test clear only removes the requested ids."""
        ledger = TombstoneLedger({"entries": ["e1", "e2"]})

        removed = ledger.clear("entries", ["e1", "e3"])

        assert removed == 1
        assert ledger.snapshot()["entries"] == frozenset({"e2"})

    def test_unknown_kind(self):
        """Test unknown collections are rejected."""
        with pytest.raises(KeyError):
            TombstoneLedger().mark_deleted("widgets", "w1")

    def test_from_dict_malformed(self):
        """Test malformed persisted data yields an empty ledger."""
        assert TombstoneLedger.from_dict("garbage").is_empty()
        ledger = TombstoneLedger.from_dict({"entries": [1, 2], "food_items": ["f1"]})
        assert ledger.snapshot()["entries"] == frozenset()
        assert ledger.contains("food_items", "f1")

    def test_round_trip(self):
        """Test to_dict/from_dict keeps all ids."""
        ledger = TombstoneLedger({"entries": ["b", "a"], "dashboard_cards": ["c"]})
        restored = TombstoneLedger.from_dict(ledger.to_dict())
        assert restored.snapshot() == ledger.snapshot()
