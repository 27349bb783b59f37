import threading

from mshuffle.application.collective import (
    SIMILAR_ARTISTS, CollectiveData, CollectiveDataStore, CollectiveDataValue, StringSetValue,
    create_default_store,
)


class TestStringSetValue:
    """Tests for set-valued collective data."""

    def test_merge_is_union(self):
        value = StringSetValue("a1", ["a2", "a3"])

        assert value.merge(StringSetValue("a1", ["a3", "a4"])) is True
        assert value.value == {"a2", "a3", "a4"}

    def test_merge_does_not_mutate_previous_set(self):
        value = StringSetValue("a1", ["a2"])
        previous = value.value

        value.merge(StringSetValue("a1", ["a3"]))

        assert previous == {"a2"}

    def test_merge_rejects_other_value_types(self):
        class Other(CollectiveDataValue):
            def merge(self, other):
                return False

        value = StringSetValue("a1", ["a2"])

        assert value.merge(Other("a1")) is False
        assert value.value == {"a2"}

    def test_is_empty(self):
        assert StringSetValue("a1").is_empty()
        assert not StringSetValue("a1", ["a2"]).is_empty()


class TestCollectiveDataStore:
    """Tests for the process-wide collective data store."""

    def setup_method(self):
        self.store = create_default_store()

    def test_default_store_has_similar_artists(self):
        assert self.store.dataset_ids() == [SIMILAR_ARTISTS]
        assert self.store.get(SIMILAR_ARTISTS, "a1") is None

    def test_put_inserts_then_merges(self):
        assert self.store.put(SIMILAR_ARTISTS, StringSetValue("a1", ["a2"]))
        assert self.store.put(SIMILAR_ARTISTS, StringSetValue("a1", ["a3"]))

        assert self.store.get(SIMILAR_ARTISTS, "a1").value == {"a2", "a3"}

    def test_put_into_unknown_dataset_is_dropped(self):
        assert self.store.put("Unknown", StringSetValue("a1", ["a2"])) is False
        assert self.store.get("Unknown", "a1") is None

    def test_set_replaces_dataset(self):
        self.store.put(SIMILAR_ARTISTS, StringSetValue("a1", ["a2"]))

        self.store.set(CollectiveData(SIMILAR_ARTISTS))

        assert self.store.get(SIMILAR_ARTISTS, "a1") is None

    def test_merge_order_does_not_matter(self):
        first = CollectiveDataStore()
        first.set(CollectiveData(SIMILAR_ARTISTS))
        second = CollectiveDataStore()
        second.set(CollectiveData(SIMILAR_ARTISTS))

        left = StringSetValue("a1", ["x", "y"])
        right = StringSetValue("a1", ["y", "z"])
        first.put(SIMILAR_ARTISTS, StringSetValue(left.id, left.value))
        first.put(SIMILAR_ARTISTS, StringSetValue(right.id, right.value))
        second.put(SIMILAR_ARTISTS, StringSetValue(right.id, right.value))
        second.put(SIMILAR_ARTISTS, StringSetValue(left.id, left.value))

        assert first.get(SIMILAR_ARTISTS, "a1").value == second.get(SIMILAR_ARTISTS, "a1").value == {"x", "y", "z"}

    def test_concurrent_puts_keep_union(self):
        def worker(i):
            self.store.put(SIMILAR_ARTISTS, StringSetValue("a1", [f"s{i}"]))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert self.store.get(SIMILAR_ARTISTS, "a1").value == {f"s{i}" for i in range(20)}
