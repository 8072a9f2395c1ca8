"""Tests for state subscriptions: patch, mutation records and flush timing."""

import logging

import pytest

from pinyx import MutationType, Scope, autorun, define, transaction


@pytest.fixture
def counter(active_container, use_counter):
    return use_counter()


def recorder(store, **kwargs):
    records = []
    store.subscribe(lambda record, state: records.append((record, state)), **kwargs)
    return records


class TestPatch:
    def test_object_patch_is_one_record(self, counter):
        records = recorder(counter)
        counter.patch({"count": 5, "name": "patched"})
        assert counter.count == 5
        assert len(records) == 1
        record, state = records[0]
        assert record.type is MutationType.PATCH_OBJECT
        assert record.store_id == "counter"
        assert record.payload == {"count": 5, "name": "patched"}
        assert state == {"count": 5, "name": "patched"}
        assert len(record.events) == 2

    def test_keyword_patch(self, counter):
        records = recorder(counter)
        counter.patch(count=3)
        assert counter.count == 3
        assert [r.type for r, _ in records] == [MutationType.PATCH_OBJECT]

    def test_function_patch(self, counter):
        records = recorder(counter)

        def mutate(state):
            state["count"] += 1
            state["count"] += 1
            state["name"] = "fn"

        counter.patch(mutate)
        assert counter.count == 2
        assert len(records) == 1
        record, _ = records[0]
        assert record.type is MutationType.PATCH_FUNCTION
        assert record.payload is None
        assert len(record.events) == 3

    def test_deep_merge(self, active_container):
        store = define("settings", state=lambda: {"ui": {"theme": "dark", "size": 1}, "tags": ["a"]})()
        store.patch({"ui": {"size": 2}, "tags": ["b"]})
        assert store.state == {"ui": {"theme": "dark", "size": 2}, "tags": ["b"]}

    def test_patch_is_one_reaction_run(self, counter):
        seen = []
        autorun(lambda: seen.append((counter.count, counter.name)))
        counter.patch(count=1, name="x")
        assert seen == [(0, "counter"), (1, "x")]

    def test_failed_function_patch_emits_nothing(self, counter):
        records = recorder(counter)

        def fail(state):
            raise ValueError("nope")

        with pytest.raises(ValueError):
            counter.patch(fail)
        assert records == []

    def test_rejects_bad_arguments(self, counter):
        with pytest.raises(TypeError):
            counter.patch(lambda state: None, count=1)
        with pytest.raises(TypeError):
            counter.patch([("count", 1)])

    def test_reset_and_state_assignment_are_function_patches(self, counter):
        counter.count = 4
        records = recorder(counter)
        counter.reset()
        counter.state = {"count": 2}
        assert [r.type for r, _ in records] == [MutationType.PATCH_FUNCTION] * 2
        assert counter.count == 2


class TestDirectMutations:
    def test_one_record_per_write(self, counter):
        records = recorder(counter)
        counter.count = 1
        counter.name = "n"
        assert [r.type for r, _ in records] == [MutationType.DIRECT] * 2
        assert records[0][0].events[0].key == "count"
        assert records[1][1] == {"count": 1, "name": "n"}

    def test_nested_writes(self, active_container):
        store = define("todos", state=lambda: {"items": []})()
        records = recorder(store)
        store.items.append({"done": False})
        store.items[0]["done"] = True
        assert [r.events[0].kind for r, _ in records] == ["add", "set"]
        assert records[-1][1] == {"items": [{"done": True}]}

    def test_equal_write_emits_nothing(self, counter):
        records = recorder(counter)
        counter.count = 0
        assert records == []

    def test_action_writes(self, counter):
        records = recorder(counter)
        counter.increment()
        assert len(records) == 1
        assert records[0][0].type is MutationType.DIRECT


class TestFlush:
    def test_pre_is_deferred_to_end_of_batch(self, counter):
        records = recorder(counter)
        with transaction():
            counter.count = 1
            counter.count = 2
            assert records == []
        assert len(records) == 2
        # state is read at delivery time
        assert [state["count"] for _, state in records] == [2, 2]

    def test_sync_runs_during_the_write(self, counter):
        seen = []
        counter.subscribe(lambda record, state: seen.append(state["count"]), flush="sync")
        with transaction():
            counter.count = 1
            assert seen == [1]
            counter.count = 2
            assert seen == [1, 2]

    def test_pre_runs_before_reactions_and_post_after(self, counter):
        order = []
        autorun(lambda: order.append(("reaction", counter.count)))
        counter.subscribe(lambda r, s: order.append(("post", s["count"])), flush="post")
        counter.subscribe(lambda r, s: order.append(("pre", s["count"])), flush="pre")
        order.clear()
        counter.count = 1
        assert order == [("pre", 1), ("reaction", 1), ("post", 1)]

    def test_unknown_flush_mode(self, counter):
        with pytest.raises(ValueError, match="flush"):
            counter.subscribe(lambda r, s: None, flush="later")

    def test_registration_order(self, counter):
        order = []
        counter.subscribe(lambda r, s: order.append(1))
        counter.subscribe(lambda r, s: order.append(2))
        counter.count = 1
        assert order == [1, 2]


class TestUnsubscribe:
    def test_remover(self, counter):
        records = []
        remove = counter.subscribe(lambda r, s: records.append(r))
        counter.count = 1
        remove()
        remove()
        counter.count = 2
        assert len(records) == 1

    def test_removed_before_queued_delivery(self, counter):
        records = []
        remove = counter.subscribe(lambda r, s: records.append(r))
        with transaction():
            counter.count = 1
            remove()
        assert records == []

    def test_scope_bound_and_detached(self, counter):
        bound, detached = [], []
        scope = Scope()
        with scope:
            counter.subscribe(lambda r, s: bound.append(r))
            counter.subscribe(lambda r, s: detached.append(r), detached=True)
        counter.count = 1
        scope.dispose()
        counter.count = 2
        assert len(bound) == 1
        assert len(detached) == 2

    def test_detached_ends_with_store(self, active_container, counter, use_counter):
        records = []
        with Scope():
            counter.subscribe(lambda r, s: records.append(r), detached=True)
        counter.dispose()
        use_counter().count = 1
        assert records == []


class TestFailingSubscriber:
    @pytest.mark.parametrize("flush", ["sync", "pre", "post"])
    def test_later_subscribers_still_notified(self, counter, caplog, flush):
        def broken(record, state):
            raise RuntimeError("subscriber")

        counter.subscribe(broken, flush=flush)
        records = recorder(counter, flush=flush)
        with caplog.at_level(logging.ERROR, logger="pinyx.tracking"):
            counter.count = 5
        assert counter.count == 5
        assert [state["count"] for _, state in records] == [5]
        assert "Subscriber callback failed" in caplog.text

    def test_action_writer_does_not_see_the_error(self, counter):
        counter.subscribe(lambda record, state: 1 / 0)
        assert counter.increment() == 1

    def test_getters_stay_fresh(self, counter):
        assert counter.double == 0
        counter.subscribe(lambda record, state: 1 / 0)
        counter.count = 5
        assert counter.double == 10
        counter.increment()
        assert counter.double == 12

    def test_pre_subscriber_reads_fresh_getter(self, counter):
        seen = []
        assert counter.double == 0
        counter.subscribe(lambda record, state: seen.append(counter.double))
        with transaction():
            counter.count = 3
        assert seen == [6]
