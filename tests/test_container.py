"""Tests for containers, the active pointer and plugins."""

import asyncio

import pytest

from pinyx import (
    Container,
    Observable,
    PluginContext,
    PluginError,
    StoreError,
    UndeclaredStateError,
    create_container,
    define,
    get_active,
    set_active,
)


class TestActivePointer:
    def test_starts_empty(self):
        assert get_active() is None

    def test_set_active_returns_previous(self):
        a, b = create_container(), create_container()
        assert set_active(a) is None
        assert set_active(b) is a
        assert get_active() is b

    def test_activate_restores(self):
        outer, inner = create_container(), create_container()
        with outer.activate():
            with inner.activate():
                assert get_active() is inner
            assert get_active() is outer
        assert get_active() is None

    def test_activate_restores_on_error(self):
        container = create_container()
        with pytest.raises(RuntimeError):
            with container.activate():
                raise RuntimeError
        assert get_active() is None

    def test_per_request_isolation(self, use_counter):
        requests = [create_container(), create_container()]
        for n, container in enumerate(requests, start=1):
            with container.activate():
                use_counter().count = n
        assert [use_counter(c).count for c in requests] == [1, 2]

    def test_concurrent_tasks_keep_their_own_container(self, use_counter):
        async def handle(container, n):
            with container.activate():
                await asyncio.sleep(0)
                use_counter().count = n
                await asyncio.sleep(0)
                return get_active() is container

        async def serve(requests):
            return await asyncio.gather(*(handle(c, n) for n, c in enumerate(requests, start=1)))

        requests = [create_container(), create_container()]
        assert asyncio.run(serve(requests)) == [True, True]
        assert [use_counter(c).count for c in requests] == [1, 2]
        assert get_active() is None


class TestContainer:
    def test_root_state_tracks_instances(self, active_container, use_counter):
        counter = use_counter()
        assert active_container.state["counter"] is counter.state
        assert active_container.instances == {"counter": counter}
        counter.dispose()
        assert not active_container.state.has("counter")

    def test_dispose_all(self, use_counter):
        container = create_container()
        container.use(lambda ctx: None)
        set_active(container)
        counter = use_counter()
        container.dispose()
        assert counter.disposed
        assert container.instances == {}
        assert container.plugins == []
        assert get_active() is None

    def test_repr(self, active_container, use_counter):
        use_counter()
        assert repr(active_container) == "Container(stores=['counter'], plugins=0)"


class TestPlugins:
    def test_extension_on_first_access(self, use_counter):
        container = create_container()
        container.use(lambda ctx: {"tag": "x"})
        assert use_counter(container).tag == "x"

    def test_use_is_chainable(self):
        container = create_container()
        assert isinstance(container.use(lambda ctx: None).use(lambda ctx: None), Container)
        assert len(container.plugins) == 2

    def test_not_retroactive(self, use_counter):
        container = create_container()
        counter = use_counter(container)
        container.use(lambda ctx: {"tag": "x"})
        with pytest.raises(AttributeError):
            counter.tag

    def test_context(self):
        seen = []
        container = create_container()
        container.use(seen.append)
        use_store = define("persisted", state=lambda: {"n": 1}, persist=True)
        store = use_store(container)
        (ctx,) = seen
        assert isinstance(ctx, PluginContext)
        assert ctx.container is container
        assert ctx.store is store
        assert ctx.options["persist"] is True
        assert "state" in ctx.options

    def test_later_plugins_win(self, use_counter):
        container = create_container()
        container.use(lambda ctx: {"tag": "first"}).use(lambda ctx: {"tag": "second"})
        assert use_counter(container).tag == "second"

    def test_plugin_runs_with_container_active(self, use_counter):
        container = create_container()
        active = []
        container.use(lambda ctx: active.append(get_active()))
        use_counter(container)
        assert active == [container]
        assert get_active() is None

    def test_observable_extension_reads_and_writes_through(self, use_counter):
        container = create_container()
        container.use(lambda ctx: {"loading": Observable(False)})
        counter = use_counter(container)
        assert counter.loading is False
        counter.loading = True
        assert counter.loading is True

    def test_plain_extension_is_writable(self, use_counter):
        container = create_container()
        container.use(lambda ctx: {"tag": "x"})
        counter = use_counter(container)
        counter.tag = "y"
        assert counter.tag == "y"

    def test_clash_raises_and_registers_nothing(self, use_counter):
        container = create_container()
        container.use(lambda ctx: {"count": 1})
        with pytest.raises(PluginError):
            use_counter(container)
        assert "counter" not in container.instances

    def test_plugin_error_propagates(self, use_counter):
        boom = RuntimeError("plugin")

        def plugin(ctx):
            raise boom

        container = create_container()
        container.use(plugin)
        with pytest.raises(RuntimeError) as info:
            use_counter(container)
        assert info.value is boom
        assert "counter" not in container.instances

    def test_plugin_can_assign_fields(self, use_counter):
        def plugin(ctx):
            ctx.store.tag = "x"

        container = create_container()
        container.use(plugin)
        counter = use_counter(container)
        assert counter.tag == "x"
        assert "tag" not in container.serialize()["counter"]

    def test_assigning_unknown_field_after_plugins_still_raises(self, use_counter):
        container = create_container()
        container.use(lambda ctx: None)
        counter = use_counter(container)
        with pytest.raises(UndeclaredStateError):
            counter.tag = "x"

    def test_plugin_error_keeps_held_snapshot(self, use_counter):
        fail = [True]

        def plugin(ctx):
            if fail[0]:
                raise RuntimeError("plugin")

        container = create_container()
        container.use(plugin)
        container.hydrate({"counter": {"count": 7}})
        with pytest.raises(RuntimeError):
            use_counter(container)

        fail[0] = False
        assert use_counter(container).count == 7

    def test_non_mapping_result(self, use_counter):
        container = create_container()
        container.use(lambda ctx: "tag")
        with pytest.raises(PluginError):
            use_counter(container)

    def test_plugin_can_subscribe(self, use_counter):
        records = []

        def plugin(ctx):
            ctx.store.subscribe(lambda record, state: records.append(state["count"]))

        container = create_container()
        container.use(plugin)
        counter = use_counter(container)
        counter.count = 3
        assert records == [3]
        counter.dispose()
        counter.count = 4
        assert records == [3]


class TestDeclareState:
    def test_declared_field_is_state(self, use_counter):
        container = create_container()
        container.use(lambda ctx: ctx.store.declare_state("visits", 0))
        counter = use_counter(container)
        counter.visits += 1
        assert counter.visits == 1
        assert container.serialize() == {"counter": {"count": 0, "name": "counter", "visits": 1}}

    def test_declaring_emits_no_record(self, use_counter):
        records = []

        def plugin(ctx):
            ctx.store.subscribe(lambda record, state: records.append(record))
            ctx.store.declare_state("visits", 0)

        container = create_container()
        container.use(plugin)
        use_counter(container)
        assert records == []

    def test_takes_held_value(self, use_counter):
        container = create_container()
        container.use(lambda ctx: ctx.store.declare_state("visits", 0))
        container.hydrate({"counter": {"count": 2, "visits": 7}})
        counter = use_counter(container)
        assert counter.count == 2
        assert counter.visits == 7

    def test_existing_key_is_kept(self, use_counter):
        container = create_container()
        container.use(lambda ctx: ctx.store.declare_state("count", 99))
        assert use_counter(container).count == 0

    def test_only_while_plugins_run(self, active_container, use_counter):
        with pytest.raises(StoreError):
            use_counter().declare_state("late", 1)
