"""Container — the registry of live stores and plugins.

A container holds at most one instance per store id, the plugins applied to
every store it builds, and a root state tree keyed by store id. Create one
per process, or one per request when a server renders for several users.

The active container is the one used when an accessor is called without
one. It is held in a context variable, so each asyncio task sees the value
it started with. Set it with set_active() or ``with container.activate():``.
"""

from __future__ import annotations

import contextvars
import logging
import weakref
from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator

from pinyx.observable import ObservableDict
from pinyx.snapshot import hydrate as _hydrate, serialize as _serialize
from pinyx.store import Store

if TYPE_CHECKING:
    from pinyx.definition import StoreAccessor

logger = logging.getLogger("pinyx.container")

_active: contextvars.ContextVar[Container | None] = contextvars.ContextVar("active_container", default=None)

# Every live container, so hot updates can reach their instances.
_containers: weakref.WeakSet[Container] = weakref.WeakSet()


@dataclass(frozen=True)
class PluginContext:
    """What a plugin receives for each new store."""

    container: Container
    store: Store
    options: Mapping[str, Any]


Plugin = Callable[[PluginContext], "Mapping[str, Any] | None"]


class Container:
    """Live store instances, plugins and the root state tree."""

    def __init__(self) -> None:
        self.instances: dict[str, Store] = {}
        self.plugins: list[Plugin] = []
        self.state: ObservableDict = ObservableDict()
        # store id -> snapshot fragment waiting for the store's first access
        self._held: dict[str, dict[str, Any]] = {}
        _containers.add(self)

    def use(self, plugin: Plugin) -> Container:
        """Apply plugin to every store built from now on. Chainable."""
        self.plugins.append(plugin)
        logger.debug("Installed plugin %s", getattr(plugin, "__name__", plugin))
        return self

    def get_or_create(self, accessor: StoreAccessor) -> Store:
        """The instance for accessor's store, building it on first access.

        Building runs the state factory (or setup function), merges any held
        snapshot fragment, registers the instance, then runs the plugins.
        If any step raises, nothing stays registered and the error reaches
        the caller unchanged.
        """
        definition = accessor.definition
        store = self.instances.get(definition.id)
        if store is not None:
            return store

        store = Store(definition, self)
        held = self._held.pop(definition.id, None)
        try:
            store._build(held)
        except BaseException:
            store._scope.dispose()
            if held is not None:
                self._held[definition.id] = held
            raise

        self.instances[definition.id] = store
        self.state.declare(definition.id, store.state)
        store._start_listening()
        try:
            self._apply_plugins(store)
        except BaseException:
            store.dispose()
            if held is not None:
                self._held[definition.id] = held
            raise
        finally:
            store._held = None
        logger.debug("Created store %r", definition.id)
        return store

    def _apply_plugins(self, store: Store) -> None:
        if store._held is None:
            store._held = {}
        with self.activate(), store._scope:
            for plugin in list(self.plugins):
                extra = plugin(PluginContext(container=self, store=store, options=store.definition.options))
                if extra is not None:
                    store._extend(extra)

    def _forget(self, store: Store) -> None:
        if self.instances.get(store.id) is store:
            del self.instances[store.id]
            if self.state.has(store.id):
                del self.state[store.id]

    @contextmanager
    def activate(self) -> Iterator[Container]:
        """Make this the active container for the block, then restore."""
        token = _active.set(self)
        try:
            yield self
        finally:
            _active.reset(token)

    def serialize(self) -> dict[str, dict[str, Any]]:
        return _serialize(self)

    def hydrate(self, snapshot: Mapping[str, Any]) -> None:
        _hydrate(self, snapshot)

    def dispose(self) -> None:
        """Dispose every store and forget plugins and held snapshots."""
        for store in list(self.instances.values()):
            store.dispose()
        self.plugins.clear()
        self._held.clear()
        if get_active() is self:
            set_active(None)

    def __repr__(self) -> str:
        return f"Container(stores={sorted(self.instances)!r}, plugins={len(self.plugins)})"


def create_container() -> Container:
    return Container()


def set_active(container: Container | None) -> Container | None:
    """Set the active container. Returns the previous one for restoring."""
    previous = _active.get()
    _active.set(container)
    return previous


def get_active() -> Container | None:
    return _active.get()
