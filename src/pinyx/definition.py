"""Store definitions — define() and the accessors it returns.

A definition is an immutable description of a store: how to build its
initial state, its getters and its actions. Defining a store has no side
effects beyond recording it; instances are built on first access through the
returned StoreAccessor.

Each id can be defined once per process. Defining it again raises
DuplicateStoreError; hot_reload.hot_update() is the explicit way to swap a
definition during development.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable

from pinyx.errors import DefinitionError, DuplicateStoreError, NoActiveContainerError
from pinyx.store import RESERVED

if TYPE_CHECKING:
    from pinyx.container import Container
    from pinyx.store import Store

_EMPTY: Mapping[str, Any] = MappingProxyType({})

# id -> accessor, for duplicate detection and hot updates
_registry: dict[str, StoreAccessor] = {}


@dataclass(frozen=True)
class StoreDefinition:
    """Everything needed to build one kind of store.

    Options-style definitions set ``state``/``getters``/``actions``;
    setup-style definitions set ``setup`` instead. ``options`` holds the
    original config, custom keys included, for plugins to read.
    """

    id: str
    state: Callable[[], Mapping[str, Any]] | None = None
    getters: Mapping[str, Callable[[Store], Any]] = field(default_factory=lambda: _EMPTY)
    actions: Mapping[str, Callable[..., Any]] = field(default_factory=lambda: _EMPTY)
    setup: Callable[[], Mapping[str, Any]] | None = None
    options: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    @property
    def is_setup(self) -> bool:
        return self.setup is not None


class StoreAccessor:
    """Callable handle returned by define(): ``use_counter(container)``."""

    __slots__ = ("definition",)

    def __init__(self, definition: StoreDefinition) -> None:
        self.definition = definition

    @property
    def id(self) -> str:
        return self.definition.id

    def __call__(self, container: Container | None = None) -> Store:
        """The container's instance of this store, built on first access.

        Without a container, the active one is used (see set_active()).
        """
        if container is None:
            from pinyx.container import get_active

            container = get_active()
            if container is None:
                raise NoActiveContainerError(
                    f"store {self.id!r} was requested without a container and none is active; "
                    "pass one explicitly or call set_active() first"
                )
        return container.get_or_create(self)

    def __repr__(self) -> str:
        kind = "setup" if self.definition.is_setup else "options"
        return f"StoreAccessor({self.id!r}, {kind})"


def define(
    id: str,
    config: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
    **options: Any,
) -> StoreAccessor:
    """Define a store and return its accessor.

    Options style::

        use_counter = define(
            "counter",
            state=lambda: {"count": 0},
            getters={"double": lambda store: store.count * 2},
            actions={"increment": increment},   # def increment(store): ...
        )

    Setup style: pass a zero-argument function returning a mapping of
    reactive cells (state), Computeds (getters) and functions (actions)::

        def counter():
            count = Observable(0)
            return {"count": count, "increment": lambda: count.set(count.get() + 1)}

        use_counter = define("counter", counter)

    Raises:
        DefinitionError: invalid id or config.
        DuplicateStoreError: id is already defined.
    """
    definition = parse_definition(id, config, options)
    if id in _registry:
        raise DuplicateStoreError(f"store {id!r} is already defined")
    accessor = StoreAccessor(definition)
    _registry[id] = accessor
    return accessor


def parse_definition(
    id: str,
    config: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None,
    options: Mapping[str, Any],
) -> StoreDefinition:
    """Validate define() arguments and build the StoreDefinition."""
    if not isinstance(id, str) or not id:
        raise DefinitionError(f"store id must be a non-empty string, got {id!r}")
    if config is not None and options:
        raise DefinitionError(f"store {id!r}: pass either a config or keyword options, not both")

    if callable(config) and not isinstance(config, Mapping):
        return StoreDefinition(id=id, setup=config, options=MappingProxyType({"setup": config}))

    config = dict(options if config is None else config)
    state = config.get("state")
    if state is not None and not callable(state):
        raise DefinitionError(f"store {id!r}: state must be a function returning the initial state")

    getters = _callables(id, "getter", config.get("getters") or {})
    actions = _callables(id, "action", config.get("actions") or {})
    clash = sorted(getters.keys() & actions.keys())
    if clash:
        raise DefinitionError(f"store {id!r}: {clash[0]!r} is both a getter and an action")

    return StoreDefinition(
        id=id,
        state=state,
        getters=MappingProxyType(getters),
        actions=MappingProxyType(actions),
        options=MappingProxyType(config),
    )


def _callables(store_id: str, kind: str, entries: Mapping[str, Any]) -> dict[str, Callable]:
    if not isinstance(entries, Mapping):
        raise DefinitionError(f"store {store_id!r}: {kind}s must be a mapping of name to function")
    result = {}
    for name, fn in entries.items():
        if not callable(fn):
            raise DefinitionError(f"store {store_id!r}: {kind} {name!r} is not callable")
        if name in RESERVED or name.startswith("_"):
            raise DefinitionError(f"store {store_id!r}: {kind} name {name!r} is reserved")
        result[name] = fn
    return result


def get_accessor(id: str) -> StoreAccessor | None:
    return _registry.get(id)


def _reset_registry() -> None:
    """Forget every definition. Tests only."""
    _registry.clear()
