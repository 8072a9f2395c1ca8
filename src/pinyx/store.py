"""Store — a live, mutable instance of a store definition.

A Store unifies its reactive state tree, its cached getters and its
intercepted actions behind one object: state fields and getters read like
attributes, actions are methods. State fields are fixed when the store is
built; writing an undeclared field raises UndeclaredStateError (or, in
production mode, is dropped with a warning).

Every effective write to the state tree becomes a MutationRecord for the
store's subscribers. Writes made inside one patch() call are collected into
a single record.

Instances are built by Container.get_or_create(); never construct one
directly.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable

from pinyx import config
from pinyx._tracking import begin_batch, end_batch
from pinyx.action import ActionContext, wrap_action
from pinyx.computed import Computed
from pinyx.errors import InstantiationError, PluginError, StoreError, UndeclaredStateError
from pinyx.observable import (
    Observable,
    ObservableDict,
    ObservableList,
    WriteEvent,
    set_write_hook,
    to_raw,
)
from pinyx.scope import Scope
from pinyx.snapshot import SkipHydrate
from pinyx.subscriptions import MutationRecord, MutationType, SubscriptionList

if TYPE_CHECKING:
    from pinyx.container import Container
    from pinyx.definition import StoreDefinition

logger = logging.getLogger("pinyx.store")

RESERVED = frozenset(
    {
        "id",
        "container",
        "definition",
        "state",
        "disposed",
        "patch",
        "reset",
        "subscribe",
        "on_action_called",
        "dispose",
        "declare_state",
    }
)

_REACTIVE = (Observable, ObservableDict, ObservableList)

MutationCallback = Callable[[MutationRecord, dict], None]
ActionCallback = Callable[[ActionContext], None]


class Store:
    """One store instance, bound to one container."""

    def __init__(self, definition: StoreDefinition, container: Container) -> None:
        self._definition = definition
        self._container = container
        self._scope = Scope()
        self._state: ObservableDict = ObservableDict()
        self._getters: dict[str, Computed] = {}
        self._actions: dict[str, Callable[..., Any]] = {}
        self._extensions: dict[str, Any] = {}
        self._skip_hydrate: set[str] = set()
        self._mutation_subscriptions: SubscriptionList[Callable[[MutationRecord], None]] = SubscriptionList()
        self._action_subscriptions: SubscriptionList[ActionCallback] = SubscriptionList()
        self._patch_events: list[WriteEvent] | None = None
        self._held: dict[str, Any] | None = None
        self._disposed = False

    # --- Construction (driven by Container.get_or_create) ---

    def _build(self, held: Mapping[str, Any] | None) -> None:
        """Run the definition and merge any held snapshot fragment."""
        with self._container.activate(), self._scope:
            if self._definition.is_setup:
                self._build_setup()
            else:
                self._build_options()
        self._state.seal()
        if held:
            self._merge_held(held)

    def _build_options(self) -> None:
        self._install_getters(self._definition.getters)
        self._install_actions(self._definition.actions)
        initial = self._initial_state(self._definition)
        for key in initial:
            self._check_name(key, "state field")
        self._state = ObservableDict(initial)

    def _build_setup(self) -> None:
        result = self._definition.setup()
        if not isinstance(result, Mapping):
            raise InstantiationError(
                f"store {self.id!r}: setup must return a mapping, got {type(result).__name__}"
            )
        state = {}
        for name, value in result.items():
            if name == "reset" and callable(value):
                self._actions[name] = wrap_action(self, name, value, bound=False)
                continue
            self._check_name(name, "setup member")
            if isinstance(value, SkipHydrate):
                self._skip_hydrate.add(name)
                value = value.value
            if isinstance(value, Computed):
                self._getters[name] = value
            elif isinstance(value, _REACTIVE):
                state[name] = value
            elif callable(value):
                self._actions[name] = wrap_action(self, name, value, bound=False)
            else:
                self._extensions[name] = value
        self._state = ObservableDict(state)

    def _initial_state(self, definition: StoreDefinition) -> dict[str, Any]:
        """Call the state factory, unwrapping skip_hydrate() markers."""
        initial = definition.state() if definition.state is not None else {}
        if not isinstance(initial, Mapping):
            raise InstantiationError(
                f"store {definition.id!r}: state() must return a mapping, got {type(initial).__name__}"
            )
        result = {}
        for key, value in initial.items():
            if isinstance(value, SkipHydrate):
                self._skip_hydrate.add(key)
                value = value.value
            result[key] = value
        return result

    def _install_getters(self, getters: Mapping[str, Callable[[Store], Any]]) -> None:
        # weak: the getter function is kept in _anchor
        store_ref = weakref.ref(self)
        for name, fn in getters.items():
            self._getters[name] = Computed(lambda fn=fn: fn(store_ref()), name=name)

    def _install_actions(self, actions: Mapping[str, Callable[..., Any]]) -> None:
        for name, fn in actions.items():
            self._actions[name] = wrap_action(self, name, fn)

    def _check_name(self, name: Any, kind: str) -> None:
        if not isinstance(name, str) or not name:
            raise InstantiationError(f"store {self.id!r}: {kind} name must be a non-empty string, got {name!r}")
        if name in RESERVED or name.startswith("_"):
            raise InstantiationError(f"store {self.id!r}: {kind} name {name!r} is reserved")
        if name in self._getters or name in self._actions:
            raise InstantiationError(f"store {self.id!r}: {kind} {name!r} clashes with a getter or action")

    def _merge_held(self, held: Mapping[str, Any]) -> None:
        """Apply a held snapshot fragment before the store is published.

        Keys the store does not declare yet stay held so plugins can pick
        them up through declare_state().
        """
        self._held = {}
        try:
            declared = {}
            for key, value in held.items():
                if key in self._skip_hydrate:
                    continue
                if self._state.has(key):
                    declared[key] = value
                else:
                    self._held[key] = value
            merge_state(self._state, declared)
        except Exception:
            logger.exception("Failed to apply held snapshot to store %r", self.id)

    def _start_listening(self) -> None:
        set_write_hook(self._state, self._on_write)

    def _extend(self, extra: Mapping[str, Any]) -> None:
        """Merge plugin-contributed fields into the extension slot."""
        if not isinstance(extra, Mapping):
            raise PluginError(f"store {self.id!r}: plugins must return a mapping or None, got {type(extra).__name__}")
        for name in extra:
            if name in RESERVED or self._state.has(name) or name in self._getters or name in self._actions:
                raise PluginError(f"store {self.id!r}: plugin field {name!r} clashes with a store member")
        self._extensions.update(extra)

    # --- Mutation bus ---

    def _on_write(self, event: WriteEvent) -> None:
        if self._patch_events is not None:
            self._patch_events.append(event)
            return
        self._mutation_subscriptions.trigger(
            MutationRecord(self.id, MutationType.DIRECT, None, (event,))
        )

    def patch(self, partial: Mapping[str, Any] | Callable[[ObservableDict], None] | None = None, /, **fields: Any) -> None:
        """Change several state fields as one mutation.

        Takes a mapping (deep-merged into the state: nested dicts are merged,
        everything else replaced), keyword fields, or a function receiving
        the reactive state to mutate freely. Subscribers receive exactly one
        MutationRecord per call.
        """
        if callable(partial):
            if fields:
                raise TypeError("patch() takes either a function or fields, not both")
            mutation_type, payload = MutationType.PATCH_FUNCTION, None
        else:
            if partial is not None and not isinstance(partial, Mapping):
                raise TypeError(f"patch() expects a mapping or a function, got {type(partial).__name__}")
            payload = self._declared_only({**(partial or {}), **fields})
            mutation_type = MutationType.PATCH_OBJECT

        outer = self._patch_events
        events: list[WriteEvent] = []
        begin_batch()
        try:
            self._patch_events = events
            try:
                if mutation_type is MutationType.PATCH_FUNCTION:
                    partial(self._state)
                else:
                    merge_state(self._state, payload)
            finally:
                self._patch_events = outer
            record = MutationRecord(
                self.id,
                mutation_type,
                to_raw(payload) if payload is not None else None,
                tuple(events),
            )
            self._mutation_subscriptions.trigger(record)
        finally:
            end_batch()

    def _declared_only(self, payload: dict[str, Any]) -> dict[str, Any]:
        undeclared = [key for key in payload if not self._state.has(key)]
        if not undeclared:
            return payload
        message = f"store {self.id!r} has no state field(s) {', '.join(map(repr, undeclared))}"
        if not config.is_production():
            raise UndeclaredStateError(message)
        logger.warning("Ignored patch fields: %s", message)
        return {key: value for key, value in payload.items() if key not in undeclared}

    def _hydrate(self, fragment: Mapping[str, Any]) -> None:
        values = {}
        for key, value in fragment.items():
            if key in self._skip_hydrate:
                continue
            if not self._state.has(key):
                logger.warning("Dropped snapshot key %r: store %r does not declare it", key, self.id)
                continue
            values[key] = value
        if values:
            self.patch(values)

    def subscribe(self, callback: MutationCallback, *, detached: bool = False, flush: str = "pre") -> Callable[[], None]:
        """Call ``callback(record, state)`` after every state mutation.

        ``state`` is a plain copy of the state taken at delivery. ``flush``
        is ``"sync"`` (during the write), ``"pre"`` (at the next flush,
        before reactions) or ``"post"`` (at the next flush, after
        reactions). Returns a function that unsubscribes.
        """

        def deliver(record: MutationRecord) -> None:
            callback(record, to_raw(self._state))

        return self._mutation_subscriptions.add(deliver, detached=detached, flush=flush)

    # --- Action bus ---

    def on_action_called(self, callback: ActionCallback, detached: bool = False) -> Callable[[], None]:
        """Call ``callback(context)`` before every action of this store.

        Use ``context.after(fn)`` and ``context.on_error(fn)`` to observe the
        outcome. Returns a function that unsubscribes.
        """
        return self._action_subscriptions.add(callback, detached=detached)

    # --- Housekeeping ---

    @property
    def id(self) -> str:
        return self._definition.id

    @property
    def container(self) -> Container:
        return self._container

    @property
    def definition(self) -> StoreDefinition:
        return self._definition

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def state(self) -> ObservableDict:
        """The reactive state tree. Assigning replaces fields in one patch."""
        return self._state

    @state.setter
    def state(self, value: Mapping[str, Any]) -> None:
        values = self._declared_only(dict(value))
        self.patch(lambda state: _assign(state, values))

    def reset(self) -> Any:
        """Put the state back to a fresh initial state, as one patch.

        Setup stores have no state factory to re-run: they must return their
        own ``reset`` function from setup, which this calls.
        """
        if self._definition.is_setup:
            custom = self._actions.get("reset")
            if custom is None:
                raise StoreError(f"setup store {self.id!r} does not define reset(); return one from its setup")
            return custom()
        fresh = self._initial_state(self._definition)
        self.patch(lambda state: _assign(state, fresh))
        return None

    def declare_state(self, key: str, value: Any) -> None:
        """Add a reactive, serializable state field. Plugins only.

        A snapshot value held for key replaces value. Declaring a key the
        state already has is a no-op.
        """
        if self._held is None:
            raise StoreError(f"store {self.id!r}: declare_state() is only available while plugins run")
        if self._state.has(key):
            return
        if key in RESERVED or key in self._getters or key in self._actions or key in self._extensions:
            raise PluginError(f"store {self.id!r}: state field {key!r} clashes with a store member")
        if isinstance(value, SkipHydrate):
            self._skip_hydrate.add(key)
            value = value.value
        elif key in self._held:
            value = self._held.pop(key)
        outer = self._patch_events
        self._patch_events = []
        try:
            self._state.declare(key, value)
        finally:
            self._patch_events = outer

    def dispose(self) -> None:
        """Detach everything and remove the store from its container.

        The next access through the accessor builds a fresh instance.
        """
        if self._disposed:
            return
        self._disposed = True
        self._scope.dispose()
        self._mutation_subscriptions.clear()
        self._action_subscriptions.clear()
        for getter in self._getters.values():
            getter.dispose()
        set_write_hook(self._state, None)
        self._container._forget(self)
        logger.debug("Disposed store %r", self.id)

    # --- Hot update ---

    def _hot_update(self, definition: StoreDefinition) -> list[str]:
        """Swap in a new options definition, keeping current state values.

        Returns the state keys the new definition added.
        """
        fresh = self._initial_state(definition)
        new_keys = [key for key in fresh if not self._state.has(key)]
        for key in new_keys:
            if key in RESERVED or key in definition.getters or key in definition.actions:
                raise InstantiationError(f"store {self.id!r}: state field {key!r} clashes with a store member")

        outer = self._patch_events
        self._patch_events = []
        try:
            for key in new_keys:
                self._state.declare(key, fresh[key])
        finally:
            self._patch_events = outer

        for getter in self._getters.values():
            getter.dispose()
        self._getters = {}
        self._actions = {}
        self._definition = definition
        self._install_getters(definition.getters)
        self._install_actions(definition.actions)
        return new_keys

    # --- Attribute access ---

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails: state, getters, actions, extensions.
        if name.startswith("_"):
            raise AttributeError(name)
        state = self._state
        if state.has(name):
            return state[name]
        if name in self._getters:
            return self._getters[name].get()
        if name in self._actions:
            return self._actions[name]
        if name in self._extensions:
            value = self._extensions[name]
            return value.get() if isinstance(value, Observable) else value
        raise AttributeError(f"store {self.id!r} has no member {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or name == "state":
            object.__setattr__(self, name, value)
        elif name in RESERVED:
            raise AttributeError(f"{name!r} is a built-in store member and cannot be assigned")
        elif self._state.has(name):
            self._state[name] = value
        elif name in self._getters:
            raise AttributeError(f"getter {name!r} of store {self.id!r} is read-only")
        elif name in self._actions:
            raise AttributeError(f"action {name!r} of store {self.id!r} cannot be reassigned")
        elif name in self._extensions:
            current = self._extensions[name]
            if isinstance(current, Observable):
                current.set(value)
            else:
                self._extensions[name] = value
        elif self._held is not None:
            # plugins may attach new fields directly while they run
            self._extend({name: value})
        elif config.is_production():
            logger.warning("Ignored write to undeclared state field %r of store %r", name, self.id)
        else:
            raise UndeclaredStateError(f"store {self.id!r} has no state field {name!r}")

    def __dir__(self) -> list[str]:
        members = set(super().__dir__())
        members.update(self._state.keys(), self._getters, self._actions, self._extensions)
        return sorted(members)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else repr(to_raw(self._state))
        return f"Store({self.id!r}, {state})"


def merge_state(target: ObservableDict, partial: Mapping[str, Any]) -> None:
    """Deep-merge partial into target: dicts merge, other values replace."""
    for key, value in partial.items():
        current = target.peek(key)
        if isinstance(value, Mapping) and isinstance(current, ObservableDict):
            merge_state(current, value)
        else:
            target[key] = value


def _assign(state: ObservableDict, values: Mapping[str, Any]) -> None:
    for key, value in values.items():
        state[key] = value
