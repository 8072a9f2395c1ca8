"""Reactions — side effects triggered by state changes.

Unlike Computed (which is lazy and only evaluates on read), a Reaction
eagerly re-runs its side effect whenever its tracked dependencies change.
This is the hook UI bindings use to re-render from store state.

Two flavors:
- autorun(fn): runs fn immediately, re-runs when any cell it read changes.
- reaction(data_fn, effect_fn): tracks data_fn, calls effect_fn with the new
  value only when data_fn's result changes.

Reactions created while a Scope is current are disposed with that scope,
so reactions set up inside a store's setup function end with the store.

All state lives in _anchor; instances are thin handles holding an _id.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from pinyx import _anchor
from pinyx._tracking import current_derivation
from pinyx.scope import bind_to_current_scope

T = TypeVar("T")


class _Derivation:
    """Shared plumbing: dependency bookkeeping and disposal."""

    __slots__ = ("_id", "__weakref__")
    marks_dirty = False

    def __init__(self, fn: Callable) -> None:
        self._id = _anchor.new_id(self)
        _anchor.derivation_fns[self._id] = fn
        _anchor.dependencies[self._id] = set()
        _anchor.disposed[self._id] = False
        bind_to_current_scope(self.dispose)

    @property
    def _dependencies(self) -> set:
        return _anchor.dependencies[self._id]

    @property
    def disposed(self) -> bool:
        return _anchor.disposed[self._id]

    def _track(self, fn: Callable[[], T]) -> T:
        """Call fn as this derivation, replacing the previous dependencies."""
        for dep in _anchor.dependencies[self._id]:
            dep._remove_observer(self)
        _anchor.dependencies[self._id].clear()

        token = current_derivation.set(self)
        try:
            return fn()
        finally:
            current_derivation.reset(token)

    def dispose(self) -> None:
        """Stop this reaction. Disconnects from all dependencies."""
        _anchor.disposed[self._id] = True
        for dep in _anchor.dependencies[self._id]:
            dep._remove_observer(self)
        _anchor.dependencies[self._id].clear()

    def __repr__(self) -> str:
        state = "disposed" if _anchor.disposed[self._id] else "active"
        fn = _anchor.derivation_fns[self._id]
        return f"{type(self).__name__}({getattr(fn, '__name__', fn)!s}, {state})"


class Reaction(_Derivation):
    """A reactive side effect that re-runs when its dependencies change."""

    __slots__ = ()

    def _run(self) -> None:
        if _anchor.disposed[self._id]:
            return
        self._track(_anchor.derivation_fns[self._id])


class DataReaction(_Derivation):
    """reaction(data_fn, effect_fn) implementation.

    Tracks data_fn's dependencies. When they change, re-runs data_fn.
    If the result differs from last time, calls effect_fn with the new value.
    """

    __slots__ = ("_effect_fn", "_last_value", "_initialized")

    def __init__(self, data_fn: Callable, effect_fn: Callable) -> None:
        super().__init__(data_fn)
        self._effect_fn = effect_fn
        self._last_value = None
        self._initialized = False

    def _run(self) -> None:
        if _anchor.disposed[self._id]:
            return
        new_value = self._track(_anchor.derivation_fns[self._id])
        if not self._initialized or new_value != self._last_value:
            self._last_value = new_value
            self._initialized = True
            self._effect_fn(new_value)


def autorun(fn: Callable[[], None]) -> Reaction:
    """Run fn immediately, then re-run whenever any cell it reads changes.

    Returns the Reaction (call .dispose() to stop).

    Usage:
        counter = Observable(0)
        log = []

        r = autorun(lambda: log.append(counter.get()))
        # log == [0], ran immediately

        counter.set(1)
        # log == [0, 1]

        r.dispose()
        counter.set(2)
        # log == [0, 1], stopped
    """
    r = Reaction(fn)
    r._run()  # Initial run to establish dependencies
    return r


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], None],
    *,
    fire_immediately: bool = False,
) -> DataReaction:
    """Track data_fn's cells; call effect_fn when the result changes.

    Unlike autorun, effect_fn only fires when data_fn's *return value* changes,
    not on every dependency notification.

    Usage:
        store = use_settings()
        r = reaction(lambda: store.theme, apply_theme)
        store.theme = "dark"   # apply_theme("dark")
        r.dispose()
    """
    r = DataReaction(data_fn, effect_fn)
    if fire_immediately:
        r._run()
    else:
        # Run data_fn to establish deps, but suppress the initial effect
        r._last_value = r._track(data_fn)
        r._initialized = True
    return r
