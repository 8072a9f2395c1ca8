"""Observable values — state that tracks its readers.

When a cell is read inside a Computed or Reaction evaluation, the dependency
is automatically registered. When the cell changes, all dependents are
scheduled for re-evaluation.

ObservableDict and ObservableList build deep reactive trees: nested dicts and
lists are wrapped on the way in. Every effective write anywhere in a tree is
reported to the tree's write hook as a WriteEvent; a store installs its hook
on the root of its state tree to turn writes into mutation records.

All state lives in _anchor; instances are thin handles holding an _id.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Mapping
from typing import Any, Callable, Generic, Iterator, NamedTuple, TypeVar

from pinyx import _anchor, config
from pinyx._tracking import begin_batch, current_derivation, end_batch, schedule
from pinyx.errors import UndeclaredStateError

logger = logging.getLogger("pinyx.observable")

T = TypeVar("T")
KT = TypeVar("KT")
VT = TypeVar("VT")

WriteHook = Callable[["WriteEvent"], None]


class WriteEvent(NamedTuple):
    """One effective write inside a reactive tree."""

    kind: str  # "set", "add", "delete" or "clear"
    target: Any
    key: Any
    new_value: Any
    old_value: Any


def _emit(handle_id: int, event: WriteEvent) -> None:
    hook = _anchor.write_hooks.get(handle_id)
    if hook is not None:
        hook(event)


def _forward_to(parent_id: int) -> WriteHook:
    return lambda event: _emit(parent_id, event)


def _track(handle) -> None:
    derivation = current_derivation.get()
    if derivation is not None:
        _anchor.observers[handle._id].add(derivation)
        derivation._dependencies.add(handle)


def _notify(handle) -> None:
    for observer in list(_anchor.observers[handle._id]):
        schedule(observer)


class Observable(Generic[T]):
    """A single observable value with automatic dependency tracking."""

    __slots__ = ("_id", "__weakref__")

    def __init__(self, value: T) -> None:
        self._id = _anchor.new_id(self)
        _anchor.values[self._id] = value
        _anchor.observers[self._id] = set()

    def get(self) -> T:
        """Read the value. If inside a derivation, registers the dependency."""
        _track(self)
        return _anchor.values[self._id]

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return _anchor.values[self._id]

    def set(self, value: T) -> bool:
        """Write a new value. Returns False when it equals the current one."""
        old = _anchor.values[self._id]
        if old is value or old == value:
            return False
        begin_batch()
        try:
            _anchor.values[self._id] = value
            _notify(self)
            _emit(self._id, WriteEvent("set", self, None, value, old))
        finally:
            end_batch()
        return True

    def _remove_observer(self, observer) -> None:
        """Remove an observer. Called during dependency cleanup."""
        _anchor.observers[self._id].discard(observer)

    def __repr__(self) -> str:
        return f"Observable({_anchor.values[self._id]!r})"


class ObservableDict(Generic[KT, VT]):
    """A deep observable dict.

    Each key is backed by its own Observable cell, so a derivation reading
    ``d["a"]`` is not invalidated by writes to ``d["b"]``. Structural reads
    (len, iteration, membership) track the key set.
    """

    __slots__ = ("_id", "__weakref__")

    def __init__(self, data: Mapping[KT, VT] | None = None) -> None:
        self._id = _anchor.new_id(self)
        _anchor.values[self._id] = {}
        _anchor.observers[self._id] = set()
        if data:
            for key, value in data.items():
                self._insert(key, value)

    @property
    def _cells(self) -> dict[KT, Observable]:
        return _anchor.values[self._id]

    def _insert(self, key: KT, value: Any) -> None:
        if isinstance(value, Observable):
            cell = value
            _anchor.values[cell._id] = adopt(reactive(cell.peek()), self._id)
        else:
            cell = Observable(adopt(reactive(value), self._id))
        _anchor.write_hooks[cell._id] = self._cell_hook(cell._id, key)
        self._cells[key] = cell

    def _cell_hook(self, cell_id: int, key: KT) -> WriteHook:
        # the hook lives in _anchor, so it must not keep this dict alive
        owner_ref = weakref.ref(self)

        def hook(event: WriteEvent) -> None:
            owner = owner_ref()
            if owner is None:
                return
            value = _anchor.values[cell_id]
            wrapped = adopt(reactive(value), owner._id)
            if wrapped is not value:
                _anchor.values[cell_id] = wrapped
            _emit(owner._id, WriteEvent(event.kind, owner, key, wrapped, event.old_value))

        return hook

    def _remove_observer(self, observer) -> None:
        _anchor.observers[self._id].discard(observer)

    def _changed(self, event: WriteEvent) -> None:
        _notify(self)
        _emit(self._id, event)

    def _reject(self, key: KT) -> None:
        message = f"cannot add or remove undeclared state key {key!r}"
        if config.is_production():
            logger.warning("Ignored write: %s", message)
            return
        raise UndeclaredStateError(message)

    # --- Sealing ---

    def seal(self) -> None:
        """Refuse new and removed keys from now on, except through declare()."""
        _anchor.sealed.add(self._id)

    @property
    def sealed(self) -> bool:
        return self._id in _anchor.sealed

    def declare(self, key: KT, value: VT) -> None:
        """Add key even if the dict is sealed. Existing keys are just set."""
        if key in self._cells:
            self._cells[key].set(value)
            return
        begin_batch()
        try:
            self._insert(key, value)
            self._changed(WriteEvent("add", self, key, self._cells[key].peek(), None))
        finally:
            end_batch()

    def peek(self, key: KT, default: Any = None) -> Any:
        """Read key without registering a dependency."""
        cell = self._cells.get(key)
        return cell.peek() if cell is not None else default

    def has(self, key: KT) -> bool:
        """Untracked membership test."""
        return key in self._cells

    # --- Read operations (track) ---

    def __getitem__(self, key: KT) -> VT:
        cell = self._cells.get(key)
        if cell is None:
            _track(self)
            raise KeyError(key)
        return cell.get()

    def get(self, key: KT, default: VT | None = None) -> VT | None:
        cell = self._cells.get(key)
        if cell is None:
            _track(self)
            return default
        return cell.get()

    def __contains__(self, key: object) -> bool:
        _track(self)
        return key in self._cells

    def __len__(self) -> int:
        _track(self)
        return len(self._cells)

    def __iter__(self) -> Iterator[KT]:
        _track(self)
        return iter(list(self._cells))

    def keys(self) -> list[KT]:
        _track(self)
        return list(self._cells)

    def values(self) -> list[VT]:
        _track(self)
        return [cell.get() for cell in list(self._cells.values())]

    def items(self) -> list[tuple[KT, VT]]:
        _track(self)
        return [(key, cell.get()) for key, cell in list(self._cells.items())]

    def __bool__(self) -> bool:
        _track(self)
        return bool(self._cells)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ObservableDict):
            other = dict(other.items())
        elif not isinstance(other, Mapping):
            return NotImplemented
        return dict(self.items()) == dict(other)

    # identity hash: dependency sets hold handles
    __hash__ = object.__hash__

    # --- Write operations (notify) ---

    def __setitem__(self, key: KT, value: VT) -> None:
        cell = self._cells.get(key)
        if cell is not None:
            cell.set(value)
            return
        if self.sealed:
            self._reject(key)
            return
        self.declare(key, value)

    def __delitem__(self, key: KT) -> None:
        if key not in self._cells:
            raise KeyError(key)
        if self.sealed:
            self._reject(key)
            return
        begin_batch()
        try:
            cell = self._cells.pop(key)
            old = cell.peek()
            _anchor.write_hooks.pop(cell._id, None)
            _notify(cell)
            self._changed(WriteEvent("delete", self, key, None, old))
        finally:
            end_batch()

    def pop(self, key: KT, *default: Any) -> VT:
        if key not in self._cells:
            if default:
                return default[0]
            raise KeyError(key)
        result = self._cells[key].peek()
        del self[key]
        return result

    def update(self, other: Mapping[KT, VT] | None = None, **kwargs: VT) -> None:
        begin_batch()
        try:
            if other:
                for key, value in other.items():
                    self[key] = value
            for key, value in kwargs.items():
                self[key] = value
        finally:
            end_batch()

    def clear(self) -> None:
        if not self._cells:
            return
        if self.sealed:
            self._reject(next(iter(self._cells)))
            return
        begin_batch()
        try:
            cells = list(self._cells.values())
            old = {key: cell.peek() for key, cell in self._cells.items()}
            self._cells.clear()
            for cell in cells:
                _anchor.write_hooks.pop(cell._id, None)
                _notify(cell)
            self._changed(WriteEvent("clear", self, None, None, old))
        finally:
            end_batch()

    def setdefault(self, key: KT, default: VT | None = None) -> VT:
        if key not in self._cells:
            self[key] = default
        return self[key]

    def __repr__(self) -> str:
        return f"ObservableDict({to_raw(self)!r})"


class ObservableList(Generic[T]):
    """An observable list that tracks reads and notifies on mutation.

    Any read operation (iteration, indexing, len) registers a dependency.
    Any mutation (append, extend, __setitem__, etc.) notifies observers.
    Items that are dicts or lists are wrapped deeply.
    """

    __slots__ = ("_id", "__weakref__")

    def __init__(self, items: list[T] | None = None) -> None:
        self._id = _anchor.new_id(self)
        _anchor.values[self._id] = []
        _anchor.observers[self._id] = set()
        if items:
            self._items.extend(self._wrap(item) for item in items)

    @property
    def _items(self) -> list[T]:
        return _anchor.values[self._id]

    def _wrap(self, item: Any) -> Any:
        return adopt(reactive(item), self._id)

    def _remove_observer(self, observer) -> None:
        _anchor.observers[self._id].discard(observer)

    def _changed(self, kind: str, key: Any, new: Any, old: Any) -> None:
        begin_batch()
        try:
            _notify(self)
            _emit(self._id, WriteEvent(kind, self, key, new, old))
        finally:
            end_batch()

    # --- Read operations (track) ---

    def __getitem__(self, index: int) -> T:
        _track(self)
        return self._items[index]

    def __len__(self) -> int:
        _track(self)
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        _track(self)
        return iter(list(self._items))

    def __contains__(self, item: object) -> bool:
        _track(self)
        return item in self._items

    def __bool__(self) -> bool:
        _track(self)
        return bool(self._items)

    def index(self, item: T) -> int:
        _track(self)
        return self._items.index(item)

    def count(self, item: T) -> int:
        _track(self)
        return self._items.count(item)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ObservableList):
            other = list(other)
        elif not isinstance(other, (list, tuple)):
            return NotImplemented
        return list(self) == list(other)

    # identity hash: dependency sets hold handles
    __hash__ = object.__hash__

    # --- Write operations (notify) ---

    def append(self, item: T) -> None:
        wrapped = self._wrap(item)
        self._items.append(wrapped)
        self._changed("add", len(self._items) - 1, wrapped, None)

    def extend(self, items) -> None:
        wrapped = [self._wrap(item) for item in items]
        if not wrapped:
            return
        start = len(self._items)
        self._items.extend(wrapped)
        self._changed("add", start, wrapped, None)

    def insert(self, index: int, item: T) -> None:
        wrapped = self._wrap(item)
        self._items.insert(index, wrapped)
        self._changed("add", index, wrapped, None)

    def pop(self, index: int = -1) -> T:
        result = self._items.pop(index)
        self._changed("delete", index, None, result)
        return result

    def remove(self, item: T) -> None:
        index = self._items.index(item)
        del self[index]

    def clear(self) -> None:
        if not self._items:
            return
        old = list(self._items)
        self._items.clear()
        self._changed("clear", None, None, old)

    def sort(self, *, key=None, reverse: bool = False) -> None:
        old = list(self._items)
        self._items.sort(key=key, reverse=reverse)
        if self._items != old:
            self._changed("set", None, list(self._items), old)

    def reverse(self) -> None:
        old = list(self._items)
        self._items.reverse()
        if self._items != old:
            self._changed("set", None, list(self._items), old)

    def __setitem__(self, index: int, value: T) -> None:
        old = self._items[index]
        wrapped = self._wrap(value)
        if old is wrapped or old == wrapped:
            return
        self._items[index] = wrapped
        self._changed("set", index, wrapped, old)

    def __delitem__(self, index: int) -> None:
        old = self._items[index]
        del self._items[index]
        self._changed("delete", index, None, old)

    def __repr__(self) -> str:
        return f"ObservableList({to_raw(self)!r})"


def reactive(value: Any) -> Any:
    """Wrap plain dicts and lists deeply; everything else passes through."""
    if isinstance(value, (ObservableDict, ObservableList)):
        return value
    if isinstance(value, dict):
        return ObservableDict(value)
    if isinstance(value, list):
        return ObservableList(value)
    return value


def adopt(value: Any, parent_id: int) -> Any:
    """Route writes below a reactive container to parent_id's hook."""
    if isinstance(value, (ObservableDict, ObservableList)):
        _anchor.write_hooks[value._id] = _forward_to(parent_id)
    return value


def set_write_hook(container: ObservableDict | ObservableList, hook: WriteHook | None) -> None:
    """Install (or remove, with None) the hook receiving every write in a tree."""
    if hook is None:
        _anchor.write_hooks.pop(container._id, None)
    else:
        _anchor.write_hooks[container._id] = hook


def to_raw(value: Any) -> Any:
    """Deep copy of value with every reactive wrapper stripped. Never tracks."""
    if isinstance(value, ObservableDict):
        return {key: to_raw(cell.peek()) for key, cell in value._cells.items()}
    if isinstance(value, ObservableList):
        return [to_raw(item) for item in value._items]
    if isinstance(value, Observable):
        return to_raw(value.peek())
    if isinstance(value, dict):
        return {key: to_raw(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_raw(item) for item in value]
    if isinstance(value, tuple):
        return tuple(to_raw(item) for item in value)
    return value
