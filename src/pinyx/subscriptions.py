"""Subscription lists and mutation records.

Both store buses (state mutations and action calls) keep their callbacks in
a SubscriptionList. Callbacks run in registration order. A subscription
added while a Scope is current is removed when that scope is disposed,
unless it was added with ``detached=True``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from pinyx._tracking import FLUSH_MODES, queue_job
from pinyx.observable import WriteEvent
from pinyx.scope import get_current_scope

C = TypeVar("C", bound=Callable[..., Any])


class MutationType(str, enum.Enum):
    """How a store's state was changed."""

    DIRECT = "direct"
    PATCH_OBJECT = "patch-object"
    PATCH_FUNCTION = "patch-function"


@dataclass(frozen=True)
class MutationRecord:
    """Payload delivered to state subscribers, one per state change.

    ``payload`` is the partial state for PATCH_OBJECT records, None
    otherwise. ``events`` lists the underlying cell writes.
    """

    store_id: str
    type: MutationType
    payload: dict | None = None
    events: tuple[WriteEvent, ...] = field(default=(), repr=False)


@dataclass(eq=False)
class Subscription(Generic[C]):
    callback: C
    flush: str = "sync"
    active: bool = True


class SubscriptionList(Generic[C]):
    """Ordered callbacks with removal handles."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription[C]] = []

    def add(self, callback: C, *, detached: bool = False, flush: str = "sync") -> Callable[[], None]:
        """Register callback. Returns a function that removes it."""
        if flush not in FLUSH_MODES:
            raise ValueError(f"flush must be one of {FLUSH_MODES}, got {flush!r}")
        subscription = Subscription(callback, flush)
        self._subscriptions.append(subscription)

        scope = None if detached else get_current_scope()

        def _remove() -> None:
            subscription.active = False
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass  # already removed
            if scope is not None:
                scope.discard(_remove)

        if scope is not None:
            scope.on_dispose(_remove)
        return _remove

    def trigger(self, *args: Any) -> None:
        """Call every callback with args, honoring each one's flush mode.

        A subscription removed before its queued delivery runs is skipped.
        """
        for subscription in list(self._subscriptions):
            queue_job(_deliver(subscription, args), subscription.flush)

    def clear(self) -> None:
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)


def _deliver(subscription: Subscription, args: tuple) -> Callable[[], None]:
    def job() -> None:
        if subscription.active:
            subscription.callback(*args)

    return job
