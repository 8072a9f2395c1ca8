"""Scopes — owners of cleanup work.

A Scope stands for whatever external lifetime owns a subscription, such as a
UI component. While a scope is current (``with scope:``), non-detached store
subscriptions, action subscriptions and reactions register their removal on
it; ``scope.dispose()`` then tears them all down at once.

Every store owns a private scope that its own dispose() ends.
"""

from __future__ import annotations

import contextvars
from typing import Callable

_current_scope: contextvars.ContextVar[Scope | None] = contextvars.ContextVar(
    "current_scope", default=None
)


class Scope:
    """A bag of cleanup callbacks with an activation context."""

    __slots__ = ("_cleanups", "_disposed", "_tokens")

    def __init__(self) -> None:
        self._cleanups: list[Callable[[], None]] = []
        self._disposed = False
        self._tokens: list[contextvars.Token] = []

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on_dispose(self, cleanup: Callable[[], None]) -> Callable[[], None]:
        """Run cleanup when the scope is disposed. Runs now if it already was."""
        if self._disposed:
            cleanup()
        else:
            self._cleanups.append(cleanup)
        return cleanup

    def discard(self, cleanup: Callable[[], None]) -> None:
        """Forget a cleanup that already ran elsewhere."""
        try:
            self._cleanups.remove(cleanup)
        except ValueError:
            pass

    def run(self, fn: Callable[[], object]) -> object:
        """Call fn with this scope current."""
        with self:
            return fn()

    def dispose(self) -> None:
        """Run every cleanup once, most recent first."""
        if self._disposed:
            return
        self._disposed = True
        cleanups = self._cleanups[::-1]
        self._cleanups.clear()
        for cleanup in cleanups:
            cleanup()

    def __enter__(self) -> Scope:
        self._tokens.append(_current_scope.set(self))
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        _current_scope.reset(self._tokens.pop())

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else f"{len(self._cleanups)} cleanups"
        return f"Scope({state})"


def get_current_scope() -> Scope | None:
    return _current_scope.get()


def bind_to_current_scope(cleanup: Callable[[], None]) -> None:
    """Register cleanup on the current scope, if any."""
    scope = _current_scope.get()
    if scope is not None:
        scope.on_dispose(cleanup)
