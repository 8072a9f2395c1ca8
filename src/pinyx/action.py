"""Actions — batched state mutations and the action interception bus.

Wrapping mutations in an @action or ``with transaction()`` defers all
reaction/computed invalidation until the outermost scope exits, so no
dependent sees a half-applied change.

Store actions go one step further: every call first announces itself to the
store's action subscribers with an ActionContext, whose ``after`` and
``on_error`` registrars let subscribers observe the outcome without the
action author's cooperation. Coroutine actions are awaited by the wrapper,
so ``after``/``on_error`` callbacks fire only once the coroutine settles.
"""

from __future__ import annotations

import functools
import inspect
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ParamSpec, TypeVar

from pinyx._tracking import begin_batch, end_batch

if TYPE_CHECKING:
    from pinyx.store import Store

logger = logging.getLogger("pinyx.action")

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch all observable mutations inside fn.

    Reactions only fire after fn returns, not during.

    Usage:
        counter_a = Observable(0)
        counter_b = Observable(0)

        @action
        def swap():
            a, b = counter_a.get(), counter_b.get()
            counter_a.set(b)
            counter_b.set(a)
            # reactions see both changes at once, not one at a time
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        begin_batch()
        try:
            return fn(*args, **kwargs)
        finally:
            end_batch()

    return wrapper


@contextmanager
def transaction():
    """Context manager for batching mutations.

    Usage:
        with transaction():
            counter_a.set(1)
            counter_b.set(2)
            # reactions fire here, after both are set
    """
    begin_batch()
    try:
        yield
    finally:
        end_batch()


@dataclass
class ActionContext:
    """What an action subscriber learns about one call."""

    name: str
    store: Store
    args: tuple
    kwargs: dict
    _after: list[Callable[[Any], None]] = field(default_factory=list, repr=False)
    _on_error: list[Callable[[BaseException], None]] = field(default_factory=list, repr=False)

    def after(self, callback: Callable[[Any], None]) -> None:
        """Call callback with the action's (awaited) return value."""
        self._after.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        """Call callback with the exception the action raised."""
        self._on_error.append(callback)

    def _succeeded(self, value: Any) -> None:
        for callback in self._after:
            try:
                callback(value)
            except Exception:
                logger.exception("after() callback of action %r failed", self.name)

    def _failed(self, error: BaseException) -> None:
        for callback in self._on_error:
            try:
                callback(error)
            except Exception:
                logger.exception("on_error() callback of action %r failed", self.name)


def wrap_action(store: Store, name: str, fn: Callable[..., R], *, bound: bool = True) -> Callable[..., R]:
    """Return fn as an intercepted action of store.

    ``bound`` actions receive the store as their first argument (options
    style); unbound ones close over their state themselves (setup style).
    """

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        context = ActionContext(name=name, store=store, args=args, kwargs=kwargs)
        store._action_subscriptions.trigger(context)

        # callbacks run once the batch has flushed
        try:
            with store.container.activate():
                begin_batch()
                try:
                    result = fn(store, *args, **kwargs) if bound else fn(*args, **kwargs)
                finally:
                    end_batch()
        except Exception as error:
            context._failed(error)
            raise

        if inspect.isawaitable(result):
            return _settle(context, result)
        context._succeeded(result)
        return result

    return wrapper


async def _settle(context: ActionContext, awaitable: Awaitable[R]) -> R:
    try:
        with context.store.container.activate():
            value = await awaitable
    except Exception as error:
        context._failed(error)
        raise
    context._succeeded(value)
    return value
