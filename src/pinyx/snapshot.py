"""Container snapshots — serialize() and hydrate().

The wire format is a plain JSON-compatible mapping ``{store_id: state}``.
serialize() strips every reactive wrapper and drops values JSON cannot
carry (functions, handles, sets, ...). hydrate() patches live stores and
holds fragments for stores not built yet; the held fragment is merged right
after the store's state factory runs, before anyone sees the instance.

Hydration usually runs at startup, so a bad fragment is logged and skipped
instead of raised: the other stores still hydrate.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pinyx.errors import HydrationError
from pinyx.observable import to_raw

if TYPE_CHECKING:
    from pinyx.container import Container

logger = logging.getLogger("pinyx.snapshot")

_DROP = object()


class SkipHydrate:
    """Marks a state value that snapshots must leave alone."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"skip_hydrate({self.value!r})"


def skip_hydrate(value: Any) -> SkipHydrate:
    """Exclude a state field from serialize() and hydrate().

    Use it for state that only makes sense in the current process, such as
    an open connection::

        state=lambda: {"socket": skip_hydrate(None), "messages": []}
    """
    return SkipHydrate(value)


def serialize(container: Container) -> dict[str, dict[str, Any]]:
    """Plain-data state of every store instantiated in container."""
    snapshot = {}
    for store_id, store in container.instances.items():
        raw = to_raw(store.state)
        for key in store._skip_hydrate:
            raw.pop(key, None)
        snapshot[store_id] = _plain(raw)
    return snapshot


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        result = {}
        for key, item in value.items():
            if not isinstance(key, str):
                continue
            item = _plain(item)
            if item is not _DROP:
                result[key] = item
        return result
    if isinstance(value, (list, tuple)):
        return [item for item in map(_plain, value) if item is not _DROP]
    return _DROP


def hydrate(container: Container, snapshot: Mapping[str, Any]) -> None:
    """Restore store states from a serialize() snapshot.

    Live stores are patched (one mutation record each). Fragments for stores
    that do not exist yet are held until their first access.
    """
    if not isinstance(snapshot, Mapping):
        logger.error("Ignored snapshot: expected a mapping, got %s", type(snapshot).__name__)
        return
    for store_id, fragment in snapshot.items():
        try:
            if not isinstance(fragment, Mapping):
                raise HydrationError(
                    f"fragment for store {store_id!r} is {type(fragment).__name__}, expected a mapping"
                )
            store = container.instances.get(store_id)
            if store is None:
                container._held[store_id] = dict(fragment)
                logger.debug("Holding snapshot for store %r until first access", store_id)
            else:
                store._hydrate(fragment)
        except Exception:
            logger.exception("Failed to hydrate store %r", store_id)
