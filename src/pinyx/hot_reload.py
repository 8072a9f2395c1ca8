"""Hot update of store definitions. Opt-in: import only during development.

hot_update() swaps the definition behind an existing id and reconciles every
live instance in every container:

- Options stores are updated in place: new state keys get their new
  defaults, existing values are kept, getters and actions are rebuilt.
- Setup stores cannot be patched in place (their actions close over the old
  cells), so they are rebuilt from a snapshot of their current state.

Reconciliation is exception safe: a failure is logged, never raised. An
options store that fails keeps running with its previous getters, actions
and values; a setup store that fails to rebuild keeps its snapshot held, so
the next access retries with the current definition.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable

from pinyx.container import Container, _containers
from pinyx.definition import StoreAccessor, StoreDefinition, get_accessor, parse_definition
from pinyx.errors import DefinitionError
from pinyx.observable import to_raw

logger = logging.getLogger("pinyx.hot_reload")


def hot_update(
    id: str,
    config: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
    **options: Any,
) -> StoreAccessor:
    """Replace the definition of an already defined store.

    Takes the same arguments as define(). Returns the existing accessor,
    which now builds from the new definition.

    Raises:
        DefinitionError: id was never defined, or the new config is invalid.
    """
    accessor = get_accessor(id)
    if accessor is None:
        raise DefinitionError(f"cannot hot-update store {id!r}: it was never defined")
    definition = parse_definition(id, config, options)
    accessor.definition = definition
    for container in list(_containers):
        if id in container.instances:
            _reconcile(container, accessor, definition)
    return accessor


def _reconcile(container: Container, accessor: StoreAccessor, definition: StoreDefinition) -> None:
    store = container.instances[accessor.id]
    try:
        if definition.is_setup or store.definition.is_setup:
            snapshot = to_raw(store.state)
            store.dispose()
            container._held[accessor.id] = snapshot
            container.get_or_create(accessor)
            logger.info("Rebuilt store %r from a %d-key snapshot", accessor.id, len(snapshot))
        else:
            new_keys = store._hot_update(definition)
            logger.info(
                "Reconciled store %r: %d new keys, %d getters, %d actions",
                accessor.id,
                len(new_keys),
                len(definition.getters),
                len(definition.actions),
            )
    except Exception:
        logger.exception("Failed to reconcile store %r", accessor.id)
