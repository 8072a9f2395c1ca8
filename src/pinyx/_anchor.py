"""Data anchor — plain Python structures that hold all reactive state.

Cells, derivations and reactive containers are thin handles holding an
``_id``; everything they own lives in these tables. An id's entries are
released when its handle is garbage collected, so a disposed store's tree
goes away with the last reference to it.
"""

import itertools
import weakref

# Cell state
values: dict[int, object] = {}
observers: dict[int, set] = {}  # cell_id -> set of derivations

# Derivation state (Computed + Reaction)
dependencies: dict[int, set] = {}  # deriv_id -> set of cell-like handles
dirty_flags: dict[int, bool] = {}
cached_values: dict[int, object] = {}
derivation_fns: dict[int, object] = {}  # deriv_id -> callable
disposed: dict[int, bool] = {}

# Write hooks: cell/container id -> callable reporting effective writes
write_hooks: dict[int, object] = {}

# Containers that refuse new keys except through declare()
sealed: set[int] = set()

_id_counter = itertools.count(1)

_TABLES = (values, observers, dependencies, dirty_flags, cached_values, derivation_fns, disposed, write_hooks)


def new_id(handle: object) -> int:
    """Allocate an id whose table entries live as long as handle."""
    handle_id = next(_id_counter)
    weakref.finalize(handle, release, handle_id).atexit = False
    return handle_id


def release(handle_id: int) -> None:
    """Drop every entry stored for handle_id."""
    for table in _TABLES:
        table.pop(handle_id, None)
    sealed.discard(handle_id)
