"""Dependency tracking and flush scheduling.

Uses contextvars to track which cells are read during a computed/reaction
evaluation, building the dependency graph automatically.

Batching: mutations inside an action, a patch or ``with transaction()``
accumulate invalidations and flush them once at the end. A flush runs queued
``pre`` jobs, then pending derivations, then queued ``post`` jobs, until
nothing is left. Outside any batch a write flushes as soon as it completes.
"""

from __future__ import annotations

import contextvars
import logging
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from pinyx.computed import Computed
    from pinyx.reaction import Reaction

    Derivation = Computed | Reaction

logger = logging.getLogger("pinyx.tracking")

FLUSH_MODES = ("sync", "pre", "post")

# The currently-evaluating derivation (computed or reaction).
# When set, any cell read registers itself as a dependency.
current_derivation: contextvars.ContextVar[Derivation | None] = contextvars.ContextVar(
    "current_derivation", default=None
)

# Batch depth counter. When > 0, invalidations and jobs are deferred.
_batch_depth: int = 0

# Derivations that were invalidated during a batch, awaiting flush.
_pending: set[Derivation] = set()

# Jobs queued for the next flush, in queue order.
_pre_jobs: list[Callable[[], None]] = []
_post_jobs: list[Callable[[], None]] = []

_flushing: bool = False


def begin_batch() -> None:
    """Enter a batching scope. Nested batches are supported."""
    global _batch_depth
    _batch_depth += 1


def end_batch() -> None:
    """Exit a batching scope. When the outermost scope exits, flush."""
    global _batch_depth
    _batch_depth -= 1
    if _batch_depth == 0:
        flush()


def schedule(derivation: Derivation) -> None:
    """Schedule a derivation for re-evaluation.

    Derivations that only mark themselves dirty run at once, so a read
    inside a batch never sees a stale cache. Others defer while a batch is
    open and run immediately otherwise.
    """
    if _batch_depth > 0 and not derivation.marks_dirty:
        _pending.add(derivation)
    else:
        derivation._run()


def queue_job(job: Callable[[], None], flush_mode: str = "pre") -> None:
    """Run job now (``sync``) or at the next flush (``pre``/``post``)."""
    if flush_mode == "sync":
        _run_job(job)
        return
    if flush_mode == "post":
        _post_jobs.append(job)
    else:
        _pre_jobs.append(job)
    if _batch_depth == 0:
        flush()


def flush() -> None:
    """Drain queued jobs and pending derivations.

    Re-entrant calls are no-ops; work queued while flushing is picked up by
    the loop already running. A failing job is logged and the rest still
    run. A failing derivation does not stop the others either; the first
    such error is raised once the queues are empty.
    """
    global _flushing
    if _flushing:
        return
    _flushing = True
    error: Exception | None = None
    try:
        while _pre_jobs or _pending or _post_jobs:
            if _pre_jobs:
                _drain(_pre_jobs)
            elif _pending:
                # Snapshot first: derivations may schedule new ones while running.
                batch = list(_pending)
                _pending.clear()
                for derivation in batch:
                    try:
                        derivation._run()
                    except Exception as exc:
                        if error is None:
                            error = exc
            else:
                _drain(_post_jobs)
    except BaseException:
        _pre_jobs.clear()
        _post_jobs.clear()
        _pending.clear()
        raise
    finally:
        _flushing = False
    if error is not None:
        raise error


def _drain(queue: list[Callable[[], None]]) -> None:
    jobs = list(queue)
    queue.clear()
    for job in jobs:
        _run_job(job)


def _run_job(job: Callable[[], None]) -> None:
    try:
        untracked(job)
    except Exception:
        logger.exception("Subscriber callback failed")


def untracked(fn: Callable[[], object]) -> object:
    """Call fn without registering reads on the current derivation."""
    token = current_derivation.set(None)
    try:
        return fn()
    finally:
        current_derivation.reset(token)


def get_pending_count() -> int:
    """Number of derivations and jobs waiting to run. Useful for testing."""
    return len(_pending) + len(_pre_jobs) + len(_post_jobs)


def _reset() -> None:
    """Drop all queued work. Tests only."""
    global _batch_depth, _flushing
    _batch_depth = 0
    _flushing = False
    _pending.clear()
    _pre_jobs.clear()
    _post_jobs.clear()
