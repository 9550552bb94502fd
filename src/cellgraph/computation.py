"""Computations — derived state with automatic dependency tracking.

A Computation wraps a function. When evaluated, it records which cells and
computations the function reads and caches the result. When a dependency
changes, the scheduler re-evaluates it; when nothing has evaluated it yet, the
first read does.

All state lives in the engine's anchor — instances are thin handles holding
an engine and an _id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from cellgraph import _anchor
from cellgraph.errors import (
    CellgraphError,
    CyclicDependency,
    UseAfterDispose,
    UserFunctionError,
)

if TYPE_CHECKING:
    from cellgraph.engine import Engine

logger = logging.getLogger("cellgraph.computation")

T = TypeVar("T")


class Computation(Generic[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_engine", "_id", "_name")

    def __init__(
        self,
        engine: Engine,
        fn: Callable[[], T],
        equals: Callable[[T, T], bool] | None = None,
        *,
        name: str | None = None,
    ) -> None:
        anchor = engine.anchor
        self._engine = engine
        self._id = anchor.new_id(_anchor.COMPUTATION, name)
        if name is None:
            anchor.names[self._id] = f"{getattr(fn, '__name__', 'computation')}#{self._id}"
        self._name = anchor.names[self._id]
        anchor.derivation_fns[self._id] = fn
        anchor.values[self._id] = _anchor.UNSET
        anchor.revisions[self._id] = 0
        anchor.equals[self._id] = equals or engine.equals
        anchor.dirty_flags[self._id] = True
        anchor.generations[self._id] = 0
        anchor.heights[self._id] = 1

    @property
    def name(self) -> str:
        return self._name

    @property
    def disposed(self) -> bool:
        return not self._engine.anchor.is_live(self._id)

    @property
    def dirty(self) -> bool:
        """True until the next successful evaluation."""
        self._check("read")
        return self._engine.anchor.dirty_flags[self._id]

    @property
    def error(self) -> BaseException | None:
        """The error of the last evaluation, until the next invalidation."""
        self._check("read")
        return self._engine.anchor.failures.get(self._id)

    def get(self) -> T:
        """Read the value, evaluating first if dirty. Tracked."""
        self._check("read")
        engine = self._engine
        anchor = engine.anchor
        if self._id in engine.tracker:
            raise CyclicDependency(_cycle_path(engine, self._id))
        try:
            self._settle()
        finally:
            reader = engine.tracker.top()
            if reader is not None and anchor.is_live(self._id):
                anchor.link(self._id, reader)
        return anchor.values[self._id]

    def peek(self) -> T:
        """Read the value, evaluating first if dirty. Untracked."""
        self._check("read")
        self._settle()
        return self._engine.anchor.values[self._id]

    def dispose(self) -> None:
        """Disconnect from all dependencies and forget the cached output."""
        self._check("dispose")
        self._engine.anchor.release(self._id)

    def _settle(self) -> None:
        """Evaluate if dirty. A failed computation waits for its next invalidation."""
        anchor = self._engine.anchor
        failure = anchor.failures.get(self._id)
        if failure is not None:
            if anchor.values[self._id] is _anchor.UNSET:
                raise failure
            return
        if anchor.dirty_flags[self._id]:
            self._refresh()

    def _refresh(self) -> None:
        evaluate(self._engine, self._id)
        if not self._engine.tracker.evaluating():
            self._engine.scheduler.maybe_flush()

    def _check(self, operation: str) -> None:
        if not self._engine.anchor.is_live(self._id):
            raise UseAfterDispose(self.name, operation)

    def __repr__(self) -> str:
        anchor = self._engine.anchor
        if self.disposed:
            return f"Computation({self.name}, disposed)"
        val = anchor.values[self._id]
        state = "dirty" if anchor.dirty_flags[self._id] or val is _anchor.UNSET else f"cached={val!r}"
        return f"Computation({self.name}, {state})"


def evaluate(engine: Engine, node_id: int) -> bool:
    """Re-run a computation, rebuilding its dependency edges.

    Returns whether the cached output changed. A changed output is reported
    to the scheduler, which invalidates the computation's own readers. On
    failure, including a failing equality check, the previous edges are
    restored, the output is left untouched and the computation stays dirty.
    """
    anchor = engine.anchor
    tracker = engine.tracker
    if not anchor.is_live(node_id):
        raise UseAfterDispose(f"computation#{node_id}", "evaluate")
    name = anchor.names[node_id]
    if node_id in tracker:
        raise CyclicDependency(_cycle_path(engine, node_id))

    engine.scheduler.count_evaluation(node_id)
    previous = anchor.unlink_all(node_id)
    tracker.push(node_id)
    try:
        value = anchor.derivation_fns[node_id]()
    except CellgraphError as exc:
        _fail(anchor, node_id, name, previous, exc)
        raise
    except Exception as exc:
        error = UserFunctionError(name, exc)
        _fail(anchor, node_id, name, previous, error)
        raise error from exc
    finally:
        tracker.pop()

    if not anchor.is_live(node_id):
        return False

    old = anchor.values[node_id]
    try:
        unchanged = old is not _anchor.UNSET and bool(anchor.equals[node_id](old, value))
    except Exception as exc:
        error = UserFunctionError(name, exc)
        _fail(anchor, node_id, name, previous, error)
        raise error from exc

    anchor.dirty_flags[node_id] = False
    anchor.heights[node_id] = 1 + max(
        (anchor.heights.get(dep, 0) for dep in anchor.dependencies[node_id]),
        default=0,
    )
    if unchanged:
        logger.debug("%s evaluated, output unchanged", name)
        return False

    anchor.values[node_id] = value
    anchor.revisions[node_id] += 1
    logger.debug("%s evaluated, output changed", name)
    engine.scheduler.node_changed(node_id)
    return True


def _fail(
    anchor: _anchor.Anchor, node_id: int, name: str, previous: dict[int, None], error: BaseException
) -> None:
    logger.warning("%s failed, keeping last output: %s", name, error)
    if not anchor.is_live(node_id):
        return
    anchor.failures[node_id] = error
    # Keep edges discovered before the failure and add back the old ones.
    for dep in previous:
        if anchor.is_live(dep):
            anchor.link(dep, node_id)
    anchor.dirty_flags[node_id] = True


def _cycle_path(engine: Engine, node_id: int) -> list[str]:
    names = engine.anchor.names
    return [names[frame] for frame in engine.tracker.path_from(node_id)] + [names[node_id]]
