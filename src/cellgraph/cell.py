"""Cells — primitive state that tracks its readers.

When a Cell is read inside a Computation evaluation, the dependency is
registered in both directions. When the Cell changes, its readers are handed
to the scheduler as directly invalidated.

All state lives in the engine's anchor — instances are thin handles holding
an engine and an _id.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from cellgraph import _anchor
from cellgraph.errors import UseAfterDispose

if TYPE_CHECKING:
    from cellgraph.engine import Engine

T = TypeVar("T")


def default_equals(old: object, new: object) -> bool:
    """Identity first, then ==."""
    return old is new or bool(old == new)


class Cell(Generic[T]):
    """A single settable value with automatic dependency tracking."""

    __slots__ = ("_engine", "_id", "_name")

    def __init__(
        self,
        engine: Engine,
        value: T,
        equals: Callable[[T, T], bool] | None = None,
        *,
        name: str | None = None,
    ) -> None:
        anchor = engine.anchor
        self._engine = engine
        self._id = anchor.new_id(_anchor.CELL, name)
        self._name = anchor.names[self._id]
        anchor.values[self._id] = value
        anchor.revisions[self._id] = 0
        anchor.equals[self._id] = equals or engine.equals
        anchor.heights[self._id] = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def disposed(self) -> bool:
        return not self._engine.anchor.is_live(self._id)

    @property
    def revision(self) -> int:
        """Number of value-changing writes so far."""
        self._check("read")
        return self._engine.anchor.revisions[self._id]

    def get(self) -> T:
        """Read the value. If inside a computation, registers the dependency."""
        self._check("read")
        anchor = self._engine.anchor
        reader = self._engine.tracker.top()
        if reader is not None:
            anchor.link(self._id, reader)
        return anchor.values[self._id]

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        self._check("read")
        return self._engine.anchor.values[self._id]

    def set(self, value: T) -> None:
        """Write a new value.

        Inside a running computation or a flush, the write is queued and
        applied once the current pass has settled.
        """
        self._check("write")
        scheduler = self._engine.scheduler
        if scheduler.flushing or self._engine.tracker.evaluating():
            scheduler.defer_write(self._id, value)
        else:
            scheduler.write(self._id, value)
            scheduler.maybe_flush()

    def dispose(self) -> None:
        """Tear the cell down. Readers keep their last output."""
        self._check("dispose")
        self._engine.anchor.release(self._id)

    def _check(self, operation: str) -> None:
        if not self._engine.anchor.is_live(self._id):
            raise UseAfterDispose(self.name, operation)

    def __repr__(self) -> str:
        if self.disposed:
            return f"Cell({self.name}, disposed)"
        return f"Cell({self.name}, {self._engine.anchor.values[self._id]!r})"
