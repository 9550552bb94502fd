"""Engine — owns the state, tracker and scheduler behind every handle it creates.

Engines are independent: cells of one engine never invalidate computations of
another, so tests and hosts can run several side by side.
"""

from __future__ import annotations

import itertools
from contextlib import AbstractContextManager
from typing import Callable, Iterable, Mapping, TypeVar

from cellgraph._anchor import Anchor
from cellgraph._tracking import Tracker
from cellgraph.action import action as _action, transaction as _transaction
from cellgraph.cell import Cell, default_equals
from cellgraph.computation import Computation
from cellgraph.group import Group, Subscription
from cellgraph.scheduler import Scheduler

T = TypeVar("T")
R = TypeVar("R")


class Engine:
    """Factory and runtime for one reactive graph.

    Args:
        equals: default equality policy for cells and computations. A write
            or a re-evaluation whose result is equal to the previous value
            does not propagate.
        max_passes: how many rounds of deferred writes one flush may apply
            before it gives up with CyclicDependency.
        name: used in reprs and log messages.
    """

    def __init__(
        self,
        *,
        equals: Callable[[object, object], bool] = default_equals,
        max_passes: int = 100,
        name: str | None = None,
    ) -> None:
        self.name = name or "engine"
        self.equals = equals
        self.anchor = Anchor()
        self.tracker = Tracker()
        self.scheduler = Scheduler(self, max_passes=max_passes)
        self._group_counter = itertools.count(1)

    @property
    def state(self) -> str:
        """Either "idle" or "flushing"."""
        return self.scheduler.state

    def pending_count(self) -> int:
        """Writes waiting for the end of a batch. Useful for testing."""
        return self.scheduler.pending_count()

    def create_cell(
        self, initial: T, equals: Callable[[T, T], bool] | None = None, *, name: str | None = None
    ) -> Cell[T]:
        return Cell(self, initial, equals, name=name)

    def create_computation(
        self, fn: Callable[[], T], equals: Callable[[T, T], bool] | None = None, *, name: str | None = None
    ) -> Computation[T]:
        return Computation(self, fn, equals, name=name)

    def computed(self, fn: Callable[[], T]) -> Computation[T]:
        """Decorator form of create_computation.

        Usage:
            counter = engine.create_cell(0)

            @engine.computed
            def doubled():
                return counter.get() * 2

            doubled.get()  # 0
            counter.set(5)
            doubled.get()  # 10
        """
        return Computation(self, fn)

    def declare_group(
        self,
        entries: Mapping[str, object] | Iterable[tuple[str, object]],
        *,
        name: str | None = None,
    ) -> Group:
        """Create cells and computations in order and return them as a Group."""
        group = Group(self, name or f"group#{next(self._group_counter)}")
        group._declare(entries)
        return group

    def observe_group(
        self, group: Group, on_change: Callable[[tuple[str, ...]], None]
    ) -> Subscription:
        """Call on_change once per flush that changes any entry of group."""
        if group.engine is not self:
            raise ValueError(f"{group.name} belongs to another engine")
        return Subscription(self, group, on_change)

    def batch(self) -> AbstractContextManager[None]:
        """Defer the flush until the block exits. Nestable."""
        return _transaction(self)

    def action(self, fn: Callable[..., R]) -> Callable[..., R]:
        """Decorator: batch all writes made by fn."""
        return _action(self)(fn)

    def untracked(self, fn: Callable[[], R]) -> R:
        """Run fn without recording its reads as dependencies."""
        self.tracker.push(None)
        try:
            return fn()
        finally:
            self.tracker.pop()

    def __repr__(self) -> str:
        return f"Engine({self.name}, {self.state})"
