"""Dependency tracker — records which computation is currently running.

Each engine owns one Tracker. Any Cell.get() or Computation.get() consults
top(); when a computation is running, the read becomes a dependency edge.
An untracked frame (None) hides the computations below it, so reads made
through Engine.untracked() record nothing.
"""

from __future__ import annotations


class Tracker:
    """Execution-context stack of running computation ids."""

    __slots__ = ("_stack",)

    def __init__(self) -> None:
        self._stack: list[int | None] = []

    def push(self, node_id: int | None) -> None:
        self._stack.append(node_id)

    def pop(self) -> int | None:
        return self._stack.pop()

    def top(self) -> int | None:
        """The computation a read should be attributed to, or None."""
        return self._stack[-1] if self._stack else None

    def path_from(self, node_id: int) -> list[int]:
        """Stack slice from the outermost frame of node_id to the top."""
        start = self._stack.index(node_id)
        return [frame for frame in self._stack[start:] if frame is not None]

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._stack

    def __len__(self) -> int:
        return len(self._stack)

    def evaluating(self) -> bool:
        """True while any computation is running, tracked or not."""
        return any(frame is not None for frame in self._stack)
