"""Data anchor — plain Python structures that hold all reactive state of one engine.

Cells, Computations and Subscriptions are thin handles holding an id; their
data lives here. Edges are stored as ids in both directions, so a node never
holds a reference to the handle of its dependents.
"""

from __future__ import annotations

import itertools
from collections import Counter

CELL = "cell"
COMPUTATION = "computation"
SUBSCRIPTION = "subscription"

# Cached output of a computation that never completed a run.
UNSET = object()


class Anchor:
    """Id-keyed state tables for one engine."""

    def __init__(self) -> None:
        self.kinds: dict[int, str] = {}
        self.names: dict[int, str] = {}

        # Cell value or cached computation output
        self.values: dict[int, object] = {}
        self.revisions: dict[int, int] = {}
        self.equals: dict[int, object] = {}

        # node_id -> ids of computations/subscriptions that read it
        self.observers: dict[int, set[int]] = {}
        # node_id -> ids it read on its last run, in discovery order
        self.dependencies: dict[int, dict[int, None]] = {}

        # Computation function or subscription callback
        self.derivation_fns: dict[int, object] = {}
        self.dirty_flags: dict[int, bool] = {}
        self.generations: dict[int, int] = {}
        self.heights: dict[int, int] = {}
        # Computations whose last evaluation raised -> the error
        self.failures: dict[int, BaseException] = {}

        # kind -> number of live nodes
        self._live: Counter[str] = Counter()

        self._id_counter = itertools.count(1)

    def new_id(self, kind: str, name: str | None) -> int:
        node_id = next(self._id_counter)
        self.kinds[node_id] = kind
        self._live[kind] += 1
        self.names[node_id] = name or f"{kind}#{node_id}"
        self.observers[node_id] = set()
        self.dependencies[node_id] = {}
        return node_id

    def link(self, dependency: int, dependent: int) -> None:
        """Record that `dependent` read `dependency`."""
        self.observers[dependency].add(dependent)
        self.dependencies[dependent].setdefault(dependency, None)

    def unlink_all(self, dependent: int) -> dict[int, None]:
        """Drop every outgoing edge of `dependent`; return the old dependency set."""
        previous = self.dependencies[dependent]
        for dep in previous:
            observers = self.observers.get(dep)
            if observers is not None:
                observers.discard(dependent)
        self.dependencies[dependent] = {}
        return previous

    def is_live(self, node_id: int) -> bool:
        return node_id in self.kinds

    def release(self, node_id: int) -> None:
        """Forget all state of a disposed node. Handles keep their own name."""
        self.unlink_all(node_id)
        self._live[self.kinds.pop(node_id)] -= 1
        for table in (
            self.names,
            self.values,
            self.revisions,
            self.equals,
            self.observers,
            self.dependencies,
            self.derivation_fns,
            self.dirty_flags,
            self.generations,
            self.heights,
            self.failures,
        ):
            table.pop(node_id, None)

    def live_count(self, kind: str) -> int:
        return self._live[kind]
