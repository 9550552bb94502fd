"""Invalidation scheduler — turns cell writes into one settled update.

A flush runs synchronously on the first value-changing write, or at the exit
of the outermost batch. Invalidated computations sit in a min-heap ordered by
height (distance from the cells they read), so every computation runs after
the computations it depends on have settled. Each heap entry carries the
generation its computation had when pushed; an entry whose computation has
since been invalidated again, evaluated, or disposed is skipped.

Writes issued while a computation runs or a flush is in progress are queued
and applied in a further pass of the same flush. Subscriptions are notified
once, after every pass has settled.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from collections import Counter
from typing import TYPE_CHECKING

from cellgraph import _anchor
from cellgraph.computation import evaluate
from cellgraph.errors import CellgraphError, CyclicDependency, InvariantViolation, UserFunctionError

if TYPE_CHECKING:
    from cellgraph.engine import Engine

logger = logging.getLogger("cellgraph.scheduler")

IDLE = "idle"
FLUSHING = "flushing"


class Scheduler:
    """Collects invalidations and settles them, one flush at a time."""

    def __init__(self, engine: Engine, *, max_passes: int = 100) -> None:
        self._engine = engine
        self._anchor = engine.anchor
        self._max_passes = max_passes
        self.state = IDLE
        self._batch_depth = 0

        # Cells written since the last flush -> value before their first write
        self._written: dict[int, object] = {}
        # Writes queued while evaluating or flushing, applied in order
        self._deferred: list[tuple[int, object]] = []
        self._heap: list[tuple[int, int, int, int]] = []
        self._sequence = itertools.count()
        self._evaluations: Counter[int] = Counter()
        self._evaluation_limit = 0
        # subscription id -> ids of its entries that changed in this flush
        self._notify: dict[int, dict[int, None]] = {}
        self._errors: list[BaseException] = []

    @property
    def flushing(self) -> bool:
        return self.state == FLUSHING

    # --- Batching ---

    def begin_batch(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        self._batch_depth += 1

    def end_batch(self) -> None:
        """Exit a batching scope. When the outermost scope exits, flush."""
        self._batch_depth -= 1
        if self._batch_depth == 0:
            self.maybe_flush()

    def pending_count(self) -> int:
        """Number of writes waiting for a flush. Useful for testing."""
        return len(self._written) + len(self._deferred)

    # --- Inputs ---

    def write(self, cell_id: int, value: object) -> None:
        """Store a cell value and remember what it was before this batch."""
        anchor = self._anchor
        old = anchor.values[cell_id]
        if self._same(cell_id, old, value):
            return
        anchor.values[cell_id] = value
        anchor.revisions[cell_id] += 1
        self._written.setdefault(cell_id, old)

    def defer_write(self, cell_id: int, value: object) -> None:
        logger.debug("Deferring write to %s", self._anchor.names[cell_id])
        self._deferred.append((cell_id, value))

    def node_changed(self, node_id: int) -> None:
        """A computation's output changed; its current readers must re-evaluate.

        Outside a flush the readers wait in the heap for the next one.
        """
        self._invalidate_readers(node_id)

    def count_evaluation(self, node_id: int) -> None:
        if not self.flushing:
            return
        self._evaluations[node_id] += 1
        limit = self._evaluation_limit
        if self._evaluations[node_id] > limit:
            raise InvariantViolation(
                f"{self._anchor.names[node_id]} evaluated {self._evaluations[node_id]} "
                f"times in one pass (limit {limit})"
            )

    # --- Flush ---

    def maybe_flush(self) -> None:
        """Flush if there is work and nothing holds the flush back."""
        if self.flushing or self._batch_depth or self._engine.tracker.evaluating():
            return
        if self._written or self._deferred or self._heap or self._notify:
            self.flush()

    def flush(self) -> None:
        """Settle every pending change, then notify subscriptions once."""
        if self.flushing:
            raise InvariantViolation("flush() re-entered while flushing")
        self.state = FLUSHING
        self._start_pass()
        passes = 0
        logger.debug("Flush started")
        try:
            while True:
                self._apply_deferred()
                seeds = self._take_seeds()
                if seeds:
                    passes += 1
                    if passes > self._max_passes:
                        raise CyclicDependency(
                            [self._anchor.names[node_id] for node_id in seeds]
                        )
                    self._start_pass()
                    for node_id in seeds:
                        self._invalidate_readers(node_id)
                self._drain()
                if self._deferred or self._written:
                    continue
                if not self._notify:
                    break
                self._notify_subscriptions()
        finally:
            errors = self._errors
            self._reset()
            logger.debug("Flush finished after %d pass(es)", passes)

        if errors:
            for extra in errors[1:]:
                logger.error("Additional error during flush: %r", extra)
            raise errors[0]

    def _start_pass(self) -> None:
        self._evaluations.clear()
        self._evaluation_limit = self._anchor.live_count(_anchor.COMPUTATION) + 1

    def _apply_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for cell_id, value in deferred:
            if not self._anchor.is_live(cell_id):
                logger.debug("Dropping deferred write to disposed cell#%d", cell_id)
                continue
            try:
                self.write(cell_id, value)
            except UserFunctionError as exc:
                self._record(exc)

    def _take_seeds(self) -> list[int]:
        """Cells whose net value changed since the last flush."""
        anchor = self._anchor
        written, self._written = self._written, {}
        seeds = []
        for cell_id, before in written.items():
            if not anchor.is_live(cell_id):
                continue
            try:
                unchanged = self._same(cell_id, before, anchor.values[cell_id])
            except UserFunctionError as exc:
                # Uncomparable values count as changed
                self._record(exc)
                unchanged = False
            if not unchanged:
                seeds.append(cell_id)
        return seeds

    def _same(self, cell_id: int, old: object, new: object) -> bool:
        anchor = self._anchor
        try:
            return bool(anchor.equals[cell_id](old, new))
        except Exception as exc:
            raise UserFunctionError(anchor.names[cell_id], exc) from exc

    def _invalidate_readers(self, node_id: int) -> None:
        anchor = self._anchor
        for reader in sorted(anchor.observers.get(node_id, ())):
            if anchor.kinds[reader] == _anchor.SUBSCRIPTION:
                self._notify.setdefault(reader, {})[node_id] = None
                continue
            anchor.dirty_flags[reader] = True
            anchor.failures.pop(reader, None)
            anchor.generations[reader] += 1
            heapq.heappush(
                self._heap,
                (anchor.heights[reader], next(self._sequence), reader, anchor.generations[reader]),
            )

    def _drain(self) -> None:
        anchor = self._anchor
        while self._heap:
            _, _, node_id, generation = heapq.heappop(self._heap)
            if (
                not anchor.is_live(node_id)
                or generation != anchor.generations[node_id]
                or not anchor.dirty_flags[node_id]
            ):
                continue
            try:
                evaluate(self._engine, node_id)
            except CellgraphError as exc:
                self._record(exc)

    def _notify_subscriptions(self) -> None:
        anchor = self._anchor
        notify, self._notify = self._notify, {}
        for sub_id, changed in notify.items():
            if not anchor.is_live(sub_id):
                continue
            callback = anchor.derivation_fns[sub_id]
            try:
                callback(tuple(changed))
            except Exception as exc:
                self._record(exc)

    def _record(self, exc: BaseException) -> None:
        if not any(exc is seen for seen in self._errors):
            self._errors.append(exc)

    def _reset(self) -> None:
        self.state = IDLE
        self._written = {}
        self._deferred = []
        self._heap = []
        self._notify = {}
        self._evaluations.clear()
        self._errors = []
