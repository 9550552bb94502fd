"""Groups — named cells and computations declared together.

A Group is the attachment point for a host: it declares an ordered set of
entries once, exposes them by name, and carries the subscriptions a host
registers on it. Entries are created and first evaluated in declaration
order, so an entry may read the entries declared before it.

Usage:
    profile = engine.declare_group({
        "first": "Ada",
        "last": "Lovelace",
        "full": lambda g: f"{g.first.get()} {g.last.get()}",
    })
    sub = engine.observe_group(profile, lambda changed: render(profile))
    profile.set("first", "Augusta")   # render() runs once, changed == ("first", "full")
    sub.dispose()
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Union

from cellgraph import _anchor
from cellgraph.action import transaction
from cellgraph.cell import Cell
from cellgraph.computation import Computation
from cellgraph.errors import UseAfterDispose

if TYPE_CHECKING:
    from cellgraph.engine import Engine

logger = logging.getLogger("cellgraph.group")

Entry = Union[Cell, Computation]

_NO_VALUE = object()


class CellSpec:
    """Declares a cell entry: a fixed initial value or a factory of the group."""

    __slots__ = ("initial", "factory", "equals")

    def __init__(self, initial=_NO_VALUE, factory=None, equals=None) -> None:
        self.initial = initial
        self.factory = factory
        self.equals = equals


class DerivedSpec:
    """Declares a computation entry; fn receives the group."""

    __slots__ = ("fn", "equals")

    def __init__(self, fn, equals=None) -> None:
        self.fn = fn
        self.equals = equals


def cell(initial=_NO_VALUE, *, factory: Callable[[Group], object] | None = None, equals=None) -> CellSpec:
    """Cell entry. Use factory= to compute the initial value from earlier entries."""
    if (initial is _NO_VALUE) == (factory is None):
        raise TypeError("cell() takes exactly one of an initial value or factory=")
    return CellSpec(initial, factory, equals)


def derived(fn: Callable[[Group], object], *, equals=None) -> DerivedSpec:
    """Computation entry. Needed only to pass equals=; bare callables work too."""
    return DerivedSpec(fn, equals)


def _coerce(spec) -> CellSpec | DerivedSpec:
    if isinstance(spec, (CellSpec, DerivedSpec)):
        return spec
    if callable(spec):
        return DerivedSpec(spec)
    return CellSpec(spec)


class Group:
    """Ordered, named entries plus the subscriptions observing them."""

    def __init__(self, engine: Engine, name: str) -> None:
        self._engine = engine
        self._name = name
        self._entries: dict[str, Entry] = {}
        self._subscriptions: list[Subscription] = []
        self._disposed = False

    def _declare(self, entries: Mapping[str, object] | Iterable[tuple[str, object]]) -> None:
        engine = self._engine
        items = entries.items() if isinstance(entries, Mapping) else entries
        try:
            for key, spec in items:
                if key in self._entries:
                    raise ValueError(f"{self._name} declares {key!r} twice")
                if key in RESERVED_NAMES:
                    raise ValueError(f"{self._name}: {key!r} is a Group attribute and cannot name an entry")
                spec = _coerce(spec)
                full_name = f"{self._name}.{key}"
                if isinstance(spec, CellSpec):
                    if spec.factory is not None:
                        initial = engine.untracked(functools.partial(spec.factory, self))
                    else:
                        initial = spec.initial
                    self._entries[key] = Cell(engine, initial, spec.equals, name=full_name)
                else:
                    entry = Computation(
                        engine, functools.partial(spec.fn, self), spec.equals, name=full_name
                    )
                    self._entries[key] = entry
                    entry.peek()
        except Exception:
            logger.debug("Declaration of %s failed, disposing %d entries", self._name, len(self._entries))
            for entry in reversed(list(self._entries.values())):
                if not entry.disposed:
                    entry.dispose()
            self._entries.clear()
            self._disposed = True
            raise

    @property
    def name(self) -> str:
        return self._name

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def disposed(self) -> bool:
        return self._disposed

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def __getitem__(self, key: str) -> Entry:
        self._check("read")
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"{self._name} has no entry {key!r}") from None

    def __getattr__(self, key: str) -> Entry:
        if key.startswith("_"):
            raise AttributeError(key)
        try:
            return self[key]
        except KeyError:
            raise AttributeError(f"{self._name} has no entry {key!r}") from None

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> object:
        return self[key].get()

    def set(self, key: str, value: object) -> None:
        entry = self[key]
        if not isinstance(entry, Cell):
            raise TypeError(f"{entry.name} is derived and cannot be set")
        entry.set(value)

    def update(self, values: Mapping[str, object]) -> None:
        """Set several cells in one batch."""
        with transaction(self._engine):
            for key, value in values.items():
                self.set(key, value)

    def snapshot(self) -> dict[str, object]:
        """Current value of every entry, read without tracking."""
        self._check("read")
        return {key: entry.peek() for key, entry in self._entries.items()}

    def dispose(self) -> None:
        """Dispose the group's subscriptions and entries."""
        self._check("dispose")
        for subscription in list(self._subscriptions):
            subscription.dispose()
        for entry in reversed(list(self._entries.values())):
            if not entry.disposed:
                entry.dispose()
        self._disposed = True
        logger.debug("Disposed %s", self._name)

    def _check(self, operation: str) -> None:
        if self._disposed:
            raise UseAfterDispose(self._name, operation)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else ", ".join(self._entries)
        return f"Group({self._name}: {state})"


class Subscription:
    """A root observer on a group.

    on_change receives the names of the entries whose settled output changed,
    in declaration order, once per flush.
    """

    __slots__ = ("_engine", "_id", "_name", "_group")

    def __init__(self, engine: Engine, group: Group, on_change: Callable[[tuple[str, ...]], None]) -> None:
        group._check("observe")
        anchor = engine.anchor
        self._engine = engine
        self._group = group
        self._id = anchor.new_id(_anchor.SUBSCRIPTION, None)
        self._name = anchor.names[self._id] = f"{group.name}:subscription#{self._id}"

        order = {
            entry._id: key for key, entry in group._entries.items() if not entry.disposed
        }

        def notify(changed_ids: tuple[int, ...]) -> None:
            on_change(tuple(key for node_id, key in order.items() if node_id in changed_ids))

        anchor.derivation_fns[self._id] = notify
        for node_id in order:
            anchor.link(node_id, self._id)
        group._subscriptions.append(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._engine.anchor.is_live(self._id)

    def dispose(self) -> None:
        """Stop notifications. A second dispose raises UseAfterDispose."""
        if not self.active:
            raise UseAfterDispose(self.name, "dispose")
        self._engine.anchor.release(self._id)
        self._group._subscriptions.remove(self)

    def __repr__(self) -> str:
        state = "active" if self.active else "disposed"
        return f"Subscription({self.name}, {state})"


# Entry names that group.<key> could not reach
RESERVED_NAMES = frozenset(attr for attr in dir(Group) if not attr.startswith("_"))
