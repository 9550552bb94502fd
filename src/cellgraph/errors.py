"""Error taxonomy.

Every user-visible failure names the offending node so a broken graph can be
traced back to the declaration that built it.
"""

from __future__ import annotations


class CellgraphError(Exception):
    """Base class for errors raised by the engine."""


class CyclicDependency(CellgraphError):
    """A computation transitively read itself during one evaluation."""

    def __init__(self, path: list[str]) -> None:
        self.path = list(path)
        super().__init__("Cyclic dependency: " + " -> ".join(self.path))


class UseAfterDispose(CellgraphError):
    """A disposed cell, computation, group or subscription was used."""

    def __init__(self, name: str, operation: str = "use") -> None:
        self.name = name
        self.operation = operation
        super().__init__(f"Cannot {operation} {name}: it has been disposed")


class UserFunctionError(CellgraphError):
    """The function of a computation raised.

    The computation keeps its last good output and is retried on its next
    invalidation. The original exception is available as ``original`` and as
    ``__cause__``.
    """

    def __init__(self, name: str, original: BaseException) -> None:
        self.name = name
        self.original = original
        super().__init__(f"{name} raised {type(original).__name__}: {original}")


class InvariantViolation(AssertionError):
    """Scheduler bookkeeping is inconsistent. Never caught by the engine."""
