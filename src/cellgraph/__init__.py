"""cellgraph: glitch-free reactive cells and computations for Python."""

from importlib.metadata import version as _version

__version__ = _version("cellgraph")

from cellgraph.cell import Cell, default_equals
from cellgraph.computation import Computation
from cellgraph.group import Group, Subscription, cell, derived
from cellgraph.action import action, transaction
from cellgraph.engine import Engine
from cellgraph.errors import (
    CellgraphError,
    CyclicDependency,
    InvariantViolation,
    UseAfterDispose,
    UserFunctionError,
)
# textual NOT auto-imported — opt-in only

__all__ = [
    "Engine",
    "Cell",
    "Computation",
    "Group",
    "Subscription",
    "cell",
    "derived",
    "action",
    "transaction",
    "default_equals",
    "CellgraphError",
    "CyclicDependency",
    "InvariantViolation",
    "UseAfterDispose",
    "UserFunctionError",
]
