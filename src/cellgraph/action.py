"""Actions and transactions — batched cell writes.

Wrapping writes in an action or a transaction defers the flush until the
outermost scope exits, so readers never see some inputs updated and others
not, and a cell written several times is propagated once.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Iterator, ParamSpec, TypeVar

if TYPE_CHECKING:
    from cellgraph.engine import Engine

P = ParamSpec("P")
R = TypeVar("R")


@contextmanager
def transaction(engine: Engine) -> Iterator[None]:
    """Context manager for batching writes.

    Usage:
        with transaction(engine):
            first.set("Bob")
            last.set("Jones")
            # subscriptions fire here, once, after both are set
    """
    engine.scheduler.begin_batch()
    try:
        yield
    finally:
        engine.scheduler.end_batch()


def action(engine: Engine) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator factory: batch all writes made by the decorated function.

    Usage:
        @action(engine)
        def swap():
            a, b = left.get(), right.get()
            left.set(b)
            right.set(a)
    """

    def decorate(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with transaction(engine):
                return fn(*args, **kwargs)

        return wrapper

    return decorate
