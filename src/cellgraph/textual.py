"""Textual integration for cellgraph. Opt-in — requires textual.

A widget declares its state as a group when it mounts, observes it with
observe(), and disposes the subscription when it unmounts:

    def on_mount(self) -> None:
        self.state = engine.declare_group({"count": 0, "label": lambda g: f"{g.count.get()} items"})
        self.sub = cgx.observe(self.app, self.state, lambda changed: self.refresh())

    def on_unmount(self) -> None:
        self.state.dispose()   # also disposes self.sub

Textual coupling is isolated in this module; the core stays host-agnostic.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from textual.css.query import NoMatches

from cellgraph.group import Group, Subscription

logger = logging.getLogger("cellgraph.textual")

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app) -> Iterator[None]:
    """Suspend guarded notifications during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def observe(app, group: Group, on_change: Callable[[tuple[str, ...]], None]) -> Subscription:
    """observe_group() that safely bridges to Textual widgets.

    Skips notifications while the app is paused or not running, and swallows
    NoMatches raised by widget queries against a tree that is being torn down.
    """

    def _guarded(changed: tuple[str, ...]) -> None:
        if not is_safe(app):
            logger.debug("Skipping %s notification, app not safe", group.name)
            return
        try:
            on_change(changed)
        except NoMatches:
            logger.debug("Widget query failed during %s notification", group.name)

    return group.engine.observe_group(group, _guarded)
