"""Shared pytest fixtures."""

import pytest

from cellgraph import Engine


@pytest.fixture
def engine():
    """A fresh engine per test, so no graph state leaks between tests."""
    return Engine(name="test")
