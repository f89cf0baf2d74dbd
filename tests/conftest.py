"""Shared fixtures: every test gets its own registry and default dispatcher."""

import pytest

import lensing
from lensing import DispatchConfig, Dispatcher, Registry


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture
def dispatcher(registry):
    return Dispatcher(registry)


@pytest.fixture(autouse=True)
def isolated_default():
    """Swap in a fresh default dispatcher so module-level calls don't leak."""
    fresh = Dispatcher(Registry(), DispatchConfig())
    previous = lensing.set_default_dispatcher(fresh)
    yield fresh
    lensing.set_default_dispatcher(previous)
