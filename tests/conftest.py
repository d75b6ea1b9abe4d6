"""Pytest configuration and shared fixtures for all tests."""

import pytest

from tests.fixtures.chain import make_store


@pytest.fixture
def chain():
    """A fresh in-memory store at genesis: (store, genesis_hash)."""
    return make_store()


@pytest.fixture
def store(chain):
    return chain[0]


@pytest.fixture
def genesis_hash(chain):
    return chain[1]
