"""Test fixtures for engine API tests."""

from .chain import (
    CANCUN_TIME,
    FEE_RECIPIENT,
    TEST_CONFIG,
    build_block,
    extend_chain,
    make_genesis,
    make_store,
)

__all__ = [
    "CANCUN_TIME",
    "FEE_RECIPIENT",
    "TEST_CONFIG",
    "build_block",
    "extend_chain",
    "make_genesis",
    "make_store",
]
