"""
Blockchain rules: header validation and per-block fee schedules.

The engine does not execute transactions; it checks the header-level
consensus rules a block must satisfy relative to its parent.
"""

from __future__ import annotations

from elengine.common.config import ChainConfig, INITIAL_BASE_FEE
from elengine.common.types import BlockHeader


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ChainError(Exception):
    """Base class for failures while building or importing blocks."""


class BlockValidationError(ChainError):
    pass


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GAS_LIMIT_BOUND_DIVISOR = 1024
MIN_GAS_LIMIT = 5000
MAX_EXTRA_DATA_SIZE = 32
ELASTICITY_MULTIPLIER = 2
BASE_FEE_MAX_CHANGE_DENOMINATOR = 8


# ---------------------------------------------------------------------------
# Header validation
# ---------------------------------------------------------------------------

def validate_header(
    header: BlockHeader,
    parent: BlockHeader,
    config: ChainConfig,
) -> None:
    """Validate a block header against its parent."""

    # Block number must be parent + 1
    if header.number != parent.number + 1:
        raise BlockValidationError(
            f"Invalid block number: expected {parent.number + 1}, got {header.number}"
        )

    if header.parent_hash != parent.block_hash():
        raise BlockValidationError("Parent hash mismatch")

    if header.timestamp <= parent.timestamp:
        raise BlockValidationError(
            f"Timestamp {header.timestamp} <= parent {parent.timestamp}"
        )

    # Gas limit bounds (EIP-1559: ±1/1024 of parent)
    max_delta = parent.gas_limit // GAS_LIMIT_BOUND_DIVISOR
    if header.gas_limit >= parent.gas_limit + max_delta:
        raise BlockValidationError("Gas limit too high")
    if header.gas_limit <= parent.gas_limit - max_delta:
        raise BlockValidationError("Gas limit too low")
    if header.gas_limit < MIN_GAS_LIMIT:
        raise BlockValidationError(f"Gas limit below minimum ({MIN_GAS_LIMIT})")

    if header.gas_used > header.gas_limit:
        raise BlockValidationError(
            f"Gas used {header.gas_used} > gas limit {header.gas_limit}"
        )

    if len(header.extra_data) > MAX_EXTRA_DATA_SIZE:
        raise BlockValidationError(f"Extra data too long (max {MAX_EXTRA_DATA_SIZE} bytes)")

    if config.is_london(header.number):
        expected_base_fee = calc_base_fee(parent, config)
        if header.base_fee_per_gas != expected_base_fee:
            raise BlockValidationError(
                f"Base fee mismatch: expected {expected_base_fee}, "
                f"got {header.base_fee_per_gas}"
            )

    if config.is_shanghai(header.timestamp) and header.withdrawals_root is None:
        raise BlockValidationError("Missing withdrawals root")

    if config.is_cancun(header.timestamp):
        if header.blob_gas_used is None or header.excess_blob_gas is None:
            raise BlockValidationError("Missing blob gas fields")
        if header.parent_beacon_block_root is None:
            raise BlockValidationError("Missing parent beacon block root")
        expected_excess = calc_excess_blob_gas(parent, config, header.timestamp)
        if header.excess_blob_gas != expected_excess:
            raise BlockValidationError(
                f"Excess blob gas mismatch: expected {expected_excess}, "
                f"got {header.excess_blob_gas}"
            )


def calc_base_fee(parent: BlockHeader, config: ChainConfig) -> int:
    """Calculate the expected base fee for the next block (EIP-1559)."""
    if not config.is_london(parent.number + 1):
        return 0

    # First London block
    if parent.base_fee_per_gas is None:
        return INITIAL_BASE_FEE

    parent_base_fee = parent.base_fee_per_gas
    parent_gas_target = parent.gas_limit // ELASTICITY_MULTIPLIER

    if parent.gas_used == parent_gas_target:
        return parent_base_fee
    elif parent.gas_used > parent_gas_target:
        gas_used_delta = parent.gas_used - parent_gas_target
        base_fee_delta = max(
            parent_base_fee * gas_used_delta // parent_gas_target // BASE_FEE_MAX_CHANGE_DENOMINATOR,
            1,
        )
        return parent_base_fee + base_fee_delta
    else:
        gas_used_delta = parent_gas_target - parent.gas_used
        base_fee_delta = parent_base_fee * gas_used_delta // parent_gas_target // BASE_FEE_MAX_CHANGE_DENOMINATOR
        return max(parent_base_fee - base_fee_delta, 0)


def calc_excess_blob_gas(parent: BlockHeader, config: ChainConfig, timestamp: int) -> int:
    """Calculate the excess blob gas for a child of parent (EIP-4844)."""
    target, _, _ = config.get_blob_params_at(timestamp)
    parent_excess = parent.excess_blob_gas or 0
    parent_used = parent.blob_gas_used or 0
    if parent_excess + parent_used < target:
        return 0
    return parent_excess + parent_used - target
