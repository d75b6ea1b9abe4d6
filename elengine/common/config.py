"""
Chain configuration and genesis block handling.

Supports Ethereum mainnet, Sepolia, and Holesky testnets plus geth-style
genesis files. Only the forks the engine cares about are tracked: London for
the base fee, Shanghai for withdrawals, Cancun for blob gas and the beacon
root, Prague for the requests hash.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from elengine.common.trie import state_root
from elengine.common.types import (
    Block,
    BlockHeader,
    EMPTY_TRIE_ROOT,
    ZERO_ADDRESS,
    ZERO_HASH,
)


# ---------------------------------------------------------------------------
# Hardfork schedule
# ---------------------------------------------------------------------------

@dataclass
class ChainConfig:
    chain_id: int = 1
    chain_name: str = "mainnet"

    london_block: Optional[int] = None
    terminal_total_difficulty: Optional[int] = None

    # Timestamp-based forks (post-merge)
    shanghai_time: Optional[int] = None
    cancun_time: Optional[int] = None
    prague_time: Optional[int] = None

    # Blob gas schedule parameters (EIP-4844)
    target_blob_gas_per_block: int = 393_216
    max_blob_gas_per_block: int = 786_432
    blob_base_fee_update_fraction: int = 3_338_477
    blob_schedule: dict[str, dict[str, int]] = field(default_factory=dict)

    def is_london(self, block_number: int) -> bool:
        return self.london_block is not None and block_number >= self.london_block

    def is_shanghai(self, timestamp: int) -> bool:
        return self.shanghai_time is not None and timestamp >= self.shanghai_time

    def is_cancun(self, timestamp: int) -> bool:
        return self.cancun_time is not None and timestamp >= self.cancun_time

    def is_prague(self, timestamp: int) -> bool:
        return self.prague_time is not None and timestamp >= self.prague_time

    def get_blob_params_at(self, timestamp: int) -> tuple[int, int, int]:
        """Return (target, max, base_fee_update_fraction) active at timestamp."""
        target = self.target_blob_gas_per_block
        max_blobs = self.max_blob_gas_per_block
        fraction = self.blob_base_fee_update_fraction

        for name, fork_time in (("cancun", self.cancun_time), ("prague", self.prague_time)):
            if fork_time is None or timestamp < fork_time:
                continue
            params = self.blob_schedule.get(name)
            if not params:
                continue
            target = params.get("target", target)
            max_blobs = params.get("max", max_blobs)
            fraction = params.get("baseFeeUpdateFraction", fraction)

        return target, max_blobs, fraction


# ---------------------------------------------------------------------------
# Well-known chain configs
# ---------------------------------------------------------------------------

MAINNET_CONFIG = ChainConfig(
    chain_id=1,
    chain_name="mainnet",
    london_block=12_965_000,
    terminal_total_difficulty=58_750_000_000_000_000_000_000,
    shanghai_time=1_681_338_455,
    cancun_time=1_710_338_135,
    prague_time=1_746_612_311,
    blob_schedule={
        "cancun": {"target": 393_216, "max": 786_432, "baseFeeUpdateFraction": 3_338_477},
        "prague": {"target": 786_432, "max": 1_179_648, "baseFeeUpdateFraction": 5_007_716},
    },
)

SEPOLIA_CONFIG = ChainConfig(
    chain_id=11155111,
    chain_name="sepolia",
    london_block=0,
    terminal_total_difficulty=17_000_000_000_000_000,
    shanghai_time=1_677_557_088,
    cancun_time=1_706_655_072,
    prague_time=1_741_159_776,
    blob_schedule={
        "cancun": {"target": 393_216, "max": 786_432, "baseFeeUpdateFraction": 3_338_477},
        "prague": {"target": 786_432, "max": 1_179_648, "baseFeeUpdateFraction": 5_007_716},
    },
)

HOLESKY_CONFIG = ChainConfig(
    chain_id=17000,
    chain_name="holesky",
    london_block=0,
    terminal_total_difficulty=0,
    shanghai_time=1_696_000_704,
    cancun_time=1_707_305_664,
)


CHAIN_CONFIGS: dict[str, ChainConfig] = {
    "mainnet": MAINNET_CONFIG,
    "sepolia": SEPOLIA_CONFIG,
    "holesky": HOLESKY_CONFIG,
}


# ---------------------------------------------------------------------------
# Genesis
# ---------------------------------------------------------------------------

INITIAL_BASE_FEE = 1_000_000_000


def _parse_hex_int(val: str | int | None, default: int = 0) -> int:
    if isinstance(val, int):
        return val
    if isinstance(val, str):
        return int(val, 0) if val else default
    return default


def _parse_hex_bytes(val: Optional[str], size: Optional[int] = None) -> bytes:
    body = (val or "0x").removeprefix("0x")
    if size is not None:
        body = body.zfill(size * 2)
    return bytes.fromhex(body)


@dataclass
class GenesisAlloc:
    address: bytes  # 20 bytes
    balance: int = 0
    nonce: int = 0
    code: bytes = b""
    storage: dict[int, int] = field(default_factory=dict)


@dataclass
class Genesis:
    config: ChainConfig = field(default_factory=ChainConfig)
    nonce: int = 0
    timestamp: int = 0
    extra_data: bytes = b""
    gas_limit: int = 0
    difficulty: int = 0
    mix_hash: bytes = ZERO_HASH
    coinbase: bytes = ZERO_ADDRESS
    alloc: list[GenesisAlloc] = field(default_factory=list)
    base_fee_per_gas: Optional[int] = None
    excess_blob_gas: Optional[int] = None
    blob_gas_used: Optional[int] = None

    def state_root(self) -> bytes:
        return state_root(
            (a.address, a.nonce, a.balance, a.code, a.storage) for a in self.alloc
        )

    def to_block(self) -> Block:
        """Convert genesis to the genesis block (block 0)."""
        header = BlockHeader(
            parent_hash=ZERO_HASH,
            coinbase=self.coinbase,
            state_root=self.state_root(),
            difficulty=self.difficulty,
            number=0,
            gas_limit=self.gas_limit,
            timestamp=self.timestamp,
            extra_data=self.extra_data,
            mix_hash=self.mix_hash,
            nonce=self.nonce.to_bytes(8, "big"),
            base_fee_per_gas=self.base_fee_per_gas,
        )
        if header.base_fee_per_gas is None and self.config.is_london(0):
            header.base_fee_per_gas = INITIAL_BASE_FEE
        withdrawals = None
        if self.config.is_shanghai(self.timestamp):
            header.withdrawals_root = EMPTY_TRIE_ROOT
            withdrawals = []
        if self.config.is_cancun(self.timestamp):
            header.blob_gas_used = self.blob_gas_used or 0
            header.excess_blob_gas = self.excess_blob_gas or 0
            header.parent_beacon_block_root = ZERO_HASH
        return Block(header=header, withdrawals=withdrawals)

    @classmethod
    def from_json(cls, data: dict) -> Genesis:
        """Parse a genesis JSON (geth-style genesis.json format)."""
        config_data = data.get("config", {})
        blob_schedule: dict[str, dict[str, int]] = {}
        for fork_name, values in config_data.get("blobSchedule", {}).items():
            if not isinstance(values, dict):
                continue
            target = _parse_hex_int(values.get("target"), 3)
            max_blobs = _parse_hex_int(values.get("max"), 6)
            # Genesis files give blob counts; the schedule is kept in blob-gas units.
            if target <= 100:
                target *= 131_072
            if max_blobs <= 100:
                max_blobs *= 131_072
            blob_schedule[fork_name] = {
                "target": target,
                "max": max_blobs,
                "baseFeeUpdateFraction": _parse_hex_int(
                    values.get("baseFeeUpdateFraction"), 3_338_477
                ),
            }

        chain_config = ChainConfig(
            chain_id=config_data.get("chainId", 1),
            chain_name=config_data.get("chainName", "custom"),
            london_block=config_data.get("londonBlock"),
            terminal_total_difficulty=config_data.get("terminalTotalDifficulty"),
            shanghai_time=config_data.get("shanghaiTime"),
            cancun_time=config_data.get("cancunTime"),
            prague_time=config_data.get("pragueTime"),
            blob_schedule=blob_schedule,
        )

        alloc = []
        for addr_hex, account_data in data.get("alloc", {}).items():
            storage = {
                int(k, 16): int(v, 16)
                for k, v in account_data.get("storage", {}).items()
            }
            alloc.append(GenesisAlloc(
                address=_parse_hex_bytes(addr_hex.lower(), 20),
                balance=_parse_hex_int(account_data.get("balance", "0")),
                nonce=_parse_hex_int(account_data.get("nonce", "0")),
                code=_parse_hex_bytes(account_data.get("code")),
                storage=storage,
            ))

        return cls(
            config=chain_config,
            nonce=_parse_hex_int(data.get("nonce", "0x0")),
            timestamp=_parse_hex_int(data.get("timestamp", "0x0")),
            extra_data=_parse_hex_bytes(data.get("extraData")),
            gas_limit=_parse_hex_int(data.get("gasLimit", "0x0")),
            difficulty=_parse_hex_int(data.get("difficulty", "0x0")),
            mix_hash=_parse_hex_bytes(data.get("mixHash"), 32),
            coinbase=_parse_hex_bytes(data.get("coinbase"), 20),
            alloc=alloc,
            base_fee_per_gas=(
                _parse_hex_int(data["baseFeePerGas"]) if "baseFeePerGas" in data else None
            ),
            excess_blob_gas=(
                _parse_hex_int(data["excessBlobGas"]) if "excessBlobGas" in data else None
            ),
            blob_gas_used=(
                _parse_hex_int(data["blobGasUsed"]) if "blobGasUsed" in data else None
            ),
        )
