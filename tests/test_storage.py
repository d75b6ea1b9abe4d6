"""Tests for the Store interface, run against both backends."""

import pytest

from elengine.common.types import Block, BlockHeader, Withdrawal
from elengine.storage.disk_backend import DiskBackend
from elengine.storage.memory_backend import MemoryBackend, PayloadCache
from elengine.storage.store import StoreError, latest_canonical_block_hash
from tests.fixtures.chain import TEST_CONFIG, extend_chain, make_genesis


@pytest.fixture(params=["memory", "disk"])
def backend(request, tmp_path):
    if request.param == "memory":
        yield MemoryBackend()
    else:
        store = DiskBackend(tmp_path)
        yield store
        store.close()


def _block(number: int = 1, txs=None) -> Block:
    return Block(
        header=BlockHeader(number=number, gas_limit=30_000_000, timestamp=number * 12),
        transactions=txs or [],
        withdrawals=[Withdrawal(index=1, validator_index=2, address=b"\x03" * 20, amount=4)],
    )


class TestStore:
    def test_empty_store(self, backend):
        assert backend.get_latest_block_number() is None
        assert latest_canonical_block_hash(backend) is None
        with pytest.raises(StoreError):
            backend.get_chain_config()

    def test_block_round_trip(self, backend):
        block = _block(txs=[b"\x02\xf8\x01\x02", bytes.fromhex("c3010203")])
        backend.put_block(block)

        stored = backend.get_block(block.block_hash())
        assert stored == block
        assert backend.get_block_header(block.block_hash()) == block.header
        assert backend.get_block(b"\x00" * 32) is None

    def test_canonical_mapping(self, backend):
        block = _block()
        backend.put_block(block)
        backend.put_canonical_hash(1, block.block_hash())

        assert backend.get_canonical_hash(1) == block.block_hash()
        assert backend.get_block_header_by_number(1) == block.header

        backend.remove_canonical_hash(1)
        assert backend.get_canonical_hash(1) is None
        assert backend.get_block_header_by_number(1) is None
        # Removing twice is harmless.
        backend.remove_canonical_hash(1)

    def test_pointers(self, backend):
        backend.update_latest_block_number(7)
        backend.update_safe_block_number(5)
        backend.update_finalized_block_number(3)
        assert backend.get_latest_block_number() == 7
        assert backend.get_safe_block_number() == 5
        assert backend.get_finalized_block_number() == 3

    def test_chain_config(self, backend):
        backend.set_chain_config(TEST_CONFIG)
        assert backend.get_chain_config() == TEST_CONFIG

    def test_payloads(self, backend):
        block = _block()
        backend.add_payload(b"\x03" + b"\x00" * 7, block)
        assert backend.get_payload(b"\x03" + b"\x00" * 7) == block
        assert backend.get_payload(b"\x03" + b"\x01" * 7) is None

    def test_init_from_genesis(self, backend):
        genesis_hash = backend.init_from_genesis(make_genesis())

        assert backend.get_canonical_hash(0) == genesis_hash
        assert latest_canonical_block_hash(backend) == genesis_hash
        assert backend.get_safe_block_number() == 0
        assert backend.get_finalized_block_number() == 0
        assert backend.get_chain_config().cancun_time == TEST_CONFIG.cancun_time
        assert backend.get_block(genesis_hash).withdrawals == []


class TestMemoryBackend:
    def test_returns_copies(self):
        store = MemoryBackend()
        block = _block()
        store.put_block(block)

        header = store.get_block_header(block.block_hash())
        header.gas_used = 99
        assert store.get_block_header(block.block_hash()).gas_used == 0

    def test_payload_eviction(self):
        store = MemoryBackend(max_payloads=2)
        block = _block()
        for i in range(3):
            store.add_payload(bytes([3, i]) + b"\x00" * 6, block)
        assert store.get_payload(bytes([3, 0]) + b"\x00" * 6) is None
        assert store.get_payload(bytes([3, 2]) + b"\x00" * 6) is not None


class TestPayloadCache:
    def test_lru_order(self):
        cache = PayloadCache(max_items=2)
        a, b, c = _block(1), _block(2), _block(3)
        cache.put(b"a", a)
        cache.put(b"b", b)
        assert cache.get(b"a") is a  # a becomes most recent
        cache.put(b"c", c)

        assert cache.get(b"b") is None
        assert cache.get(b"a") is a
        assert cache.get(b"c") is c
        assert len(cache) == 2

    def test_overwrite(self):
        cache = PayloadCache(max_items=2)
        cache.put(b"a", _block(1))
        cache.put(b"a", _block(2))
        assert len(cache) == 1
        assert cache.get(b"a").header.number == 2


class TestDiskPersistence:
    def test_chain_survives_reopen(self, tmp_path):
        store = DiskBackend(tmp_path)
        genesis_hash = store.init_from_genesis(make_genesis())
        blocks = extend_chain(store, genesis_hash, 2)
        store.put_canonical_hash(1, blocks[0].block_hash())
        store.update_latest_block_number(1)
        store.close()

        store2 = DiskBackend(tmp_path)
        try:
            assert store2.get_canonical_hash(0) == genesis_hash
            assert latest_canonical_block_hash(store2) == blocks[0].block_hash()
            assert store2.get_block(blocks[1].block_hash()) == blocks[1]
            assert store2.get_chain_config() == TEST_CONFIG
        finally:
            store2.close()
