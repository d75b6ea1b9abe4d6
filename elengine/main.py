"""
elengine: Engine API fork choice service.

Entry point for the node. Initializes all subsystems:
  1. Parse CLI arguments
  2. Load genesis / chain config
  3. Initialize storage backend
  4. Wire the sync manager and the engine API
  5. Start the authenticated JSON-RPC server
  6. Handle graceful shutdown
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from elengine.common.config import CHAIN_CONFIGS, Genesis
from elengine.rpc.engine_api import EngineContext, register_engine_api
from elengine.rpc.server import RPCServer, load_jwt_secret
from elengine.storage.disk_backend import DiskBackend
from elengine.storage.memory_backend import MemoryBackend
from elengine.storage.store import Store
from elengine.sync.fetcher import RPCBlockFetcher
from elengine.sync.full_sync import FullSync
from elengine.sync.manager import SyncManager

logger = logging.getLogger("elengine")


# ---------------------------------------------------------------------------
# Node class
# ---------------------------------------------------------------------------

class EngineNode:
    """Engine API node coordinating storage, sync and the RPC server."""

    def __init__(
        self,
        store: Store,
        genesis: Optional[Genesis] = None,
        authrpc_addr: str = "127.0.0.1",
        authrpc_port: int = 8551,
        jwt_secret: Optional[bytes] = None,
        sync_peer: Optional[str] = None,
    ) -> None:
        self.store = store
        self.authrpc_addr = authrpc_addr
        self.authrpc_port = authrpc_port

        if store.get_latest_block_number() is None:
            if genesis is None:
                raise ValueError("empty chain database; a genesis file is required")
            self.genesis_hash = store.init_from_genesis(genesis)
            logger.info("Initialized chain from genesis 0x%s", self.genesis_hash.hex())
        else:
            header0 = store.get_block_header_by_number(0)
            self.genesis_hash = header0.block_hash() if header0 else b"\x00" * 32

        # Sync
        fetcher = RPCBlockFetcher(sync_peer) if sync_peer else None
        self.syncer = FullSync(fetcher)
        self.sync_manager = SyncManager(store, self.syncer)

        # RPC server
        self.rpc = RPCServer()
        if jwt_secret is not None:
            self.rpc.set_jwt_secret(jwt_secret)
        register_engine_api(self.rpc, EngineContext(store=store, sync_manager=self.sync_manager))

        self._running = False

    async def start(self) -> None:
        self._running = True
        config = self.store.get_chain_config()
        logger.info("Starting elengine")
        logger.info("  Chain: %s (id %d)", config.chain_name, config.chain_id)
        logger.info("  Genesis: 0x%s", self.genesis_hash.hex())
        logger.info("  Head: #%d", self.store.get_latest_block_number() or 0)
        logger.info("  Auth RPC: %s:%d", self.authrpc_addr, self.authrpc_port)

        server_config = uvicorn.Config(
            self.rpc.app,
            host=self.authrpc_addr,
            port=self.authrpc_port,
            log_level="warning",
            loop="asyncio",
        )
        self._rpc_server = uvicorn.Server(server_config)
        self._rpc_server.config.setup_event_loop = lambda: None
        self._rpc_task = asyncio.create_task(self._rpc_server.serve())
        logger.info("Node started successfully")

    async def stop(self) -> None:
        logger.info("Shutting down...")
        self._running = False

        if hasattr(self, "_rpc_server"):
            self._rpc_server.should_exit = True
            await self._rpc_task
        self.sync_manager.shutdown()
        if isinstance(self.store, DiskBackend):
            self.store.close()

        logger.info("Node stopped")

    async def run_until_stopped(self) -> None:
        """Run until shutdown signal is received."""
        stop_event = asyncio.Event()

        def _signal_handler():
            stop_event.set()

        loop = asyncio.get_event_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

        await self.start()
        await stop_event.wait()
        await self.stop()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="elengine",
        description="Engine API fork choice service",
    )
    parser.add_argument(
        "--network",
        choices=sorted(CHAIN_CONFIGS),
        default="mainnet",
        help="Chain config used when the genesis file has no config section (default: mainnet)",
    )
    parser.add_argument(
        "--genesis",
        type=str,
        default=None,
        help="Path to genesis.json; required for an empty database",
    )
    parser.add_argument(
        "--datadir",
        type=str,
        default=None,
        help="LMDB data directory (in-memory storage if not set)",
    )
    parser.add_argument(
        "--authrpc-addr",
        type=str,
        default="127.0.0.1",
        help="Engine API listen address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--authrpc-port",
        type=int,
        default=8551,
        help="Engine API listen port (default: 8551)",
    )
    parser.add_argument(
        "--jwtsecret",
        type=str,
        default=None,
        help="Path to hex-encoded 32-byte JWT secret for engine_* methods",
    )
    parser.add_argument(
        "--sync-peer",
        type=str,
        default=None,
        help="JSON-RPC URL of a trusted node used to fetch missing blocks",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    return parser


def load_genesis(path: str, network: str) -> Genesis:
    with open(path) as f:
        genesis_data = json.load(f)
    genesis = Genesis.from_json(genesis_data)
    if "config" not in genesis_data:
        genesis.config = CHAIN_CONFIGS[network]
    return genesis


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # Genesis
    genesis = None
    if args.genesis:
        if not Path(args.genesis).exists():
            logger.error("Genesis file not found: %s", args.genesis)
            sys.exit(1)
        genesis = load_genesis(args.genesis, args.network)
        logger.info("Loaded genesis from %s", args.genesis)

    # JWT secret
    jwt_secret = None
    if args.jwtsecret:
        try:
            jwt_secret = load_jwt_secret(args.jwtsecret)
        except (OSError, ValueError) as e:
            logger.error("Cannot load JWT secret: %s", e)
            sys.exit(1)
    else:
        logger.warning("No --jwtsecret given; engine API is unauthenticated")

    # Storage
    store: Store
    if args.datadir:
        store = DiskBackend(Path(args.datadir))
        logger.info("Using LMDB storage at %s", args.datadir)
    else:
        store = MemoryBackend()

    try:
        node = EngineNode(
            store=store,
            genesis=genesis,
            authrpc_addr=args.authrpc_addr,
            authrpc_port=args.authrpc_port,
            jwt_secret=jwt_secret,
            sync_peer=args.sync_peer,
        )
    except ValueError as e:
        logger.error("%s", e)
        sys.exit(1)

    try:
        asyncio.run(node.run_until_stopped())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
