"""Engine API handlers for CL-EL communication (forkchoiceUpdatedV3, getPayloadV3)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from elengine.blockchain.chain import ChainError
from elengine.blockchain.fork_choice import (
    AlreadyCanonical,
    Applied,
    Invalid,
    Syncing,
    apply_fork_choice,
)
from elengine.blockchain.payload import BuildPayloadArgs, PayloadBuildError, create_payload
from elengine.common.types import BlockHeader
from elengine.rpc.engine_types import (
    AttributesErr,
    AttributesResult,
    BadParams,
    BuildError,
    DecodeError,
    ForkChoiceResponse,
    ForkChoiceState,
    Internal,
    InvalidForkChoiceState,
    InvalidPayloadAttributes,
    PayloadStatus,
    UnknownPayload,
    UnsupportedFork,
    bytes_hex,
    execution_payload_v3,
    parse_payload_attributes,
    parse_payload_id,
)
from elengine.rpc.server import RPCServer
from elengine.storage.store import Store, StoreError, latest_canonical_block_hash
from elengine.sync.manager import SyncManager

logger = logging.getLogger(__name__)

PAYLOAD_VERSION_V3 = 3

CAPABILITIES = [
    "engine_exchangeCapabilities",
    "engine_forkchoiceUpdatedV3",
    "engine_getPayloadV3",
]


@dataclass
class EngineContext:
    """Shared state the engine handlers operate on."""
    store: Store
    sync_manager: SyncManager


@dataclass(frozen=True)
class ForkChoiceUpdatedV3:
    """A decoded engine_forkchoiceUpdatedV3 request.

    Attribute decode failures are carried in ``payload_attributes`` rather
    than raised, so they are only reported once the fork choice is applied.
    """
    fork_choice_state: ForkChoiceState
    payload_attributes: AttributesResult

    @classmethod
    def parse(cls, params: Optional[list[Any]]) -> ForkChoiceUpdatedV3:
        if not isinstance(params, (list, tuple)) or len(params) != 2:
            raise BadParams("Expected 2 params")
        try:
            state = ForkChoiceState.from_rpc(params[0])
        except DecodeError as exc:
            raise BadParams(str(exc)) from exc
        return cls(state, parse_payload_attributes(params[1]))

    def handle(self, context: EngineContext) -> ForkChoiceResponse:
        state = self.fork_choice_state
        store = context.store
        logger.info(
            "forkchoiceUpdatedV3 head=%s safe=%s finalized=%s",
            bytes_hex(state.head_block_hash),
            bytes_hex(state.safe_block_hash),
            bytes_hex(state.finalized_block_hash),
        )

        try:
            outcome = apply_fork_choice(
                store,
                state.head_block_hash,
                state.safe_block_hash,
                state.finalized_block_hash,
            )
        except StoreError as exc:
            raise Internal(str(exc)) from exc

        if isinstance(outcome, Invalid):
            logger.warning("Invalid fork choice state: %s", outcome.reason)
            raise InvalidForkChoiceState(outcome.reason)

        if isinstance(outcome, AlreadyCanonical):
            latest_hash = self._read(latest_canonical_block_hash, store)
            if latest_hash is None:
                raise Internal("Missing latest canonical block")
            return ForkChoiceResponse(PayloadStatus.valid_with_hash(latest_hash))

        if isinstance(outcome, Syncing):
            self._start_sync(context)
            return ForkChoiceResponse(PayloadStatus.syncing())

        if not isinstance(outcome, Applied):
            raise Internal(f"unexpected fork choice outcome {outcome!r}")
        response = ForkChoiceResponse(PayloadStatus.valid_with_hash(state.head_block_hash))
        self._build_payload(context, outcome.head, response)
        return response

    def _start_sync(self, context: EngineContext) -> None:
        store = context.store
        latest_number = self._read(store.get_latest_block_number)
        if latest_number is None:
            raise Internal("Missing latest canonical block")
        current_head = self._read(store.get_canonical_hash, latest_number)
        if current_head is None:
            raise Internal("Missing latest canonical block")
        context.sync_manager.try_start_sync(current_head, self.fork_choice_state.head_block_hash)

    def _build_payload(
        self, context: EngineContext, head: BlockHeader, response: ForkChoiceResponse
    ) -> None:
        result = self.payload_attributes
        if isinstance(result, AttributesErr):
            raise InvalidPayloadAttributes(result.error)
        attributes = result.attributes
        if attributes is None:
            return

        store = context.store
        config = self._read(store.get_chain_config)
        if not config.is_cancun(attributes.timestamp):
            raise UnsupportedFork("forkChoiceV3 used to build pre-Cancun payload")
        if attributes.timestamp <= head.timestamp:
            raise InvalidPayloadAttributes("invalid timestamp")

        args = BuildPayloadArgs(
            parent=self.fork_choice_state.head_block_hash,
            timestamp=attributes.timestamp,
            fee_recipient=attributes.suggested_fee_recipient,
            random=attributes.prev_randao,
            withdrawals=attributes.withdrawals,
            beacon_root=attributes.parent_beacon_block_root,
            version=PAYLOAD_VERSION_V3,
        )
        payload_id = args.id()
        response.set_id(payload_id)

        try:
            block = create_payload(args, store)
        except PayloadBuildError as exc:
            raise BuildError(str(exc)) from exc
        except (ChainError, StoreError) as exc:
            raise Internal(str(exc)) from exc

        self._read(store.add_payload, payload_id, block)
        logger.info("Payload %s built on %s", bytes_hex(payload_id), bytes_hex(args.parent))

    @staticmethod
    def _read(func, *args):
        try:
            return func(*args)
        except StoreError as exc:
            raise Internal(str(exc)) from exc


def register_engine_api(rpc: RPCServer, context: EngineContext) -> None:
    """Register the engine API surface on ``rpc``."""

    @rpc.method("engine_exchangeCapabilities")
    def engine_exchange_capabilities(_capabilities: Optional[list[str]] = None) -> list[str]:
        return list(CAPABILITIES)

    @rpc.method("engine_forkchoiceUpdatedV3")
    def engine_forkchoice_updated_v3(*params: Any) -> dict:
        request = ForkChoiceUpdatedV3.parse(list(params))
        response = request.handle(context)
        try:
            return response.to_rpc()
        except (TypeError, ValueError) as exc:
            raise Internal(str(exc)) from exc

    @rpc.method("engine_getPayloadV3")
    def engine_get_payload_v3(payload_id: str) -> dict:
        pid = parse_payload_id(payload_id)
        try:
            block = context.store.get_payload(pid)
        except StoreError as exc:
            raise Internal(str(exc)) from exc
        if block is None:
            raise UnknownPayload(payload_id)

        header = block.header
        logger.info("getPayloadV3 id=%s blockHash=%s number=%d",
                    payload_id, bytes_hex(block.block_hash()), header.number)
        return {
            "executionPayload": execution_payload_v3(block),
            "blockValue": "0x0",
            "blobsBundle": {"commitments": [], "proofs": [], "blobs": []},
            "shouldOverrideBuilder": False,
        }

    rpc.add_metrics_provider(context.sync_manager.metrics)
