"""Typed helpers for Engine API request decoding, errors and responses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from elengine.common.types import MAX_UINT64, Block, Withdrawal
from elengine.rpc.server import INTERNAL_ERROR, INVALID_PARAMS, RPCError

ENGINE_UNKNOWN_PAYLOAD = -38001
ENGINE_INVALID_FORKCHOICE_STATE = -38002
ENGINE_INVALID_PAYLOAD_ATTRIBUTES = -38003
ENGINE_UNSUPPORTED_FORK = -38005
ENGINE_BUILD_ERROR = -32015

STATUS_VALID = "VALID"
STATUS_INVALID = "INVALID"
STATUS_SYNCING = "SYNCING"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class EngineError(RPCError):
    """Engine API error; subclasses pin the JSON-RPC code."""

    code_value = INTERNAL_ERROR
    prefix = ""

    def __init__(self, message: str) -> None:
        super().__init__(self.code_value, f"{self.prefix}{message}")


class BadParams(EngineError):
    code_value = INVALID_PARAMS
    prefix = "Invalid params: "


class InvalidForkChoiceState(EngineError):
    code_value = ENGINE_INVALID_FORKCHOICE_STATE
    prefix = "Invalid forkchoice state: "


class InvalidPayloadAttributes(EngineError):
    code_value = ENGINE_INVALID_PAYLOAD_ATTRIBUTES
    prefix = "Invalid payload attributes: "


class UnsupportedFork(EngineError):
    code_value = ENGINE_UNSUPPORTED_FORK
    prefix = "Unsupported fork: "


class UnknownPayload(EngineError):
    code_value = ENGINE_UNKNOWN_PAYLOAD
    prefix = "Unknown payload: "


class BuildError(EngineError):
    code_value = ENGINE_BUILD_ERROR
    prefix = "Payload build error: "


class Internal(EngineError):
    code_value = INTERNAL_ERROR
    prefix = "Internal error: "


class DecodeError(ValueError):
    """A wire value does not have the expected shape."""


# ---------------------------------------------------------------------------
# Hex codecs
# ---------------------------------------------------------------------------

def _require_hex(value: Any, *, name: str, size: int) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise DecodeError(f"{name} must be 0x-prefixed hex")
    body = value[2:]
    if len(body) != size * 2:
        raise DecodeError(f"{name} must be {size} bytes")
    try:
        return bytes.fromhex(body)
    except ValueError as exc:
        raise DecodeError(f"{name} is invalid hex") from exc


def _hex_to_int(value: Any, *, name: str, max_value: int = MAX_UINT64) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise DecodeError(f"{name} must be hex quantity")
    try:
        result = int(value, 16)
    except ValueError as exc:
        raise DecodeError(f"{name} is invalid hex quantity") from exc
    if result > max_value:
        raise DecodeError(f"{name} is out of range")
    return result


def _require_field(raw: dict[str, Any], key: str) -> Any:
    if key not in raw:
        raise DecodeError(f"missing field {key}")
    return raw[key]


def bytes_hex(value: bytes) -> str:
    return "0x" + value.hex()


def quantity_hex(value: int) -> str:
    return hex(value)


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ForkChoiceState:
    head_block_hash: bytes
    safe_block_hash: bytes
    finalized_block_hash: bytes

    @classmethod
    def from_rpc(cls, raw: Any) -> ForkChoiceState:
        if not isinstance(raw, dict):
            raise DecodeError("forkchoiceState must be an object")
        return cls(
            head_block_hash=_require_hex(_require_field(raw, "headBlockHash"), name="headBlockHash", size=32),
            safe_block_hash=_require_hex(_require_field(raw, "safeBlockHash"), name="safeBlockHash", size=32),
            finalized_block_hash=_require_hex(
                _require_field(raw, "finalizedBlockHash"), name="finalizedBlockHash", size=32
            ),
        )


@dataclass(frozen=True)
class PayloadAttributesV3:
    timestamp: int
    prev_randao: bytes
    suggested_fee_recipient: bytes
    withdrawals: tuple[Withdrawal, ...]
    parent_beacon_block_root: bytes

    @classmethod
    def from_rpc(cls, raw: Any) -> PayloadAttributesV3:
        if not isinstance(raw, dict):
            raise DecodeError("payloadAttributes must be an object")

        withdrawals_raw = _require_field(raw, "withdrawals")
        if not isinstance(withdrawals_raw, list):
            raise DecodeError("withdrawals must be a list")

        return cls(
            timestamp=_hex_to_int(_require_field(raw, "timestamp"), name="timestamp"),
            prev_randao=_require_hex(_require_field(raw, "prevRandao"), name="prevRandao", size=32),
            suggested_fee_recipient=_require_hex(
                _require_field(raw, "suggestedFeeRecipient"), name="suggestedFeeRecipient", size=20
            ),
            withdrawals=tuple(
                _parse_withdrawal(w, f"withdrawals[{i}]") for i, w in enumerate(withdrawals_raw)
            ),
            parent_beacon_block_root=_require_hex(
                _require_field(raw, "parentBeaconBlockRoot"), name="parentBeaconBlockRoot", size=32
            ),
        )


def _parse_withdrawal(raw: Any, name: str) -> Withdrawal:
    if not isinstance(raw, dict):
        raise DecodeError(f"{name} must be an object")
    return Withdrawal(
        index=_hex_to_int(_require_field(raw, "index"), name=f"{name}.index"),
        validator_index=_hex_to_int(_require_field(raw, "validatorIndex"), name=f"{name}.validatorIndex"),
        address=_require_hex(_require_field(raw, "address"), name=f"{name}.address", size=20),
        amount=_hex_to_int(_require_field(raw, "amount"), name=f"{name}.amount"),
    )


@dataclass(frozen=True)
class AttributesOk:
    attributes: Optional[PayloadAttributesV3]


@dataclass(frozen=True)
class AttributesErr:
    error: str


AttributesResult = Union[AttributesOk, AttributesErr]


def parse_payload_attributes(raw: Any) -> AttributesResult:
    """Decode the optional attributes parameter without raising."""
    if raw is None:
        return AttributesOk(None)
    try:
        return AttributesOk(PayloadAttributesV3.from_rpc(raw))
    except DecodeError as exc:
        return AttributesErr(str(exc))


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PayloadStatus:
    status: str
    latest_valid_hash: Optional[bytes] = None
    validation_error: Optional[str] = None

    @classmethod
    def valid_with_hash(cls, block_hash: bytes) -> PayloadStatus:
        return cls(STATUS_VALID, latest_valid_hash=block_hash)

    @classmethod
    def syncing(cls) -> PayloadStatus:
        return cls(STATUS_SYNCING)

    def to_rpc(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "latestValidHash": None if self.latest_valid_hash is None else bytes_hex(self.latest_valid_hash),
            "validationError": self.validation_error,
        }


@dataclass
class ForkChoiceResponse:
    payload_status: PayloadStatus
    payload_id: Optional[bytes] = None

    def set_id(self, payload_id: bytes) -> None:
        self.payload_id = payload_id

    def to_rpc(self) -> dict[str, Any]:
        if self.payload_id is not None and self.payload_status.validation_error is not None:
            raise Internal("payload id set on a response carrying a validation error")
        return {
            "payloadStatus": self.payload_status.to_rpc(),
            "payloadId": None if self.payload_id is None else bytes_hex(self.payload_id),
        }


def parse_payload_id(raw: Any) -> bytes:
    try:
        return _require_hex(raw, name="payloadId", size=8)
    except DecodeError as exc:
        raise BadParams(str(exc)) from exc


def serialize_withdrawals(withdrawals: Optional[list[Withdrawal]]) -> list[dict[str, str]]:
    return [
        {
            "index": quantity_hex(w.index),
            "validatorIndex": quantity_hex(w.validator_index),
            "address": bytes_hex(w.address),
            "amount": quantity_hex(w.amount),
        }
        for w in withdrawals or []
    ]


def execution_payload_v3(block: Block) -> dict[str, Any]:
    header = block.header
    return {
        "parentHash": bytes_hex(header.parent_hash),
        "feeRecipient": bytes_hex(header.coinbase),
        "stateRoot": bytes_hex(header.state_root),
        "receiptsRoot": bytes_hex(header.receipts_root),
        "logsBloom": bytes_hex(header.logs_bloom),
        "prevRandao": bytes_hex(header.mix_hash),
        "blockNumber": quantity_hex(header.number),
        "gasLimit": quantity_hex(header.gas_limit),
        "gasUsed": quantity_hex(header.gas_used),
        "timestamp": quantity_hex(header.timestamp),
        "extraData": bytes_hex(header.extra_data),
        "baseFeePerGas": quantity_hex(header.base_fee_per_gas or 0),
        "blockHash": bytes_hex(block.block_hash()),
        "transactions": [bytes_hex(tx) for tx in block.transactions],
        "withdrawals": serialize_withdrawals(block.withdrawals),
        "blobGasUsed": quantity_hex(header.blob_gas_used or 0),
        "excessBlobGas": quantity_hex(header.excess_blob_gas or 0),
    }
