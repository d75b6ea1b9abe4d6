"""Tests for engine API request decoding and response encoding."""

import pytest

from elengine.common.types import Withdrawal
from elengine.rpc.engine_api import ForkChoiceUpdatedV3
from elengine.rpc.engine_types import (
    AttributesErr,
    AttributesOk,
    BadParams,
    BuildError,
    ForkChoiceResponse,
    Internal,
    InvalidForkChoiceState,
    InvalidPayloadAttributes,
    PayloadStatus,
    UnknownPayload,
    UnsupportedFork,
    parse_payload_attributes,
    parse_payload_id,
    serialize_withdrawals,
)

HEAD = "0x" + "11" * 32
SAFE = "0x" + "22" * 32
FINALIZED = "0x" + "33" * 32


def _state(**overrides):
    state = {"headBlockHash": HEAD, "safeBlockHash": SAFE, "finalizedBlockHash": FINALIZED}
    state.update(overrides)
    return state


def _attributes(**overrides):
    attrs = {
        "timestamp": "0x3e8",
        "prevRandao": "0x" + "44" * 32,
        "suggestedFeeRecipient": "0x" + "55" * 20,
        "withdrawals": [
            {"index": "0x1", "validatorIndex": "0x2", "address": "0x" + "66" * 20, "amount": "0x3"},
        ],
        "parentBeaconBlockRoot": "0x" + "77" * 32,
    }
    attrs.update(overrides)
    return attrs


class TestErrorCodes:
    @pytest.mark.parametrize("cls,code", [
        (BadParams, -32602),
        (InvalidForkChoiceState, -38002),
        (InvalidPayloadAttributes, -38003),
        (UnsupportedFork, -38005),
        (UnknownPayload, -38001),
        (BuildError, -32015),
        (Internal, -32603),
    ])
    def test_codes(self, cls, code):
        err = cls("boom")
        assert err.code == code
        assert "boom" in err.message


class TestDecoder:
    def test_parse_without_attributes(self):
        request = ForkChoiceUpdatedV3.parse([_state(), None])
        assert request.fork_choice_state.head_block_hash == b"\x11" * 32
        assert request.fork_choice_state.safe_block_hash == b"\x22" * 32
        assert request.fork_choice_state.finalized_block_hash == b"\x33" * 32
        assert request.payload_attributes == AttributesOk(None)

    def test_parse_with_attributes(self):
        request = ForkChoiceUpdatedV3.parse([_state(), _attributes()])
        attrs = request.payload_attributes.attributes
        assert attrs.timestamp == 1000
        assert attrs.prev_randao == b"\x44" * 32
        assert attrs.suggested_fee_recipient == b"\x55" * 20
        assert attrs.withdrawals == (
            Withdrawal(index=1, validator_index=2, address=b"\x66" * 20, amount=3),
        )
        assert attrs.parent_beacon_block_root == b"\x77" * 32

    @pytest.mark.parametrize("params", [None, [], [_state()], [_state(), None, None], "bad"])
    def test_wrong_param_count(self, params):
        with pytest.raises(BadParams):
            ForkChoiceUpdatedV3.parse(params)

    @pytest.mark.parametrize("state", [
        "not an object",
        {"headBlockHash": HEAD, "safeBlockHash": SAFE},
        _state(headBlockHash="0x1234"),
        _state(safeBlockHash="11" * 32),
        _state(finalizedBlockHash="0x" + "zz" * 32),
    ])
    def test_malformed_state(self, state):
        with pytest.raises(BadParams):
            ForkChoiceUpdatedV3.parse([state, None])

    def test_malformed_attributes_are_deferred(self):
        request = ForkChoiceUpdatedV3.parse([_state(), _attributes(timestamp=1000)])
        assert isinstance(request.payload_attributes, AttributesErr)
        assert "timestamp" in request.payload_attributes.error


class TestParseAttributes:
    def test_none(self):
        assert parse_payload_attributes(None) == AttributesOk(None)

    @pytest.mark.parametrize("raw", [
        [],
        _attributes(prevRandao="0x00"),
        _attributes(suggestedFeeRecipient="0x" + "55" * 32),
        _attributes(withdrawals=None),
        _attributes(withdrawals=[{"index": "0x1"}]),
        {k: v for k, v in _attributes().items() if k != "parentBeaconBlockRoot"},
    ])
    def test_errors(self, raw):
        assert isinstance(parse_payload_attributes(raw), AttributesErr)

    @pytest.mark.parametrize("raw", [
        _attributes(timestamp=hex(2**64)),
        _attributes(withdrawals=[
            {"index": "0x1", "validatorIndex": "0x2", "address": "0x" + "66" * 20, "amount": hex(2**64)},
        ]),
        _attributes(withdrawals=[
            {"index": hex(2**64), "validatorIndex": "0x2", "address": "0x" + "66" * 20, "amount": "0x3"},
        ]),
    ])
    def test_quantities_beyond_uint64(self, raw):
        result = parse_payload_attributes(raw)
        assert isinstance(result, AttributesErr)
        assert "out of range" in result.error

    def test_max_uint64_timestamp(self):
        result = parse_payload_attributes(_attributes(timestamp=hex(2**64 - 1)))
        assert result.attributes.timestamp == 2**64 - 1

    def test_empty_withdrawals(self):
        result = parse_payload_attributes(_attributes(withdrawals=[]))
        assert result.attributes.withdrawals == ()


class TestResponse:
    def test_valid_without_payload(self):
        response = ForkChoiceResponse(PayloadStatus.valid_with_hash(b"\x11" * 32))
        assert response.to_rpc() == {
            "payloadStatus": {
                "status": "VALID",
                "latestValidHash": HEAD,
                "validationError": None,
            },
            "payloadId": None,
        }

    def test_valid_with_payload(self):
        response = ForkChoiceResponse(PayloadStatus.valid_with_hash(b"\x11" * 32))
        response.set_id(bytes.fromhex("0301020304050607"))
        assert response.to_rpc()["payloadId"] == "0x0301020304050607"

    def test_syncing(self):
        response = ForkChoiceResponse(PayloadStatus.syncing())
        assert response.to_rpc()["payloadStatus"] == {
            "status": "SYNCING",
            "latestValidHash": None,
            "validationError": None,
        }

    def test_payload_id_with_validation_error(self):
        response = ForkChoiceResponse(PayloadStatus("INVALID", None, "bad block"))
        response.set_id(b"\x03" * 8)
        with pytest.raises(Internal):
            response.to_rpc()

    def test_serialize_withdrawals(self):
        w = Withdrawal(index=10, validator_index=11, address=b"\x01" * 20, amount=12)
        assert serialize_withdrawals([w]) == [{
            "index": "0xa",
            "validatorIndex": "0xb",
            "address": "0x" + "01" * 20,
            "amount": "0xc",
        }]
        assert serialize_withdrawals(None) == []

    def test_parse_payload_id(self):
        assert parse_payload_id("0x0300000000000001") == bytes.fromhex("0300000000000001")
        with pytest.raises(BadParams):
            parse_payload_id("0x03")
