"""
Tests for the JSON-RPC server framework and engine JWT auth.

Uses FastAPI TestClient for synchronous testing.
"""

import time

import pytest
from fastapi.testclient import TestClient

from elengine.rpc.server import (
    RPCError,
    RPCServer,
    load_jwt_secret,
    make_jwt_hs256,
    verify_jwt_hs256,
)


# ===================================================================
# RPC Server framework tests
# ===================================================================

class TestRPCServer:
    def setup_method(self):
        self.rpc = RPCServer()

        @self.rpc.method("test_echo")
        def echo(msg: str) -> str:
            return msg

        @self.rpc.method("test_add")
        def add(a: int, b: int) -> int:
            return a + b

        @self.rpc.method("test_error")
        def fail():
            raise RPCError(42, "test error", {"detail": "extra"})

        @self.rpc.method("test_crash")
        def crash():
            raise KeyError("missing")

        @self.rpc.method("test_no_args")
        def no_args() -> str:
            return "hello"

        self.client = TestClient(self.rpc.app)

    def _call(self, method: str, params=None, id=1):
        body = {"jsonrpc": "2.0", "method": method, "id": id}
        if params is not None:
            body["params"] = params
        return self.client.post("/", json=body).json()

    def test_echo(self):
        result = self._call("test_echo", ["hello"])
        assert result["result"] == "hello"
        assert result["id"] == 1
        assert result["jsonrpc"] == "2.0"

    def test_add(self):
        result = self._call("test_add", [3, 4])
        assert result["result"] == 7

    def test_no_args(self):
        assert self._call("test_no_args")["result"] == "hello"
        assert self._call("test_no_args", None)["result"] == "hello"

    def test_method_not_found(self):
        result = self._call("nonexistent")
        assert result["error"]["code"] == -32601

    def test_custom_error(self):
        result = self._call("test_error")
        assert result["error"]["code"] == 42
        assert result["error"]["message"] == "test error"
        assert result["error"]["data"] == {"detail": "extra"}

    def test_unexpected_exception_is_internal(self):
        result = self._call("test_crash")
        assert result["error"]["code"] == -32603

    def test_wrong_arity(self):
        result = self._call("test_add", ["not", "numbers", "too many"])
        assert result["error"]["code"] == -32602

    def test_params_must_be_a_list(self):
        result = self._call("test_add", {"a": 10, "b": 20})
        assert result["error"]["code"] == -32602

    def test_invalid_json_rpc_version(self):
        body = {"jsonrpc": "1.0", "method": "test_echo", "params": ["hi"], "id": 1}
        result = self.client.post("/", json=body).json()
        assert result["error"]["code"] == -32600

    def test_batch_request(self):
        batch = [
            {"jsonrpc": "2.0", "method": "test_echo", "params": ["a"], "id": 1},
            {"jsonrpc": "2.0", "method": "test_add", "params": [1, 2], "id": 2},
        ]
        result = self.client.post("/", json=batch).json()
        assert len(result) == 2
        assert result[0]["result"] == "a"
        assert result[1]["result"] == 3

    def test_empty_batch(self):
        result = self.client.post("/", json=[]).json()
        assert result["error"]["code"] == -32600

    def test_notification_no_response(self):
        body = {"jsonrpc": "2.0", "method": "test_no_args"}
        response = self.client.post("/", json=body)
        assert response.status_code in (200, 204)

    def test_parse_error(self):
        response = self.client.post("/", content="{not json", headers={"content-type": "application/json"})
        assert response.json()["error"]["code"] == -32700

    def test_non_dict_request(self):
        response = self.client.post("/", json="just a string")
        assert response.json()["error"]["code"] == -32600

    def test_metrics_providers(self):
        self.rpc.add_metrics_provider(lambda: {"a_total": 1})
        self.rpc.add_metrics_provider(lambda: {"b_active": 0})
        text = self.client.get("/metrics").text
        assert text == "a_total 1\nb_active 0\n"

    def test_empty_metrics(self):
        assert self.client.get("/metrics").text == ""


# ===================================================================
# JWT
# ===================================================================

class TestJWT:
    SECRET = b"\x11" * 32

    def setup_method(self):
        self.rpc = RPCServer()
        self.rpc.set_jwt_secret(self.SECRET)

        @self.rpc.method("engine_ping")
        def ping() -> str:
            return "pong"

        @self.rpc.method("web3_ping")
        def web3_ping() -> str:
            return "pong"

        self.client = TestClient(self.rpc.app)

    def _call(self, method: str, token=None, scheme="Bearer"):
        headers = {}
        if token is not None:
            headers["Authorization"] = f"{scheme} {token}"
        body = {"jsonrpc": "2.0", "method": method, "params": [], "id": 1}
        return self.client.post("/", json=body, headers=headers).json()

    def test_round_trip(self):
        token = make_jwt_hs256(self.SECRET)
        assert verify_jwt_hs256(token, self.SECRET)
        assert not verify_jwt_hs256(token, b"\x22" * 32)

    def test_iat_drift(self):
        now = int(time.time())
        assert verify_jwt_hs256(make_jwt_hs256(self.SECRET, iat=now - 30), self.SECRET)
        assert not verify_jwt_hs256(make_jwt_hs256(self.SECRET, iat=now - 600), self.SECRET)
        assert not verify_jwt_hs256(make_jwt_hs256(self.SECRET, iat=now + 600), self.SECRET)

    @pytest.mark.parametrize("token", ["", "a.b", "a.b.c", "....", "not-a-token"])
    def test_garbage_tokens(self, token):
        assert not verify_jwt_hs256(token, self.SECRET)

    def test_engine_method_requires_token(self):
        assert self._call("engine_ping")["error"]["code"] == -32001
        assert self._call("engine_ping", make_jwt_hs256(self.SECRET))["result"] == "pong"

    def test_wrong_scheme(self):
        result = self._call("engine_ping", make_jwt_hs256(self.SECRET), scheme="Basic")
        assert result["error"]["code"] == -32001

    def test_non_engine_method_is_open(self):
        assert self._call("web3_ping")["result"] == "pong"

    def test_load_secret(self, tmp_path):
        path = tmp_path / "jwt.hex"
        path.write_text("0x" + "ab" * 32 + "\n")
        assert load_jwt_secret(str(path)) == b"\xab" * 32

    def test_load_short_secret(self, tmp_path):
        path = tmp_path / "jwt.hex"
        path.write_text("abcd")
        with pytest.raises(ValueError):
            load_jwt_secret(str(path))
