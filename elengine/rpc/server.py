"""
JSON-RPC 2.0 server for the authenticated engine endpoint.

FastAPI app with method registration, batch support, HS256 JWT checks for
``engine_*`` methods and a Prometheus-style ``/metrics`` page.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

logger = logging.getLogger(__name__)


PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UNAUTHORIZED = -32001

# Engine API JWTs are short-lived; allow small skew.
JWT_MAX_IAT_DRIFT = 60


class RPCError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _success_response(id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": id, "result": result}


def _error_response(id: Any, code: int, message: str, data: Any = None) -> dict:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": id, "error": error}


class RPCServer:
    """JSON-RPC 2.0 server with method registration and dispatch."""

    def __init__(self) -> None:
        self.app = FastAPI(title="elengine engine API", docs_url=None, redoc_url=None)
        self._methods: dict[str, Callable] = {}
        self._jwt_secret: Optional[bytes] = None
        self._metrics_providers: list[Callable[[], dict[str, float | int]]] = []
        self._setup_routes()

    def set_jwt_secret(self, secret: bytes) -> None:
        """Enable JWT auth for engine_* RPC methods."""
        self._jwt_secret = secret

    def add_metrics_provider(self, provider: Callable[[], dict[str, float | int]]) -> None:
        self._metrics_providers.append(provider)

    def _setup_routes(self) -> None:
        @self.app.get("/metrics")
        async def handle_metrics() -> PlainTextResponse:
            lines: list[str] = []
            for provider in self._metrics_providers:
                for key, value in provider().items():
                    lines.append(f"{key} {value}")
            return PlainTextResponse("\n".join(lines) + ("\n" if lines else ""))

        @self.app.post("/")
        async def handle_rpc(request: Request) -> JSONResponse:
            try:
                body = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                return JSONResponse(_error_response(None, PARSE_ERROR, "Parse error"))

            auth_header = request.headers.get("authorization")

            if isinstance(body, list):
                if not body:
                    return JSONResponse(_error_response(None, INVALID_REQUEST, "Empty batch"))
                results = []
                for item in body:
                    result = await self._handle_single(item, auth_header)
                    if result is not None:
                        results.append(result)
                return JSONResponse(results if results else None)

            result = await self._handle_single(body, auth_header)
            if result is None:
                return JSONResponse(content=None, status_code=204)
            return JSONResponse(result)

    async def _handle_single(self, request: Any, auth_header: Optional[str] = None) -> Optional[dict]:
        if not isinstance(request, dict):
            return _error_response(None, INVALID_REQUEST, "Invalid request")

        method = request.get("method")
        params = request.get("params", [])
        req_id = request.get("id")

        if request.get("jsonrpc") != "2.0":
            return _error_response(req_id, INVALID_REQUEST, "Invalid JSON-RPC version")

        if not isinstance(method, str):
            return _error_response(req_id, INVALID_REQUEST, "Invalid method")

        if method.startswith("engine_") and self._jwt_secret is not None:
            token = _extract_bearer_token(auth_header)
            if token is None or not verify_jwt_hs256(token, self._jwt_secret):
                return _error_response(req_id, UNAUTHORIZED, "Unauthorized")

        is_notification = "id" not in request

        handler = self._methods.get(method)
        if handler is None:
            if is_notification:
                return None
            return _error_response(req_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        if params is None:
            params = []
        if not isinstance(params, list):
            return _error_response(req_id, INVALID_PARAMS, "Invalid params")

        try:
            if asyncio.iscoroutinefunction(handler):
                result = await handler(*params)
            else:
                result = handler(*params)
        except TypeError as e:
            logger.warning("RPC TypeError in %s: %s", method, e)
            return _error_response(req_id, INVALID_PARAMS, str(e))
        except RPCError as e:
            return _error_response(req_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception("RPC internal error in %s", method)
            return _error_response(req_id, INTERNAL_ERROR, str(e))

        if is_notification:
            return None
        return _success_response(req_id, result)

    def register(self, name: str, handler: Callable) -> None:
        self._methods[name] = handler

    def method(self, name: str) -> Callable:
        def decorator(func: Callable) -> Callable:
            self._methods[name] = func
            return func

        return decorator


# ---------------------------------------------------------------------------
# JWT (HS256)
# ---------------------------------------------------------------------------

def _extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if auth_header is None:
        return None
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip()


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def make_jwt_hs256(secret: bytes, iat: Optional[int] = None) -> str:
    """Create an engine API token (used by tests and local tooling)."""
    header = _b64url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    claims = {"iat": int(time.time()) if iat is None else iat}
    payload = _b64url_encode(json.dumps(claims).encode())
    signing_input = f"{header}.{payload}".encode()
    sig = hmac.new(secret, signing_input, hashlib.sha256).digest()
    return f"{header}.{payload}.{_b64url_encode(sig)}"


def verify_jwt_hs256(token: str, secret: bytes) -> bool:
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return False
        header_raw, payload_raw, sig_raw = parts
        signing_input = f"{header_raw}.{payload_raw}".encode()

        expected_sig = hmac.new(secret, signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(expected_sig, _b64url_decode(sig_raw)):
            return False

        header = json.loads(_b64url_decode(header_raw).decode())
        if header.get("alg") != "HS256":
            return False

        payload = json.loads(_b64url_decode(payload_raw).decode())
        iat = payload.get("iat")
        if not isinstance(iat, int):
            return False

        return abs(int(time.time()) - iat) <= JWT_MAX_IAT_DRIFT
    except (json.JSONDecodeError, ValueError, TypeError, KeyError, UnicodeDecodeError):
        return False


def load_jwt_secret(path: str) -> bytes:
    """Read a hex-encoded 32-byte JWT secret file."""
    with open(path) as f:
        raw = f.read().strip().removeprefix("0x")
    secret = bytes.fromhex(raw)
    if len(secret) != 32:
        raise ValueError(f"JWT secret in {path} must be 32 bytes, got {len(secret)}")
    return secret
