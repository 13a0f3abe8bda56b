"""obs-websocket v5 wire format: op-codes, frame codec and auth digest."""
from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional

RPC_VERSION = 1

STATUS_SUCCESS = 100
STATUS_OUTPUT_RUNNING = 500
STATUS_OUTPUT_NOT_RUNNING = 501

# Close codes the server uses when it rejects an Identify.
CLOSE_AUTHENTICATION_FAILED = 4009
CLOSE_NOT_IDENTIFIED = 4007


class OpCode(IntEnum):
    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    REIDENTIFY = 3
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7
    REQUEST_BATCH = 8
    REQUEST_BATCH_RESPONSE = 9


class ControlPlaneError(Exception):
    """Base class for every control-plane failure."""


class ProtocolError(ControlPlaneError):
    """A frame could not be decoded or had the wrong shape."""


class HandshakeError(ControlPlaneError):
    pass


class AuthenticationError(HandshakeError):
    pass


class ControlTimeoutError(ControlPlaneError):
    pass


class ConnectionClosedError(ControlPlaneError):
    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class RequestFailedError(ControlPlaneError):
    def __init__(self, request_type: str, code: int, comment: str = "") -> None:
        detail = f"{request_type} failed with status {code}"
        if comment:
            detail = f"{detail}: {comment}"
        super().__init__(detail)
        self.request_type = request_type
        self.code = code
        self.comment = comment


@dataclass(frozen=True)
class Frame:
    op: int
    data: Dict[str, Any] = field(default_factory=dict)

    def encode(self) -> str:
        return json.dumps({"op": int(self.op), "d": self.data}, separators=(",", ":"))


@dataclass(frozen=True)
class AuthChallenge:
    salt: str
    challenge: str


def _b64_sha256(text: str) -> str:
    return base64.b64encode(hashlib.sha256(text.encode("utf-8")).digest()).decode("ascii")


def compute_auth_response(password: str, salt: str, challenge: str) -> str:
    """``base64(sha256(base64(sha256(password + salt)) + challenge))``."""
    secret = _b64_sha256(password + salt)
    return _b64_sha256(secret + challenge)


def decode_frame(text: Any) -> Frame:
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"frame is not UTF-8: {exc}") from exc
    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"frame is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("frame is not a JSON object")
    op = payload.get("op")
    if not isinstance(op, int) or isinstance(op, bool):
        raise ProtocolError(f"frame op-code {op!r} is not an integer")
    data = payload.get("d")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("frame data is not an object")
    return Frame(op=op, data=data)


def parse_hello(frame: Frame) -> Optional[AuthChallenge]:
    """Validate a Hello frame and return its auth challenge, if any."""
    if frame.op != OpCode.HELLO:
        raise HandshakeError(f"expected Hello (op {int(OpCode.HELLO)}), got op {frame.op}")
    auth = frame.data.get("authentication")
    if auth is None:
        return None
    if not isinstance(auth, dict):
        raise ProtocolError("Hello authentication block is not an object")
    salt = auth.get("salt")
    challenge = auth.get("challenge")
    if not isinstance(salt, str) or not isinstance(challenge, str):
        raise ProtocolError("Hello authentication block is missing salt/challenge")
    return AuthChallenge(salt=salt, challenge=challenge)


def negotiated_rpc_version(frame: Frame) -> int:
    offered = frame.data.get("rpcVersion", RPC_VERSION)
    try:
        offered = int(offered)
    except (TypeError, ValueError):
        return RPC_VERSION
    return min(offered, RPC_VERSION) if offered > 0 else RPC_VERSION


def build_identify(rpc_version: int, authentication: Optional[str] = None, event_subscriptions: int = 0) -> Frame:
    data: Dict[str, Any] = {"rpcVersion": rpc_version, "eventSubscriptions": event_subscriptions}
    if authentication is not None:
        data["authentication"] = authentication
    return Frame(OpCode.IDENTIFY, data)


def build_request(request_type: str, request_id: str, request_data: Optional[Dict[str, Any]] = None) -> Frame:
    data: Dict[str, Any] = {"requestType": request_type, "requestId": request_id}
    if request_data:
        data["requestData"] = request_data
    return Frame(OpCode.REQUEST, data)


def request_status(frame: Frame) -> tuple[bool, int, str]:
    status = frame.data.get("requestStatus")
    if not isinstance(status, dict):
        raise ProtocolError("RequestResponse is missing requestStatus")
    result = bool(status.get("result", False))
    try:
        code = int(status.get("code", 0))
    except (TypeError, ValueError):
        code = 0
    comment = str(status.get("comment") or "")
    return result, code, comment
