"""Synchronous obs-websocket client used to drive the streaming tool.

The client owns a private asyncio event loop and runs each operation to
completion under an explicit timeout, so the orchestrator can call it from
its single thread of control without a background worker. One instance
manages one connection; a failed handshake discards the socket and leaves
the client reusable for a fresh ``connect()``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, TypeVar, Union

import aiohttp

from .logging_utils import get_logger
from .obs_protocol import (
    CLOSE_AUTHENTICATION_FAILED,
    STATUS_OUTPUT_NOT_RUNNING,
    STATUS_OUTPUT_RUNNING,
    AuthenticationError,
    ConnectionClosedError,
    ControlPlaneError,
    ControlTimeoutError,
    Frame,
    HandshakeError,
    OpCode,
    ProtocolError,
    RequestFailedError,
    build_identify,
    build_request,
    compute_auth_response,
    decode_frame,
    negotiated_rpc_version,
    parse_hello,
    request_status,
)

LOGGER = get_logger("ControlPlane")

DEFAULT_TIMEOUT = 5.0
MAX_MESSAGE_BYTES = 4 * 1024 * 1024

T = TypeVar("T")


class MessageTransport(Protocol):
    async def open(self, url: str) -> None: ...
    async def send_text(self, text: str) -> None: ...
    async def receive_text(self) -> Union[str, bytes]: ...
    async def close(self) -> None: ...


class AiohttpTransport:
    """WebSocket transport backed by aiohttp.

    aiohttp's reader joins continuation frames until the FIN bit, so
    ``receive_text`` only ever returns whole messages.
    """

    def __init__(self) -> None:
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def open(self, url: str) -> None:
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(url, autoping=True, max_msg_size=MAX_MESSAGE_BYTES)
        except (aiohttp.ClientError, OSError) as exc:
            await self._session.close()
            self._session = None
            raise ConnectionClosedError(f"unable to connect to {url}: {exc}") from exc

    async def send_text(self, text: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise ConnectionClosedError("socket is not open", code=getattr(ws, "close_code", None))
        try:
            await ws.send_str(text)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise ConnectionClosedError(f"send failed: {exc}", code=ws.close_code) from exc

    async def receive_text(self) -> Union[str, bytes]:
        ws = self._ws
        if ws is None:
            raise ConnectionClosedError("socket is not open")
        while True:
            message = await ws.receive()
            if message.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                return message.data
            if message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                code = ws.close_code
                if code is None and isinstance(message.data, int):
                    code = message.data
                raise ConnectionClosedError(f"server closed the connection (code={code})", code=code)
            if message.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionClosedError(f"socket error: {ws.exception()}", code=ws.close_code)

    async def close(self) -> None:
        ws, session = self._ws, self._session
        self._ws = None
        self._session = None
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None:
            await session.close()


class ControlPlaneClient:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport_factory: Optional[Callable[[], MessageTransport]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.timeout = float(timeout)
        self.rpc_version: Optional[int] = None
        self._transport_factory = transport_factory or AiohttpTransport
        self._transport: Optional[MessageTransport] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._logger = logger or LOGGER

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._transport is not None

    def __enter__(self) -> "ControlPlaneClient":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    # Public API ---------------------------------------------------------

    def connect(self, password: Optional[str] = None) -> int:
        """Open the socket and complete Hello/Identify; return the negotiated RPC version.

        ``password`` is only used to derive the auth response and is not kept.
        Raises a :class:`ControlPlaneError` subclass on any failure, after
        discarding the half-open connection.
        """
        if self._transport is not None:
            return self.rpc_version or 0
        transport = self._transport_factory()
        try:
            rpc_version = self._run(self._handshake(transport, password), "handshake")
        except ControlPlaneError:
            self._discard(transport)
            raise
        self._transport = transport
        self.rpc_version = rpc_version
        self._logger.info("Connected to control plane at %s (rpc v%s)", self.url, rpc_version)
        return rpc_version

    def request(self, request_type: str, request_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request and wait for its matching response."""
        transport = self._transport
        if transport is None:
            raise ConnectionClosedError("control plane is not connected")
        request_id = str(uuid.uuid4())
        try:
            frame = self._run(self._exchange(transport, request_type, request_id, request_data), request_type)
        except ConnectionClosedError:
            self._logger.debug("Connection lost during %s; discarding", request_type)
            self._transport = None
            self._discard(transport)
            raise
        result, code, comment = request_status(frame)
        if not result:
            raise RequestFailedError(request_type, code, comment)
        response = frame.data.get("responseData")
        return response if isinstance(response, dict) else {}

    def start_replay_buffer(self) -> bool:
        """Start the replay buffer; False when it was already running."""
        try:
            self.request("StartReplayBuffer")
        except RequestFailedError as exc:
            if exc.code == STATUS_OUTPUT_RUNNING:
                self._logger.debug("Replay buffer already running")
                return False
            raise
        return True

    def stop_replay_buffer(self) -> bool:
        """Stop the replay buffer; False when it was not running."""
        try:
            self.request("StopReplayBuffer")
        except RequestFailedError as exc:
            if exc.code == STATUS_OUTPUT_NOT_RUNNING:
                self._logger.debug("Replay buffer was not running")
                return False
            raise
        return True

    def replay_buffer_active(self) -> bool:
        return bool(self.request("GetReplayBufferStatus").get("outputActive"))

    def close(self) -> None:
        transport = self._transport
        self._transport = None
        self.rpc_version = None
        if transport is not None:
            self._discard(transport)
            self._logger.debug("Control plane connection to %s closed", self.url)
        loop = self._loop
        self._loop = None
        if loop is not None and not loop.is_closed():
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    # Internal helpers ---------------------------------------------------

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.new_event_loop()
        return self._loop

    def _run(self, coro: Awaitable[T], what: str) -> T:
        return self._ensure_loop().run_until_complete(self._bounded(coro, what))

    async def _bounded(self, coro: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(coro, self.timeout)
        except asyncio.TimeoutError as exc:
            raise ControlTimeoutError(f"{what} timed out after {self.timeout:.1f}s") from exc

    def _discard(self, transport: MessageTransport) -> None:
        loop = self._ensure_loop()
        try:
            loop.run_until_complete(asyncio.wait_for(transport.close(), self.timeout))
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ControlPlaneError) as exc:
            self._logger.debug("Ignoring error while closing control socket: %s", exc)

    async def _handshake(self, transport: MessageTransport, password: Optional[str]) -> int:
        await transport.open(self.url)
        hello = decode_frame(await transport.receive_text())
        challenge = parse_hello(hello)
        rpc_version = negotiated_rpc_version(hello)
        authentication: Optional[str] = None
        if challenge is not None:
            if not password:
                raise AuthenticationError("server requires authentication but no password is configured")
            authentication = compute_auth_response(password, challenge.salt, challenge.challenge)
        del password
        await transport.send_text(build_identify(rpc_version, authentication).encode())

        try:
            reply = decode_frame(await transport.receive_text())
        except ConnectionClosedError as exc:
            if exc.code == CLOSE_AUTHENTICATION_FAILED or authentication is not None:
                raise AuthenticationError(f"server rejected authentication ({exc})") from exc
            raise HandshakeError(f"connection closed during identify ({exc})") from exc
        if reply.op != OpCode.IDENTIFIED:
            raise HandshakeError(f"expected Identified (op {int(OpCode.IDENTIFIED)}), got op {reply.op}")
        negotiated = reply.data.get("negotiatedRpcVersion", rpc_version)
        try:
            return int(negotiated)
        except (TypeError, ValueError):
            return rpc_version

    async def _exchange(
        self,
        transport: MessageTransport,
        request_type: str,
        request_id: str,
        request_data: Optional[Dict[str, Any]],
    ) -> Frame:
        await transport.send_text(build_request(request_type, request_id, request_data).encode())
        while True:
            text = await transport.receive_text()
            try:
                frame = decode_frame(text)
            except ProtocolError as exc:
                self._logger.debug("Dropping malformed frame while waiting for %s: %s", request_type, exc)
                continue
            if frame.op == OpCode.REQUEST_RESPONSE and frame.data.get("requestId") == request_id:
                return frame
            self._logger.debug("Ignoring op %s while waiting for %s", frame.op, request_type)
