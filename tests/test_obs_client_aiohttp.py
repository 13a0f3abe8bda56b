"""Exercise the aiohttp transport against an in-process obs-websocket stand-in."""
from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import socket
import threading

import pytest
from aiohttp import WSMsgType, web

from focus_deck.obs_client import ControlPlaneClient
from focus_deck.obs_protocol import (
    AuthenticationError,
    ConnectionClosedError,
    ControlTimeoutError,
    ProtocolError,
)

SALT = "c2FsdA=="
CHALLENGE = "Y2hhbGxlbmdl"
EXPECTED_AUTH = "HbemcTRAK8GnBZpkRzKZdmk94xa5VYtjm6/uKbA1epI="


class _ObsStandIn:
    def __init__(self, *, require_auth: bool = False, send_identified: bool = True, raw_hello: bytes = b""):
        self.require_auth = require_auth
        self.raw_hello = raw_hello
        self.send_identified = send_identified
        self.requests = []
        self.port = None
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, name="ObsStandIn", daemon=True)
        self._runner = None
        self._sockets = set()

    def __enter__(self) -> "_ObsStandIn":
        self._thread.start()
        if not self._ready.wait(timeout=5.0):
            raise RuntimeError("stand-in server did not start")
        return self

    def __exit__(self, *_exc) -> None:
        asyncio.run_coroutine_threadsafe(self._runner.cleanup(), self._loop).result(timeout=5.0)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)
        self._loop.close()

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        app = web.Application()
        app.router.add_get("/", self._handle)
        app.on_shutdown.append(self._close_sockets)
        self._runner = web.AppRunner(app)
        self._loop.run_until_complete(self._runner.setup())
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        self.port = sock.getsockname()[1]
        site = web.SockSite(self._runner, sock)
        self._loop.run_until_complete(site.start())
        self._ready.set()
        self._loop.run_forever()

    async def _close_sockets(self, _app) -> None:
        for ws in list(self._sockets):
            await ws.close(code=1001, message=b"shutdown")

    async def _handle(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._sockets.add(ws)
        try:
            await self._converse(ws)
        finally:
            self._sockets.discard(ws)
        return ws

    async def _converse(self, ws) -> None:
        if self.raw_hello:
            await ws.send_bytes(self.raw_hello)
            async for _message in ws:
                pass
            return
        hello = {"obsWebSocketVersion": "5.4.2", "rpcVersion": 1}
        if self.require_auth:
            hello["authentication"] = {"salt": SALT, "challenge": CHALLENGE}
        await ws.send_str(json.dumps({"op": 0, "d": hello}))
        async for message in ws:
            if message.type != WSMsgType.TEXT:
                continue
            payload = json.loads(message.data)
            op, data = payload["op"], payload["d"]
            if op == 1:
                if self.require_auth and data.get("authentication") != EXPECTED_AUTH:
                    await ws.close(code=4009, message=b"Authentication failed.")
                    break
                if self.send_identified:
                    await ws.send_str(json.dumps({"op": 2, "d": {"negotiatedRpcVersion": 1}}))
            elif op == 6:
                self.requests.append(data["requestType"])
                response = {
                    "requestType": data["requestType"],
                    "requestId": data["requestId"],
                    "requestStatus": {"result": True, "code": 100},
                    "responseData": {"outputActive": True},
                }
                await ws.send_str(json.dumps({"op": 7, "d": response}))


def test_authenticated_session_over_real_socket():
    with _ObsStandIn(require_auth=True) as server:
        client = ControlPlaneClient("127.0.0.1", server.port, timeout=3.0)
        try:
            assert client.connect("hunter2") == 1
            assert client.start_replay_buffer() is True
            assert client.replay_buffer_active() is True
        finally:
            client.close()
        assert server.requests == ["StartReplayBuffer", "GetReplayBufferStatus"]


def test_rejected_password_over_real_socket():
    with _ObsStandIn(require_auth=True) as server:
        client = ControlPlaneClient("127.0.0.1", server.port, timeout=3.0)
        try:
            with pytest.raises(AuthenticationError):
                client.connect("not-the-password")
            assert not client.connected
        finally:
            client.close()


def test_silent_server_times_out():
    with _ObsStandIn(send_identified=False) as server:
        client = ControlPlaneClient("127.0.0.1", server.port, timeout=0.3)
        try:
            with pytest.raises(ControlTimeoutError):
                client.connect()
        finally:
            client.close()


def test_nothing_listening_is_connection_error():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    client = ControlPlaneClient("127.0.0.1", port, timeout=3.0)
    try:
        with pytest.raises(ConnectionClosedError):
            client.connect()
    finally:
        client.close()


def test_binary_frame_with_invalid_utf8_is_rejected():
    with _ObsStandIn(raw_hello=b'{"op": 0, "d": {"rpcVersion": 1, "x": "\xff\xfe"}}') as server:
        client = ControlPlaneClient("127.0.0.1", server.port, timeout=3.0)
        try:
            with pytest.raises(ProtocolError):
                client.connect()
            assert not client.connected
        finally:
            client.close()


WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


class _FragmentingServer:
    """Hand-rolled WebSocket server that splits every message into two frames."""

    def __init__(self):
        self.identify = None
        self.errors = []
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(1)
        self._listener.settimeout(5.0)
        self.port = self._listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, name="FragmentingServer", daemon=True)

    def __enter__(self) -> "_FragmentingServer":
        self._thread.start()
        return self

    def __exit__(self, *_exc) -> None:
        self._thread.join(timeout=5.0)
        self._listener.close()

    def _serve(self) -> None:
        try:
            conn, _addr = self._listener.accept()
        except OSError as exc:
            self.errors.append(exc)
            return
        with conn:
            conn.settimeout(5.0)
            try:
                self._upgrade(conn)
                self._send_fragmented(conn, {"op": 0, "d": {"obsWebSocketVersion": "5.4.2", "rpcVersion": 1}})
                opcode, payload = self._read_frame(conn)
                if opcode == 0x1:
                    self.identify = json.loads(payload)
                    self._send_fragmented(conn, {"op": 2, "d": {"negotiatedRpcVersion": 1}})
                opcode, _payload = self._read_frame(conn)
                if opcode == 0x8:
                    conn.sendall(b"\x88\x02\x03\xe8")
            except (OSError, ValueError) as exc:
                self.errors.append(exc)

    @staticmethod
    def _recv_exact(conn, size: int) -> bytes:
        data = b""
        while len(data) < size:
            chunk = conn.recv(size - len(data))
            if not chunk:
                raise ConnectionError("client went away")
            data += chunk
        return data

    def _upgrade(self, conn) -> None:
        request = b""
        while b"\r\n\r\n" not in request:
            chunk = conn.recv(4096)
            if not chunk:
                raise ConnectionError("no upgrade request")
            request += chunk
        key = ""
        for line in request.decode("latin-1").split("\r\n"):
            name, _sep, value = line.partition(":")
            if name.strip().lower() == "sec-websocket-key":
                key = value.strip()
        accept = base64.b64encode(hashlib.sha1((key + WEBSOCKET_GUID).encode("ascii")).digest()).decode("ascii")
        conn.sendall(
            (
                "HTTP/1.1 101 Switching Protocols\r\n"
                "Upgrade: websocket\r\n"
                "Connection: Upgrade\r\n"
                f"Sec-WebSocket-Accept: {accept}\r\n\r\n"
            ).encode("ascii")
        )

    @staticmethod
    def _send_fragmented(conn, message) -> None:
        payload = json.dumps(message).encode("utf-8")
        middle = len(payload) // 2
        head, tail = payload[:middle], payload[middle:]
        # Text frame without FIN, then a FIN continuation frame.
        conn.sendall(bytes([0x01, len(head)]) + head)
        conn.sendall(bytes([0x80, len(tail)]) + tail)

    def _read_frame(self, conn):
        first, second = self._recv_exact(conn, 2)
        length = second & 0x7F
        if length == 126:
            length = int.from_bytes(self._recv_exact(conn, 2), "big")
        elif length == 127:
            length = int.from_bytes(self._recv_exact(conn, 8), "big")
        mask = self._recv_exact(conn, 4) if second & 0x80 else b"\x00\x00\x00\x00"
        payload = bytes(byte ^ mask[index % 4] for index, byte in enumerate(self._recv_exact(conn, length)))
        return first & 0x0F, payload


def test_fragmented_frames_are_reassembled():
    with _FragmentingServer() as server:
        client = ControlPlaneClient("127.0.0.1", server.port, timeout=3.0)
        try:
            assert client.connect() == 1
            assert client.connected
        finally:
            client.close()
    assert server.identify == {"op": 1, "d": {"rpcVersion": 1, "eventSubscriptions": 0}}
    assert server.errors == []
