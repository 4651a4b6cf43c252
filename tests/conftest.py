from __future__ import annotations

import socket
import threading

import pytest

from tftpc.constants import BLOCK_SIZE, MSGBUF_SIZE
from tftpc.packet import Ack, Data, Error, ReadRequest, WriteRequest, decode


class LoopbackServer:
    """Serves a single RRQ or WRQ from an in-memory file table.

    Like a real server it answers from a fresh ephemeral port, not the port
    the request was sent to.
    """

    def __init__(self, files: dict[str, bytes] | None = None):
        self.files = dict(files or {})
        self.requests: list[object] = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(5.0)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve_one, daemon=True)

    def start(self) -> "LoopbackServer":
        self.thread.start()
        return self

    def stop(self) -> None:
        self.thread.join(timeout=5.0)
        self.sock.close()

    def _serve_one(self) -> None:
        try:
            raw, client = self.sock.recvfrom(MSGBUF_SIZE)
        except OSError:
            return
        request = decode(raw)
        self.requests.append(request)
        conn = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        conn.bind(("127.0.0.1", 0))
        conn.settimeout(5.0)
        with conn:
            if isinstance(request, ReadRequest):
                self._send_file(conn, client, request.filename)
            elif isinstance(request, WriteRequest):
                self._receive_file(conn, client, request.filename)

    def _send_file(self, conn: socket.socket, client, name: str) -> None:
        if name not in self.files:
            conn.sendto(Error(1, "File not found").to_bytes(), client)
            return
        content = self.files[name]
        block = 1
        while True:
            chunk = content[(block - 1) * BLOCK_SIZE : block * BLOCK_SIZE]
            conn.sendto(Data(block, chunk).to_bytes(), client)
            reply = decode(conn.recvfrom(MSGBUF_SIZE)[0])
            if reply != Ack(block) or len(chunk) < BLOCK_SIZE:
                return
            block += 1

    def _receive_file(self, conn: socket.socket, client, name: str) -> None:
        received = bytearray()
        conn.sendto(Ack(0).to_bytes(), client)
        while True:
            packet = decode(conn.recvfrom(MSGBUF_SIZE)[0])
            if not isinstance(packet, Data):
                return
            received += packet.payload
            conn.sendto(Ack(packet.block).to_bytes(), client)
            if packet.is_final:
                break
        self.files[name] = bytes(received)


@pytest.fixture
def tftp_server():
    servers: list[LoopbackServer] = []

    def start(files: dict[str, bytes] | None = None) -> LoopbackServer:
        server = LoopbackServer(files).start()
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()
