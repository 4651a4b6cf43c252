"""The TFTP lock-step transfer state machine.

One :class:`Transfer` drives one :class:`Session` from the initial request to
either ``State.DONE`` or ``State.FAILED``. There is never more than one
datagram awaiting a reply. On a timeout the last outbound datagram is sent
again byte for byte; it is never rebuilt.
"""
from __future__ import annotations

import enum
import errno
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO, NoReturn, Protocol

from .constants import (
    BLOCK_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_MS,
    ERR_DISK_FULL,
    ERR_ILLEGAL_OPERATION,
    ERR_UNDEFINED,
    MAX_BLOCK,
    MODE_OCTET,
    MSGBUF_SIZE,
)
from .errors import (
    LocalIOError,
    MalformedPacket,
    ProtocolError,
    SocketError,
    TftpError,
    TransferAborted,
    TransferTimeout,
    UnexpectedMessage,
)
from .packet import Ack, Data, Error, ReadRequest, WriteRequest, decode


class Transport(Protocol):
    def send(self, data: bytes) -> int: ...

    def receive_into(self, buffer: bytearray, timeout_s: float) -> int | None: ...


class Direction(enum.Enum):
    GET = "get"
    PUT = "put"


class State(enum.Enum):
    START = "start"
    AWAITING_REPLY = "awaiting_reply"
    TRANSFERRING = "transferring"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class Metrics:
    bytes_transferred: int = 0
    blocks: int = 0
    packets_sent: int = 0
    timeouts: int = 0
    retransmits: int = 0
    duplicates: int = 0
    duration_s: float = 0.0
    started: float = field(default_factory=time.monotonic, repr=False)

    def finish(self, bytes_transferred: int) -> None:
        self.bytes_transferred = bytes_transferred
        self.duration_s = time.monotonic() - self.started

    @property
    def bytes_per_second(self) -> float:
        return self.bytes_transferred / self.duration_s if self.duration_s > 0 else 0.0


@dataclass(slots=True)
class Session:
    direction: Direction
    file: BinaryIO
    filename: str
    mode: str = MODE_OCTET
    block: int = 0
    last_outbound: bytes = b""
    # one spare byte so an oversized datagram is seen as malformed, not truncated
    inbound: bytearray = field(default_factory=lambda: bytearray(MSGBUF_SIZE + 1))
    bytes_transferred: int = 0
    final_sent: bool = False


class Transfer:
    def __init__(
        self,
        transport: Transport,
        session: Session,
        timeout_s: float = DEFAULT_TIMEOUT_MS / 1000.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        abort: threading.Event | None = None,
    ):
        self.transport = transport
        self.session = session
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.abort = abort
        self.state = State.START
        self.failure: TftpError | None = None
        self.metrics = Metrics()
        self.retries = 0

    def run(self) -> Metrics:
        if self.state is not State.START:
            raise RuntimeError(f"transfer already ran (state={self.state.name})")
        s = self.session
        logging.info("%s %s start; mode=%s", s.direction.value, s.filename, s.mode)
        try:
            if s.direction is Direction.GET:
                self._send(ReadRequest(s.filename, s.mode).to_bytes())
            else:
                self._send(WriteRequest(s.filename, s.mode).to_bytes())
            self.state = State.AWAITING_REPLY

            while self.state in (State.AWAITING_REPLY, State.TRANSFERRING):
                if self.abort is not None and self.abort.is_set():
                    raise TransferAborted("transfer aborted")
                nbytes = self.transport.receive_into(s.inbound, self.timeout_s)
                if nbytes is None:
                    self._on_timeout()
                else:
                    self._on_datagram(bytes(s.inbound[:nbytes]))
        except TftpError as exc:
            self.state = State.FAILED
            self.failure = exc
            logging.info("%s %s failed: %s", s.direction.value, s.filename, exc)
            raise
        finally:
            self.metrics.finish(s.bytes_transferred)

        logging.info(
            "%s %s done; %d bytes in %d blocks, %d retransmits",
            s.direction.value,
            s.filename,
            s.bytes_transferred,
            self.metrics.blocks,
            self.metrics.retransmits,
        )
        return self.metrics

    def _send(self, data: bytes) -> None:
        self.session.last_outbound = data
        self.transport.send(data)
        self.metrics.packets_sent += 1

    def _on_timeout(self) -> None:
        self.metrics.timeouts += 1
        self.retries += 1
        if self.retries > self.max_retries:
            raise TransferTimeout(
                f"no reply after {self.max_retries} retransmits (block {self.session.block})"
            )
        logging.debug("timeout; block=%d retry=%d", self.session.block, self.retries)
        self.transport.send(self.session.last_outbound)
        self.metrics.packets_sent += 1
        self.metrics.retransmits += 1

    def _charge_duplicate(self) -> None:
        # repeats spend the same budget as timeouts
        self.metrics.duplicates += 1
        self.retries += 1
        if self.retries > self.max_retries:
            raise TransferTimeout(
                f"no progress after {self.retries} repeated or timed-out replies (block {self.session.block})"
            )

    def _on_datagram(self, raw: bytes) -> None:
        try:
            packet = decode(raw)
        except MalformedPacket:
            self._refuse("malformed packet")
            raise

        match packet:
            case Error():
                raise ProtocolError(packet.code, packet.describe())
            case Data() if self.session.direction is Direction.GET:
                self._on_data(packet)
            case Ack() if self.session.direction is Direction.PUT:
                self._on_ack(packet)
            case _:
                self._refuse(f"unexpected {type(packet).__name__}")
                raise UnexpectedMessage(
                    f"unexpected {type(packet).__name__} during {self.session.direction.value}"
                )

    def _on_data(self, packet: Data) -> None:
        s = self.session
        expected = (s.block + 1) & MAX_BLOCK
        if packet.block != expected:
            logging.debug("duplicate DATA block=%d expected=%d", packet.block, expected)
            self._charge_duplicate()
            if self.state is State.TRANSFERRING:
                self.transport.send(s.last_outbound)
                self.metrics.packets_sent += 1
            return

        try:
            s.file.write(packet.payload)
        except OSError as exc:
            self._fail_local(exc)
        s.block = packet.block
        s.bytes_transferred += len(packet.payload)
        self.metrics.blocks += 1
        self.retries = 0
        self._send(Ack(s.block).to_bytes())
        self.state = State.DONE if packet.is_final else State.TRANSFERRING

    def _on_ack(self, packet: Ack) -> None:
        s = self.session
        if packet.block != s.block:
            # resending on a stale ACK would double every later block
            logging.debug("stale ACK block=%d current=%d", packet.block, s.block)
            self._charge_duplicate()
            return

        self.retries = 0
        if s.final_sent:
            self.state = State.DONE
            return

        try:
            chunk = s.file.read(BLOCK_SIZE)
        except OSError as exc:
            self._fail_local(exc)
        s.block = (s.block + 1) & MAX_BLOCK
        s.bytes_transferred += len(chunk)
        s.final_sent = len(chunk) < BLOCK_SIZE
        self.metrics.blocks += 1
        self._send(Data(s.block, chunk).to_bytes())
        self.state = State.TRANSFERRING

    def _refuse(self, reason: str) -> None:
        self._notify_peer(Error(ERR_ILLEGAL_OPERATION, reason))

    def _fail_local(self, exc: OSError) -> NoReturn:
        code = ERR_DISK_FULL if exc.errno == errno.ENOSPC else ERR_UNDEFINED
        self._notify_peer(Error(code, exc.strerror or "local I/O error"))
        raise LocalIOError(f"{self.session.direction.value} {self.session.filename}: {exc}") from exc

    def _notify_peer(self, error: Error) -> None:
        try:
            self.transport.send(error.to_bytes())
        except SocketError as exc:
            logging.debug("could not send error to peer: %s", exc)
        self.metrics.packets_sent += 1
