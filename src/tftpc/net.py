from __future__ import annotations

import logging
import random
import socket
import time
from dataclasses import dataclass
from typing import Any, Tuple

from .constants import DEFAULT_PORT, ERR_UNKNOWN_TID
from .errors import ResolutionError, SocketError
from .packet import Error

Address = Tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class Impairment:
    """Simulated loss and latency, applied to datagrams in both directions."""

    loss_rate: float = 0.0
    delay_ms: int = 0

    def passes(self) -> bool:
        """False when the datagram is lost; surviving ones are delayed first."""
        if self.loss_rate and random.random() < self.loss_rate:
            return False
        if self.delay_ms:
            time.sleep(self.delay_ms / 1000.0)
        return True


class UdpTransport:
    """A datagram channel bound to one TFTP peer.

    The server answers the initial request from a fresh port, so the source
    of the first datagram received replaces the request address as the peer.
    After that, datagrams from anywhere else are refused with ERROR 5.
    """

    def __init__(self, sock: socket.socket, peer: Address, impairment: Impairment | None = None):
        self.sock = sock
        self.peer = peer
        self.impairment = impairment or Impairment()
        self.peer_locked = False
        self.closed = False

    @classmethod
    def open(
        cls,
        hostname: str,
        port: int = DEFAULT_PORT,
        impairment: Impairment | None = None,
    ) -> "UdpTransport":
        try:
            infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as exc:
            raise ResolutionError(f"cannot resolve {hostname!r}: {exc}") from exc
        if not infos:
            raise ResolutionError(f"no address found for {hostname!r}")

        family, socktype, proto, _, sockaddr = infos[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            raise SocketError(f"cannot create socket: {exc}") from exc
        logging.debug("resolved %s to %s", hostname, sockaddr)
        return cls(sock, sockaddr, impairment)

    def send(self, data: bytes) -> int:
        if not self.impairment.passes():
            logging.debug("DROPPED outbound %d bytes", len(data))
            return len(data)
        try:
            return self.sock.sendto(data, self.peer)
        except OSError as exc:
            raise SocketError(f"send to {self.peer} failed: {exc}") from exc

    def receive_into(self, buffer: bytearray, timeout_s: float) -> int | None:
        """Wait up to ``timeout_s`` for a datagram from the peer.

        Returns the number of bytes written into ``buffer``, or None when
        nothing acceptable arrived in time.
        """
        deadline = time.monotonic() + timeout_s
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self.sock.settimeout(remaining)
            try:
                nbytes, addr = self.sock.recvfrom_into(buffer)
            except TimeoutError:
                return None
            except OSError as exc:
                raise SocketError(f"receive failed: {exc}") from exc

            if not self.impairment.passes():
                logging.debug("DROPPED inbound %d bytes from %s", nbytes, addr)
                continue

            if not self.peer_locked:
                # only the port may change on the first reply, never the host
                if addr[0] != self.peer[0]:
                    logging.warning("ignoring %d bytes from %s, expected host %s", nbytes, addr, self.peer[0])
                    self._reject(addr)
                    continue
                if addr != self.peer:
                    logging.debug("peer moved from %s to %s", self.peer, addr)
                self.peer = addr
                self.peer_locked = True
            elif addr != self.peer:
                logging.warning("ignoring %d bytes from unknown transfer ID %s", nbytes, addr)
                self._reject(addr)
                continue
            return nbytes

    def _reject(self, addr: Address) -> None:
        try:
            self.sock.sendto(Error.from_code(ERR_UNKNOWN_TID).to_bytes(), addr)
        except OSError as exc:
            logging.debug("could not reject %s: %s", addr, exc)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sock.close()
