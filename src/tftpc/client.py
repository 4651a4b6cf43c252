from __future__ import annotations

import logging
import os
import threading

from .constants import DEFAULT_MAX_RETRIES, DEFAULT_PORT, DEFAULT_TIMEOUT_MS, MODE_OCTET
from .errors import LocalIOError
from .net import Impairment, UdpTransport
from .transfer import Direction, Metrics, Session, Transfer


def get(
    hostname: str,
    filename: str,
    local_path: str | None = None,
    *,
    port: int = DEFAULT_PORT,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    impairment: Impairment | None = None,
    abort: threading.Event | None = None,
) -> Metrics:
    """Fetch ``filename`` from ``hostname`` into ``local_path``.

    ``local_path`` defaults to the base name of ``filename`` in the working
    directory. A failed transfer leaves whatever was received on disk.
    """
    local_path = local_path or os.path.basename(filename)
    udp = UdpTransport.open(hostname, port, impairment=impairment)
    try:
        try:
            f = open(local_path, "wb")
        except OSError as exc:
            raise LocalIOError(f"cannot open {local_path}: {exc}") from exc
        with f:
            session = Session(Direction.GET, f, filename, MODE_OCTET)
            return Transfer(udp, session, timeout_ms / 1000.0, max_retries, abort).run()
    finally:
        udp.close()


def put(
    hostname: str,
    local_path: str,
    filename: str | None = None,
    *,
    port: int = DEFAULT_PORT,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    impairment: Impairment | None = None,
    abort: threading.Event | None = None,
) -> Metrics:
    """Send ``local_path`` to ``hostname``, stored remotely as ``filename``."""
    filename = filename or os.path.basename(local_path)
    udp = UdpTransport.open(hostname, port, impairment=impairment)
    try:
        try:
            f = open(local_path, "rb")
        except OSError as exc:
            raise LocalIOError(f"cannot open {local_path}: {exc}") from exc
        with f:
            logging.debug("sending %s (%d bytes)", local_path, os.fstat(f.fileno()).st_size)
            session = Session(Direction.PUT, f, filename, MODE_OCTET)
            return Transfer(udp, session, timeout_ms / 1000.0, max_retries, abort).run()
    finally:
        udp.close()
