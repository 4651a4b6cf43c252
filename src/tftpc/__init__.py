"""tftpc: a Trivial File Transfer Protocol (RFC 1350) client.

Layout follows the protocol's own layering:
- packet framing (``packet``) separate from the datagram channel (``net``)
- one explicit lock-step state machine per transfer (``transfer``)
- ``client.get`` / ``client.put`` own the socket and the local file
"""

from .client import get, put
from .errors import TftpError

__all__ = ["TftpError", "get", "put"]
