from __future__ import annotations


class TftpError(Exception):
    """Base class for every failure a transfer can end with."""


class ResolutionError(TftpError):
    pass


class SocketError(TftpError):
    pass


class LocalIOError(TftpError):
    pass


class TransferTimeout(TftpError):
    pass


class TransferAborted(TftpError):
    pass


class ProtocolError(TftpError):
    """The peer sent an ERROR packet."""

    def __init__(self, code: int, message: str):
        super().__init__(f"server error {code}: {message}")
        self.code = code
        self.message = message


class UnexpectedMessage(TftpError):
    pass


class MalformedPacket(UnexpectedMessage, ValueError):
    pass


class PacketTooLarge(TftpError, ValueError):
    pass
