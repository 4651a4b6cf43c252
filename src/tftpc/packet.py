from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Union

from .constants import (
    ACK,
    BLOCK_SIZE,
    DATA,
    DATA_HDR_LEN,
    ERROR,
    ERROR_HDR_LEN,
    ERROR_MESSAGES,
    MAX_BLOCK,
    MODE_OCTET,
    MSGBUF_SIZE,
    OPCODE_LEN,
    RRQ,
    WRQ,
)
from .errors import MalformedPacket, PacketTooLarge

OPCODE_STRUCT = struct.Struct("!H")
HEADER_STRUCT = struct.Struct("!HH")  # opcode, block or error code

# surrogateescape lets arbitrary wire bytes survive a decode/encode cycle
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"


class Opcode(enum.IntEnum):
    RRQ = RRQ
    WRQ = WRQ
    DATA = DATA
    ACK = ACK
    ERROR = ERROR


def _encode_text(value: str, what: str) -> bytes:
    raw = value.encode(TEXT_ENCODING, TEXT_ERRORS)
    if b"\x00" in raw:
        raise PacketTooLarge(f"{what} contains a NUL byte")
    return raw


def _decode_text(raw: bytes) -> str:
    return raw.decode(TEXT_ENCODING, TEXT_ERRORS)


def _check_u16(value: int, what: str) -> None:
    if not 0 <= value <= MAX_BLOCK:
        raise PacketTooLarge(f"{what} out of range: {value}")


def _take_cstring(raw: bytes, start: int, what: str) -> tuple[bytes, int]:
    """Return the NUL-terminated field at ``start`` and the offset after it."""
    end = raw.find(b"\x00", start)
    if end < 0:
        raise MalformedPacket(f"{what} is missing its terminator")
    return raw[start:end], end + 1


@dataclass(frozen=True, slots=True)
class _Request:
    filename: str
    mode: str = MODE_OCTET

    opcode = 0

    def to_bytes(self) -> bytes:
        filename = _encode_text(self.filename, "filename")
        mode = _encode_text(self.mode, "mode")
        if not filename or not mode:
            raise PacketTooLarge("filename and mode must not be empty")
        size = OPCODE_LEN + len(filename) + 1 + len(mode) + 1
        if size > MSGBUF_SIZE:
            raise PacketTooLarge(f"request is {size} bytes, limit is {MSGBUF_SIZE}")
        return OPCODE_STRUCT.pack(self.opcode) + filename + b"\x00" + mode + b"\x00"


@dataclass(frozen=True, slots=True)
class ReadRequest(_Request):
    opcode = Opcode.RRQ


@dataclass(frozen=True, slots=True)
class WriteRequest(_Request):
    opcode = Opcode.WRQ


@dataclass(frozen=True, slots=True)
class Data:
    block: int
    payload: bytes = b""

    opcode = Opcode.DATA

    @property
    def is_final(self) -> bool:
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        _check_u16(self.block, "block number")
        if len(self.payload) > BLOCK_SIZE:
            raise PacketTooLarge(f"payload too large: {len(self.payload)}")
        return HEADER_STRUCT.pack(self.opcode, self.block) + self.payload


@dataclass(frozen=True, slots=True)
class Ack:
    block: int

    opcode = Opcode.ACK

    def to_bytes(self) -> bytes:
        _check_u16(self.block, "block number")
        return HEADER_STRUCT.pack(self.opcode, self.block)


@dataclass(frozen=True, slots=True)
class Error:
    code: int
    message: str = ""

    opcode = Opcode.ERROR

    def describe(self) -> str:
        if self.message:
            return self.message
        return ERROR_MESSAGES.get(self.code, f"Unknown error code {self.code}.")

    def to_bytes(self) -> bytes:
        _check_u16(self.code, "error code")
        message = _encode_text(self.message, "error message")
        size = ERROR_HDR_LEN + len(message) + 1
        if size > MSGBUF_SIZE:
            raise PacketTooLarge(f"error message is {size} bytes, limit is {MSGBUF_SIZE}")
        return HEADER_STRUCT.pack(self.opcode, self.code) + message + b"\x00"

    @staticmethod
    def from_code(code: int) -> "Error":
        return Error(code, ERROR_MESSAGES.get(code, ""))


Packet = Union[ReadRequest, WriteRequest, Data, Ack, Error]


def _decode_request(raw: bytes, cls: type[_Request]) -> _Request:
    filename, offset = _take_cstring(raw, OPCODE_LEN, "filename")
    mode, _ = _take_cstring(raw, offset, "mode")
    # anything after the mode is RFC 2347 options, which are not negotiated
    return cls(_decode_text(filename), _decode_text(mode))


def decode(raw: bytes) -> Packet:
    raw = bytes(raw)
    if len(raw) < OPCODE_LEN:
        raise MalformedPacket("datagram too small to hold an opcode")

    (opcode,) = OPCODE_STRUCT.unpack_from(raw)
    if opcode == Opcode.RRQ:
        return _decode_request(raw, ReadRequest)
    if opcode == Opcode.WRQ:
        return _decode_request(raw, WriteRequest)
    if opcode not in (Opcode.DATA, Opcode.ACK, Opcode.ERROR):
        raise MalformedPacket(f"unknown opcode {opcode}")

    if len(raw) < HEADER_STRUCT.size:
        raise MalformedPacket(f"{Opcode(opcode).name} packet too short: {len(raw)} bytes")
    _, value = HEADER_STRUCT.unpack_from(raw)

    if opcode == Opcode.DATA:
        payload = raw[DATA_HDR_LEN:]
        if len(payload) > BLOCK_SIZE:
            raise MalformedPacket(f"DATA payload too large: {len(payload)}")
        return Data(value, payload)
    if opcode == Opcode.ACK:
        return Ack(value)

    message, _ = _take_cstring(raw, ERROR_HDR_LEN, "error message")
    return Error(value, _decode_text(message))
