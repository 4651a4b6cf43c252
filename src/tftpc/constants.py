from __future__ import annotations

RRQ = 1
WRQ = 2
DATA = 3
ACK = 4
ERROR = 5

OPCODE_LEN = 2
DATA_HDR_LEN = 4  # opcode, block
ERROR_HDR_LEN = 4  # opcode, error code

BLOCK_SIZE = 512
MSGBUF_SIZE = DATA_HDR_LEN + BLOCK_SIZE
MAX_BLOCK = 0xFFFF

MODE_OCTET = "octet"

DEFAULT_PORT = 69
DEFAULT_TIMEOUT_MS = 5000
DEFAULT_MAX_RETRIES = 5

ERR_UNDEFINED = 0
ERR_FILE_NOT_FOUND = 1
ERR_ACCESS_VIOLATION = 2
ERR_DISK_FULL = 3
ERR_ILLEGAL_OPERATION = 4
ERR_UNKNOWN_TID = 5
ERR_FILE_EXISTS = 6
ERR_NO_SUCH_USER = 7

ERROR_MESSAGES = {
    ERR_UNDEFINED: "Not defined, see error message (if any).",
    ERR_FILE_NOT_FOUND: "File not found.",
    ERR_ACCESS_VIOLATION: "Access violation.",
    ERR_DISK_FULL: "Disk full or allocation exceeded.",
    ERR_ILLEGAL_OPERATION: "Illegal TFTP operation.",
    ERR_UNKNOWN_TID: "Unknown transfer ID.",
    ERR_FILE_EXISTS: "File already exists.",
    ERR_NO_SUCH_USER: "No such user.",
}
