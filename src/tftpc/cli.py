from __future__ import annotations

import argparse
import json
import logging
import sys

from . import client
from .constants import DEFAULT_MAX_RETRIES, DEFAULT_PORT, DEFAULT_TIMEOUT_MS
from .errors import TftpError
from .net import Impairment
from .transfer import Direction, Metrics


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tftpc", description="TFTP (RFC 1350) client, octet mode.")
    direction = p.add_mutually_exclusive_group(required=True)
    direction.add_argument(
        "-g", dest="direction", action="store_const", const=Direction.GET,
        help="get FILENAME from HOSTNAME into the working directory",
    )
    direction.add_argument(
        "-p", dest="direction", action="store_const", const=Direction.PUT,
        help="put the local FILENAME to HOSTNAME",
    )
    p.add_argument("filename", metavar="FILENAME")
    p.add_argument("hostname", metavar="HOSTNAME")
    p.add_argument("--port", type=int, default=DEFAULT_PORT)
    p.add_argument("--output", default=None, help="local path for -g (default: base name of FILENAME)")
    p.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    p.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
    p.add_argument("--loss-rate", type=float, default=0.0, help="simulate datagram loss")
    p.add_argument("--delay-ms", type=int, default=0, help="simulate per-datagram delay")
    p.add_argument("--json", action="store_true")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return p


def run(args: argparse.Namespace) -> Metrics:
    options = dict(
        port=args.port,
        timeout_ms=args.timeout_ms,
        max_retries=args.max_retries,
        impairment=Impairment(args.loss_rate, args.delay_ms),
    )
    if args.direction is Direction.GET:
        return client.get(args.hostname, args.filename, args.output, **options)
    return client.put(args.hostname, args.filename, **options)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")

    try:
        metrics = run(args)
    except TftpError as exc:
        print(f"tftpc: {exc}", file=sys.stderr)
        print("File transfer failed.", file=sys.stderr)
        return 1

    if args.json:
        payload = {
            "direction": args.direction.value,
            "file": args.filename,
            "bytes": metrics.bytes_transferred,
            "blocks": metrics.blocks,
            "seconds": metrics.duration_s,
            "bytes_per_second": metrics.bytes_per_second,
            "timeouts": metrics.timeouts,
            "retransmits": metrics.retransmits,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(f"Total data bytes sent/received: {metrics.bytes_transferred}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
