"""Receive messages over a KTP socket and write them to a file.

Each message's text runs up to its first NUL byte. A message made entirely
of ``'$'`` characters ends the transfer.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from typing import List, Optional

from .protocol import NoMessageError
from .stack import KTPStack

WAITING_TIME = 1
OUTPUT_FILE = "output.txt"


def is_end_marker(message: bytes) -> bool:
    """Whether ``message`` is the end-of-transfer marker."""
    return bool(message) and message.strip(b"$") == b""


def message_text(message: bytes) -> bytes:
    """The text carried by a message: its bytes before the first NUL."""
    return bytes(message).split(b"\0", 1)[0]


def receive_to_file(stack, sockfd: int, path: str, wait: float = WAITING_TIME) -> int:
    """Write received messages to ``path`` until the end marker; return their count.

    While no message is waiting the call sleeps ``wait`` seconds between
    attempts. Any other socket error is raised.
    """
    written = 0
    received = 0
    with open(path, "wb") as out:
        while True:
            try:
                message, _ = stack.recvfrom(sockfd)
            except NoMessageError:
                time.sleep(wait)
                continue
            received += 1
            print(f"Received Message No: {received}")
            if is_end_marker(message):
                break
            out.write(message_text(message))
            written += 1
    return written


def _parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog, description="Receive a text file from a peer over KTP."
    )
    parser.add_argument("src_ip", help="local IPv4 address")
    parser.add_argument("src_port", type=int, help="local port")
    parser.add_argument("dest_ip", help="peer IPv4 address")
    parser.add_argument("dest_port", type=int, help="peer port")
    parser.add_argument("--output", default=OUTPUT_FILE, help="file to write")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Receive a file and keep acknowledging the peer until interrupted."""
    args = _parser("ktp-receive").parse_args(argv)
    src = (args.src_ip, args.src_port)
    dest = (args.dest_ip, args.dest_port)
    with KTPStack() as stack:
        try:
            fd = stack.socket()
        except OSError as exc:
            print(f"k_socket: {exc}", file=sys.stderr)
            return 1
        print("Socket created successfully")
        try:
            stack.bind(fd, src, dest)
        except OSError as exc:
            print(f"k_bind: {exc}", file=sys.stderr)
            return 1
        print(
            f"Bind successful from IP addr {src[0]} and port {src[1]} "
            f"to IP addr {dest[0]} and port {dest[1]}"
        )
        try:
            receive_to_file(stack, fd, args.output)
            print("File written successfully")
            while True:
                time.sleep(WAITING_TIME)
        except KeyboardInterrupt:
            print(f"\nSignal {signal.SIGINT.value} received")
            print("Exiting")
        except OSError as exc:
            print(f"k_recvfrom: {exc}", file=sys.stderr)
            return 1
    return 0