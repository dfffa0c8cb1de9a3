"""Compare a sent file with the received copy, line by line."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import List, Optional

EXPECTED_FILE = "input.txt"
ACTUAL_FILE = "output.txt"
TAIL_LENGTH = 100


@dataclass(frozen=True)
class Mismatch:
    """The first differing line of two files.

    ``tail`` holds up to 100 characters of the expected line starting at the
    first character that does not occur anywhere in the actual line, or is
    None when there is no such character.
    """

    line_number: int
    expected: str
    actual: str
    tail: Optional[str]


def _lines(path: str) -> List[str]:
    with open(path, "rb") as stream:
        text = stream.read().decode("latin-1")
    lines = text.split("\n")
    if text.endswith("\n") or not text:
        lines.pop()
    return lines


def _first_not_of(text: str, chars: str) -> Optional[int]:
    allowed = set(chars)
    return next((pos for pos, ch in enumerate(text) if ch not in allowed), None)


def compare_files(expected_path: str, actual_path: str) -> Optional[Mismatch]:
    """Return the first mismatching line, or None if the common lines agree.

    Only as many lines as the shorter file holds are compared.
    """
    expected_lines = _lines(expected_path)
    actual_lines = _lines(actual_path)
    for number, (expected, actual) in enumerate(zip(expected_lines, actual_lines), start=1):
        if expected != actual:
            pos = _first_not_of(expected, actual)
            tail = expected[pos:pos + TAIL_LENGTH] if pos is not None else None
            return Mismatch(number, expected, actual, tail)
    return None


def main(argv: Optional[List[str]] = None) -> int:
    """Report whether the two files agree."""
    parser = argparse.ArgumentParser(
        prog="ktp-check", description="Compare a sent file with the received copy."
    )
    parser.add_argument("expected", nargs="?", default=EXPECTED_FILE)
    parser.add_argument("actual", nargs="?", default=ACTUAL_FILE)
    args = parser.parse_args(argv)
    try:
        mismatch = compare_files(args.expected, args.actual)
    except OSError:
        print("Error opening files!", file=sys.stderr)
        return 1
    if mismatch is None:
        print(f"{args.expected} and {args.actual} are identical")
        return 0
    print(f"Mismatch found at line {mismatch.line_number}")
    print(f"Input:  {mismatch.expected}")
    print(f"Output: {mismatch.actual}")
    if mismatch.tail is not None:
        print(f"{TAIL_LENGTH} characters after mismatch:")
        print(mismatch.tail)
    return 0