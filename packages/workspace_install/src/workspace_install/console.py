from __future__ import annotations

import sys
from collections.abc import Iterable


def eprint(*args: object) -> None:
    print(*args, file=sys.stderr, flush=True)


def warn(message: str) -> None:
    eprint(f"WARNING: {message}")


def error(message: str) -> None:
    eprint(f"ERROR: {message}")


def warn_all(messages: Iterable[str]) -> None:
    for message in messages:
        warn(message)
