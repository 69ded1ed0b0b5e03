"""Pairing code submitted through the setup page.

The code doubles as the "configuration received" marker: the setup loop
watches for the file and the client reads it when pairing with the account.
"""

from __future__ import annotations

import contextlib
from pathlib import Path

PAIRING_CODE_LENGTH = 4


def is_valid_pairing_code(code: str | None) -> bool:
    if not code or len(code) != PAIRING_CODE_LENGTH:
        return False
    return code.isascii() and code.isdigit()


def write_pairing_code(path: Path, code: str) -> None:
    if not is_valid_pairing_code(code):
        raise ValueError("Valid 4-digit pairing code is required")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(code, encoding="utf-8")


def read_pairing_code(path: Path) -> str | None:
    try:
        code = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return code if is_valid_pairing_code(code) else None


def clear_pairing_code(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        path.unlink()
