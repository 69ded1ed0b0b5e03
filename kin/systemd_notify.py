"""Lightweight systemd sd_notify helper (no external dependencies).

The launcher and device monitor run as systemd services. Notifications go to
``$NOTIFY_SOCKET``; every function is a no-op when the variable is unset, so
the tools behave the same when started by hand.
"""

from __future__ import annotations

import logging
import os
import socket

_logger = logging.getLogger(__name__)


def _notify(message: str) -> bool:
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr.startswith("@"):
        addr = "\0" + addr[1:]  # abstract socket
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.sendto(message.encode(), addr)
    except OSError as exc:
        _logger.debug("[sd_notify] Failed to send '%s': %s", message, exc)
        return False
    return True


def ready(status: str | None = None) -> None:
    """Tell systemd the service has finished starting up."""
    message = "READY=1"
    if status:
        message += f"\nSTATUS={status}"
    _notify(message)


def status(text: str) -> None:
    """Publish a one-line status shown by ``systemctl status``."""
    _notify(f"STATUS={text}")


def watchdog() -> None:
    """Reset the systemd watchdog timer."""
    _notify("WATCHDOG=1")


def stopping() -> None:
    _notify("STOPPING=1")
