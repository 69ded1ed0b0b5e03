"""Internet reachability checks."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from kin.commands import Runner, run, succeeds

LOGGER = logging.getLogger(__name__)


def has_internet(host: str = "8.8.8.8", *, timeout_seconds: int = 2, runner: Runner = run) -> bool:
    """Single ICMP probe of ``host``."""
    return succeeds(
        ["ping", "-c", "1", "-W", str(timeout_seconds), host],
        runner=runner,
        timeout=timeout_seconds + 3,
    )


def wait_for_internet(
    *,
    host: str = "8.8.8.8",
    retries: int = 30,
    delay: float = 2.0,
    probe: Callable[[str], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger | None = None,
) -> bool:
    """Probe until the host answers; ``False`` once ``retries`` probes have failed."""
    log = logger or LOGGER
    check = probe or has_internet
    attempt = 0
    while not check(host):
        attempt += 1
        if attempt >= retries:
            return False
        log.info("Waiting for internet connection... (attempt %d/%d)", attempt, retries)
        sleep(delay)
    return True
