"""Bounded polling for external services coming up (daemons, API servers)."""

from __future__ import annotations

import logging
import time
from typing import Callable

from nodestrap.core.errors import ProvisionError

logger = logging.getLogger(__name__)


class WaitTimeout(ProvisionError):
    """The condition did not become true within the allotted time."""


def wait_until(
    condition: Callable[[], bool],
    *,
    timeout: float,
    interval: float = 2.0,
    what: str = "condition",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll ``condition`` until it returns True or ``timeout`` seconds pass.

    The condition is always checked at least once.

    Raises:
        WaitTimeout: If the deadline passes first.
    """
    deadline = clock() + timeout
    attempts = 0
    while True:
        attempts += 1
        if condition():
            logger.debug("%s ready after %d check(s)", what, attempts)
            return
        if clock() >= deadline:
            raise WaitTimeout(f"Timed out after {timeout:.0f}s waiting for {what}")
        sleep(interval)
