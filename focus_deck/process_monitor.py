"""Polling watcher that reports when a game process appears or disappears."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from .logging_utils import get_logger

LOGGER = get_logger("Monitor")

DEFAULT_POLL_INTERVAL = 2.0


class _ProcessProbe(Protocol):
    def is_running(self, pattern: Optional[str]) -> bool: ...


class ProcessWatcher:
    def __init__(
        self,
        probe: _ProcessProbe,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._probe = probe
        self.poll_interval = max(0.0, float(poll_interval))
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or LOGGER

    def is_running(self, pattern: str) -> bool:
        """True while any alternative in ``pattern`` has a live process."""
        return self._probe.is_running(pattern)

    def wait_for_start(self, pattern: str, timeout: float) -> bool:
        """Poll until ``pattern`` is running or ``timeout`` seconds pass."""
        deadline = self._clock() + max(0.0, timeout)
        while True:
            if self.is_running(pattern):
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.poll_interval, remaining))

    def watch_for(self, pattern: str) -> int:
        """Block until no alternative in ``pattern`` is running.

        Returns the number of polls that observed the process alive.
        """
        polls = 0
        while self.is_running(pattern):
            polls += 1
            if polls == 1:
                self._logger.debug("Watching %s every %.1fs", pattern, self.poll_interval)
            self._sleep(self.poll_interval)
        self._logger.debug("%s absent after %d poll(s)", pattern, polls)
        return polls
