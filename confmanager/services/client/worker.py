"""
Periodic Worker

Background thread: sleep for the cache's current timeout, then print its
current phrase, until stopped.
"""

import threading
from typing import Callable

from confmanager.common.logging_setup import get_service_logger

from .cache import ClientConfigCache

logger = get_service_logger("client.worker")


def _print_phrase(phrase: str) -> None:
    print(phrase, flush=True)


class PeriodicWorker:
    """
    The timeout is re-read at the start of every cycle, so a new value takes
    effect from the next cycle. stop() wakes a sleeping worker and joins it.
    """

    def __init__(
        self,
        cache: ClientConfigCache,
        output: Callable[[str], None] | None = None,
    ):
        self.cache = cache
        self.output = output or _print_phrase
        self.cycles = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Periodic worker already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="periodic-worker")
        self._thread.start()
        logger.debug("Periodic worker started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.debug(f"Periodic worker stopped after {self.cycles} cycles")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            timeout_s = self.cache.timeout_ms / 1000.0
            if self._stop_event.wait(timeout_s):
                break
            try:
                self.output(self.cache.phrase)
            except Exception as e:
                logger.error(f"Periodic output failed: {e}")
            self.cycles += 1
