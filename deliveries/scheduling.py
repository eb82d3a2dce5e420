from __future__ import annotations

import logging
import threading
from typing import Callable

LOGGER = logging.getLogger(__name__)


class RepeatingTimer(threading.Thread):
    """
    Run ``task`` every ``interval`` seconds on a daemon thread until cancelled.
    """

    def __init__(self, interval: float, task: Callable[[], None]):
        super().__init__(daemon=True)
        self.interval = interval
        self.task = task
        self._cancelled = threading.Event()

    def run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.task()
            except Exception:
                LOGGER.exception("Scheduled task failed; cancelling its timer.")
                self._cancelled.set()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class ThreadingScheduler:
    def schedule(self, interval: float, task: Callable[[], None]) -> RepeatingTimer:
        timer = RepeatingTimer(interval, task)
        timer.start()
        return timer
