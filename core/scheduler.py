"""
Background periodic workers.

Each job runs on its own daemon thread: call the job, then wait out the
rest of the interval or until stop() is requested.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional


class PeriodicWorker:
    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], None],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.interval = interval
        self._fn = fn
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=self.name,
            daemon=True,  # Thread will exit when main process exits
        )
        self._thread.start()
        logging.info("%s started (interval: %ss)", self.name, self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logging.info("%s stopped", self.name)

    def run_once(self) -> None:
        try:
            self._fn()
        except Exception as exc:
            # Catch all exceptions to prevent thread termination
            logging.error("Error in %s: %s", self.name, exc, exc_info=True)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            started = self._clock()
            self.run_once()
            # An overrunning job starts the next run at once.
            elapsed = self._clock() - started
            self._stop_event.wait(max(0.0, self.interval - elapsed))
