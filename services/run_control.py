"""
Run Control Module

Cancellation and single-run guard for the ingestion pipeline.

The abort flag can be set independently of any run (the client that started a
run may be gone by the time the abort arrives), and optionally mirrored to a
file so a second process can stop a run. A run also stops when the caller's
own connection-closed check reports a disconnect.
"""

import os
import random
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional

from config import settings
from utils.exceptions import RunInProgressError
from utils.logger import get_logger

logger = get_logger(__name__)

DisconnectCheck = Optional[Callable[[], bool]]


class RunControl:
    """Abort flag, interruptible waits and the single run slot."""

    def __init__(self, flag_file: Optional[str] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 poll_interval: float = settings.ABORT_POLL_INTERVAL):
        """
        Args:
            flag_file: Path mirroring the abort flag across processes; None keeps it in memory.
            sleep: Blocking sleep, injectable for tests.
            clock: Monotonic clock, injectable for tests.
            poll_interval: Seconds between abort checks while waiting.
        """
        self.flag_file = flag_file
        self._sleep = sleep
        self._clock = clock
        self.poll_interval = poll_interval
        self._abort = threading.Event()
        self._run_slot = threading.Lock()

    # ----- abort flag -----------------------------------------------------

    def request_abort(self) -> None:
        """Ask the active (or next) run to stop. Idempotent."""
        self._abort.set()
        if self.flag_file:
            try:
                with open(self.flag_file, 'w', encoding='utf-8') as f:
                    f.write(str(time.time()))
            except OSError as e:
                logger.error(f"Could not write abort flag file {self.flag_file}: {e}")
        logger.info("Abort requested")

    def clear_abort(self) -> None:
        """Reset the abort flag before a fresh run."""
        self._abort.clear()
        if self.flag_file and os.path.exists(self.flag_file):
            try:
                os.remove(self.flag_file)
            except OSError as e:
                logger.error(f"Could not remove abort flag file {self.flag_file}: {e}")

    @property
    def abort_requested(self) -> bool:
        if self._abort.is_set():
            return True
        if self.flag_file and os.path.exists(self.flag_file):
            self._abort.set()
            return True
        return False

    def should_stop(self, is_disconnected: DisconnectCheck = None) -> bool:
        """True when an abort was requested or the caller disconnected."""
        if self.abort_requested:
            return True
        if is_disconnected is not None:
            try:
                return bool(is_disconnected())
            except Exception as e:
                logger.warning(f"Disconnect check failed, treating as disconnected: {e}")
                return True
        return False

    # ----- waits ----------------------------------------------------------

    def interruptible_sleep(self, seconds: float, is_disconnected: DisconnectCheck = None) -> bool:
        """
        Wait up to ``seconds``, checking for cancellation every poll interval.

        Returns:
            bool: True if the wait was interrupted by a cancellation.
        """
        deadline = self._clock() + seconds
        while True:
            if self.should_stop(is_disconnected):
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.poll_interval, remaining))

    def random_delay(self, is_disconnected: DisconnectCheck = None,
                     minimum: float = settings.ITEM_DELAY_MIN_SECONDS,
                     maximum: float = settings.ITEM_DELAY_MAX_SECONDS) -> bool:
        """Randomized pause between items; True if interrupted."""
        return self.interruptible_sleep(random.uniform(minimum, maximum), is_disconnected)

    # ----- single run slot -----------------------------------------------

    @property
    def running(self) -> bool:
        return self._run_slot.locked()

    @contextmanager
    def run_slot(self):
        """
        Hold the single run slot for the duration of a run.

        Raises:
            RunInProgressError: If another run holds the slot.
        """
        if not self._run_slot.acquire(blocking=False):
            raise RunInProgressError("A scrape run is already in progress")
        try:
            yield self
        finally:
            self._run_slot.release()
