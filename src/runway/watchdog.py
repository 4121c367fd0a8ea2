# watchdog.py
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IdleWatchdog:
    """
    Liveness timer for a running command.

    Armed with `start()`, pushed back with `reset()` on every unit of output,
    disarmed with `cancel()`. If it ever expires, `on_expire` is called once
    (from the watchdog thread) and `fired` stays True.

    One thread per watchdog waits on a deadline; `reset()` only moves the
    deadline, so chatty commands do not spawn a thread per chunk.

    A timeout of None makes every method a no-op, so callers can use one code
    path for steps with and without `no_output_timeout`.

    Usage:
        with IdleWatchdog(30.0, proc.kill) as dog:
            for chunk in proc.output():
                dog.reset()
        if dog.fired: ...
    """

    def __init__(self, timeout: Optional[float], on_expire: Callable[[], None]):
        self.timeout = timeout
        self._on_expire = on_expire
        self._cond = threading.Condition()
        self._deadline = 0.0
        self._thread: Optional[threading.Thread] = None
        self._fired = False
        self._cancelled = False

    @property
    def fired(self) -> bool:
        return self._fired

    def start(self) -> None:
        self._arm()

    def reset(self) -> None:
        self._arm()

    def cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def _arm(self) -> None:
        if self.timeout is None:
            return
        with self._cond:
            if self._fired or self._cancelled:
                return
            self._deadline = time.monotonic() + self.timeout
            if self._thread is None:
                self._thread = threading.Thread(target=self._watch, name="idle-watchdog", daemon=True)
                self._thread.start()

    def _watch(self) -> None:
        with self._cond:
            while True:
                if self._cancelled:
                    return
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    break
                # a reset while waiting just leaves a later deadline to wait for
                self._cond.wait(remaining)
            self._fired = True
        logger.debug("idle watchdog expired after %ss", self.timeout)
        self._on_expire()

    def __enter__(self) -> IdleWatchdog:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
