"""
Refresh guard: mutual exclusion and throttling for token refresh exchanges.
"""
import time
from threading import Condition
from typing import Callable, Optional

from portal_client.utils.logger import logger


class RefreshGuard:
    """
    Decides whether a new token refresh exchange may start.

    A caller that wins ``try_acquire`` owns the single outstanding refresh
    and must call ``release`` when the exchange ends, whatever its outcome.
    The internal lock is held only while reading/updating the two fields,
    never across network I/O.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._in_progress = False
        self._last_refresh_at = 0.0
        self._cond = Condition()

    @property
    def in_progress(self) -> bool:
        with self._cond:
            return self._in_progress

    @property
    def last_refresh_at(self) -> float:
        with self._cond:
            return self._last_refresh_at

    def try_acquire(self, now: Optional[float] = None, min_interval: float = 60.0) -> bool:
        """
        Claim the refresh slot.

        Returns True and marks a refresh in progress only if no refresh is
        running and at least ``min_interval`` seconds have passed since the
        last one finished. Otherwise returns False and changes nothing.
        """
        if now is None:
            now = self._clock()
        with self._cond:
            if self._in_progress:
                logger.debug("Refresh already in progress, skipping")
                return False
            if now - self._last_refresh_at < min_interval:
                logger.debug("Refreshed too recently, skipping")
                return False
            self._in_progress = True
            return True

    def release(self, now: Optional[float] = None) -> None:
        """End the outstanding refresh and stamp its completion time."""
        if now is None:
            now = self._clock()
        with self._cond:
            self._in_progress = False
            self._last_refresh_at = max(self._last_refresh_at, now)
            self._cond.notify_all()

    def reset(self) -> None:
        """Forget all refresh history (login/logout)."""
        with self._cond:
            self._in_progress = False
            self._last_refresh_at = 0.0
            self._cond.notify_all()

    def wait_until_released(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no refresh is in progress.

        Returns False if ``timeout`` elapsed with a refresh still running.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._in_progress, timeout=timeout)
