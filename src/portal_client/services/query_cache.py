"""
Query cache: keyed results of read requests, invalidation, and the global
in-flight request count behind the loading indicator.
"""
import time
from contextlib import contextmanager
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from portal_client.config.settings import settings
from portal_client.core.event_bus import Channels, EventBus, Subscription
from portal_client.models.refresh import RefreshRequest, RefreshScope
from portal_client.utils.logger import logger

QueryKey = Union[str, Tuple[Any, ...]]

USER_QUERY_KEY = "user"


def _normalize(key: QueryKey) -> Tuple[Any, ...]:
    return key if isinstance(key, tuple) else (key,)


@dataclass
class _Entry:
    value: Any
    fetched_at: float
    stale: bool = False


class QueryCache:
    """
    Cache of query results plus request tracking.

    The loading channel receives True when the first request starts and
    False when the last outstanding one ends.
    """

    def __init__(
        self,
        event_bus: EventBus,
        stale_time: float = settings.QUERY_STALE_TIME,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._bus = event_bus
        self._stale_time = stale_time
        self._clock = clock
        self._entries: Dict[Tuple[Any, ...], _Entry] = {}
        self._in_flight = 0
        self._lock = RLock()
        self._subscription: Optional[Subscription] = None

    # Loading state

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def is_loading(self) -> bool:
        return self.in_flight > 0

    def begin_request(self) -> None:
        with self._lock:
            self._in_flight += 1
            became_busy = self._in_flight == 1
        if became_busy:
            self._bus.emit(Channels.LOADING_STATE_CHANGED, True)

    def end_request(self) -> None:
        with self._lock:
            if self._in_flight == 0:
                logger.warning("end_request called with no request in flight")
                return
            self._in_flight -= 1
            became_idle = self._in_flight == 0
        if became_idle:
            self._bus.emit(Channels.LOADING_STATE_CHANGED, False)

    @contextmanager
    def tracking(self):
        """Count the enclosed block as one in-flight request."""
        self.begin_request()
        try:
            yield
        finally:
            self.end_request()

    # Cached queries

    def get(self, key: QueryKey) -> Any:
        with self._lock:
            entry = self._entries.get(_normalize(key))
            return entry.value if entry else None

    def set(self, key: QueryKey, value: Any) -> None:
        with self._lock:
            self._entries[_normalize(key)] = _Entry(value=value, fetched_at=self._clock())

    def is_stale(self, key: QueryKey) -> bool:
        with self._lock:
            entry = self._entries.get(_normalize(key))
            if entry is None:
                return True
            return entry.stale or self._clock() - entry.fetched_at >= self._stale_time

    def fetch(self, key: QueryKey, loader: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, calling ``loader`` if missing or stale."""
        if not self.is_stale(key):
            return self.get(key)
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Optional[QueryKey] = None) -> int:
        """
        Mark entries stale.

        ``key`` matches every entry whose key starts with it; None matches all.

        Returns:
            Number of entries invalidated
        """
        prefix = _normalize(key) if key is not None else ()
        count = 0
        with self._lock:
            for entry_key, entry in self._entries.items():
                if entry_key[:len(prefix)] == prefix:
                    entry.stale = True
                    count += 1
        logger.debug(f"Invalidated {count} cached queries for {prefix or 'all'}")
        return count

    def invalidate_many(self, keys: Iterable[QueryKey]) -> int:
        return sum(self.invalidate(key) for key in keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # Global refresh

    def attach(self) -> None:
        """Start reacting to global refresh requests."""
        if self._subscription is None:
            self._subscription = self._bus.subscribe(
                Channels.GLOBAL_REFRESH_REQUESTED, self._on_global_refresh
            )

    def detach(self) -> None:
        if self._subscription is not None:
            self._bus.unsubscribe(self._subscription)
            self._subscription = None

    def _on_global_refresh(self, request: RefreshRequest) -> None:
        if request.scope is RefreshScope.ALL_DATA:
            self.invalidate()
        elif request.scope is RefreshScope.USER_PROFILE:
            self.invalidate(USER_QUERY_KEY)
        elif request.scope is RefreshScope.SPECIFIC_QUERY:
            keys = getattr(request.options, "query_keys", None) or []
            self.invalidate_many(keys)
